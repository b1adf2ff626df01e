from __future__ import annotations


class LofiStreamError(Exception):
    """Base error for the lofistream library."""


class InvalidInputError(LofiStreamError):
    """Raised when a source-event batch is empty or malformed."""


class InvalidConfigError(LofiStreamError):
    """Raised when a config cannot be parsed or validated."""


class EmptyArtifactError(LofiStreamError):
    """Raised when packaging is asked to wrap a zero-length sample buffer."""


class AlreadyStreamingError(LofiStreamError):
    """Raised when a session is started while another one is live."""


class SessionNotActiveError(LofiStreamError):
    """Raised when an operation needs an active session and none is running."""


class StreamingError(LofiStreamError):
    """Raised (or emitted) when a streaming step fails."""

    def __init__(self, message: str, *, stage: str = "tick") -> None:
        super().__init__(message)
        self.stage = stage


class PlaybackError(LofiStreamError):
    """Raised when no playback backend is available."""
