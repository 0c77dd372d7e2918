"""Relay error taxonomy. `kind` is the name sent to clients in error chunks."""


class RelayError(Exception):
    """Base class for all relay errors."""

    kind = "RelayError"


class InvalidConversationError(RelayError):
    """Raised when a request body is not a well-formed conversation."""

    kind = "ValidationError"


class UpstreamError(RelayError):
    """Raised when the completion provider call fails."""

    kind = "UpstreamError"

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider or "unknown_provider"


class RelayTimeoutError(RelayError):
    """Raised when a relay call runs past its duration ceiling."""

    kind = "TimeoutError"

    def __init__(self, message: str, limit: float):
        super().__init__(message)
        self.limit = limit


class AbortedError(RelayError):
    """Raised when a call is cancelled. Never surfaced to the client."""

    kind = "AbortedError"
