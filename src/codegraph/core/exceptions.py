"""Custom exceptions for codegraph."""


class CodeGraphError(Exception):
    """Base exception for all codegraph errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CodeGraphError):
    """Raised when there's a configuration problem."""

    pass


class ValidationError(CodeGraphError):
    """Raised when the input of a public operation is rejected.

    Raised before any work starts, so the caller never observes a
    partially executed retrieve/filter/search.
    """

    def __init__(self, message: str, field: str | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.field = field


class ExtractionError(CodeGraphError):
    """Raised when a syntax tree cannot be produced for a file."""

    pass


class DiscoveryError(CodeGraphError):
    """Raised when the text-completion response cannot be used."""

    pass


class IngestionError(CodeGraphError):
    """Raised when a queued document cannot be processed."""

    pass


class StoreError(CodeGraphError):
    """Raised when the persistent row store fails."""

    pass


class QueueItemNotFoundError(CodeGraphError):
    """Raised when a queue id is unknown."""

    pass


class InvalidQueueTransitionError(CodeGraphError):
    """Raised when a queue item is moved to a state it cannot reach."""

    pass
