"""Error taxonomy shared by the server, the adapter and the orchestrator."""

from datetime import datetime

CANCELLED_MESSAGE = "Cancelled by user"


class StudioError(Exception):
    """Base class. ``status_code`` is the HTTP status the server answers with."""

    status_code = 500
    retryable = False


class ValidationError(StudioError):
    """Missing or invalid request fields. Never retried."""

    status_code = 400


class QuotaExceededError(StudioError):
    """Daily quota used up for this client."""

    status_code = 429

    def __init__(self, message: str, reset_at: datetime | None = None):
        super().__init__(message)
        self.reset_at = reset_at


class PreprocessingError(StudioError):
    """An upload could not be validated or converted."""

    status_code = 400


class GenerationError(StudioError):
    """A generation job did not produce an image."""


class ProviderError(GenerationError):
    """The provider (or the studio server) rejected the request."""


class TransientProviderError(ProviderError):
    """Network-class failure worth another attempt."""

    retryable = True


class NoImagesProducedError(ProviderError):
    def __init__(self, message: str = "No images generated"):
        super().__init__(message)


class CancelledByUserError(GenerationError):
    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)
