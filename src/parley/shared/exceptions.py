"""Custom exception hierarchy for Parley.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer maps it to. Errors raised before a stream starts become JSON
responses; errors raised mid-stream become ``error`` annotations.
"""

from typing import Any


class ParleyError(Exception):
    """Base exception for all Parley errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ----- Request Errors -----


class BadRequestError(ParleyError):
    """Malformed request body or missing required field."""

    code = "BAD_REQUEST"
    status_code = 400


class NotFoundError(ParleyError):
    """Requested resource was not found."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} not found",
            details={"resource": resource, "identifier": identifier},
        )


# ----- Authentication Errors -----


class AuthenticationError(ParleyError):
    """Authentication failed."""

    code = "AUTH_ERROR"
    status_code = 401


class TokenExpiredError(AuthenticationError):
    """JWT token has expired."""

    pass


class TokenInvalidError(AuthenticationError):
    """JWT token is invalid."""

    pass


# ----- Model Errors -----


class UnsupportedModelError(ParleyError):
    """The requested model cannot be served."""

    code = "UNSUPPORTED_MODEL"
    status_code = 400

    def __init__(self, model_id: str, reason: str) -> None:
        super().__init__(message=reason, details={"model": model_id})


class ContextTooLargeError(ParleyError):
    """The backend rejected the conversation as too long for its context window."""

    code = "CONTEXT_TOO_LARGE"
    status_code = 413


# ----- External Service Errors -----


class ExternalServiceError(ParleyError):
    """Error from an external service."""

    status_code = 502


class ProviderError(ExternalServiceError):
    """Error from a model backend."""

    code = "PROVIDER_ERROR"


class ProviderRateLimitError(ProviderError):
    """Model backend rate limit exceeded."""

    code = "RATE_LIMITED"
    status_code = 429


class ImageGenerationError(ProviderError):
    """Image generation backend failed or returned no image."""

    pass


class StorageError(ExternalServiceError):
    """Error from storage service (S3)."""

    code = "STORAGE_ERROR"


class ToolError(ExternalServiceError):
    """A tool backend (web search, memory) failed. Reported to the model, not the client."""

    code = "TOOL_ERROR"


class AttachmentFetchError(ExternalServiceError):
    """An attachment URL could not be downloaded. Never surfaced to clients."""

    code = "ATTACHMENT_FETCH_ERROR"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(message=f"Failed to fetch attachment: {reason}", details={"url": url})


# ----- Persistence Errors -----


class PersistenceError(ParleyError):
    """Reading or writing conversation state failed."""

    code = "PERSISTENCE_ERROR"
    status_code = 500
