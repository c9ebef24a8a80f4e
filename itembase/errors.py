"""
Error taxonomy shared by every backend and the HTTP layer.
"""

from __future__ import annotations


class ItemBaseError(Exception):
    """Base class; ``status_code`` is the HTTP status the error maps to."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ItemBaseError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(ItemBaseError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(ItemBaseError):
    status_code = 404
    default_message = "Item not found"


class BackendUnavailable(ItemBaseError):
    """
    The storage medium cannot be reached. Intercepted by the data service,
    which degrades to the next backend; never shown to API callers.
    """

    status_code = 503
    default_message = "Backend unavailable"


class InternalError(ItemBaseError):
    status_code = 500
    default_message = "Internal server error"


class TransportError(ItemBaseError):
    """A remote API call failed in transit (network, 5xx, malformed body)."""

    status_code = 502
    default_message = "Remote API request failed"


ERRORS_BY_STATUS: dict[int, type[ItemBaseError]] = {
    400: ValidationError,
    401: Unauthorized,
    404: NotFound,
}
