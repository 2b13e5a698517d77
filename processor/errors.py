"""Error taxonomy for booking operations."""
from typing import Optional


REAUTH_ERROR_MESSAGE = 'Organizer credentials invalid. Please re-authenticate.'


class BookingError(Exception):
    """Base class for failures reported to the booking UI."""

    def __init__(self, message: str, cause: Optional[str] = None):
        self.message = message
        self.cause = cause
        super().__init__(f"{message}: {cause}" if cause else message)


class ValidationError(BookingError):
    """Rejected before any network call; no state was changed."""


class ConflictError(ValidationError):
    """Candidate interval overlaps an existing event in the same room."""


class TransportError(BookingError):
    """Network failure or non-2xx response from the remote API."""

    def __init__(
        self,
        message: str,
        cause: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, cause)
        self.status_code = status_code


class AuthExpiredError(TransportError):
    """Organizer credentials were rejected; the session must re-authenticate."""
