"""Session-wide re-authentication flag."""
import logging
from typing import Callable, Optional

from processor.errors import AuthExpiredError, REAUTH_ERROR_MESSAGE

logger = logging.getLogger(__name__)

REAUTH_REDIRECT_URL = '/logout?organizerError=1'


class ReauthGuard:
    """
    Tracks whether the organizer credentials were rejected.

    Once tripped, every guarded operation fails fast with AuthExpiredError
    until the session is rebuilt.
    """

    def __init__(self, on_reauth_required: Optional[Callable[[str], None]] = None):
        self.on_reauth_required = on_reauth_required
        self.required = False

    def check(self) -> None:
        """Raise AuthExpiredError if the session needs re-authentication."""
        if self.required:
            raise AuthExpiredError(
                "Session requires re-authentication", REAUTH_ERROR_MESSAGE, status_code=403
            )

    def trip(self, error: AuthExpiredError) -> None:
        """Mark the session as expired and notify the hook the first time."""
        if self.required:
            return
        self.required = True
        logger.warning(f"Organizer credentials rejected, redirecting to {REAUTH_REDIRECT_URL}: {error}")
        if self.on_reauth_required:
            self.on_reauth_required(REAUTH_REDIRECT_URL)
