"""HTTP client for the remote room booking API."""
import logging
from typing import Any, Dict, List, Optional

import requests

from processor.errors import AuthExpiredError, REAUTH_ERROR_MESSAGE, TransportError

logger = logging.getLogger(__name__)


class BookingApiClient:
    """Blocking client for the booking API endpoints."""

    DEFAULT_BASE_URL = "http://localhost:3000/api"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: Root URL of the API, without trailing slash
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session carrying auth cookies
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_rooms(self) -> List[Dict[str, Any]]:
        """Fetch the room list."""
        return self._request('GET', '/rooms').get('rooms') or []

    def fetch_room_events(self, room_id: str) -> List[Dict[str, Any]]:
        """
        Fetch the full event list of one room.

        Args:
            room_id: Calendar id of the room

        Returns:
            Raw event dicts in server order
        """
        data = self._request('GET', '/room_data', params={'calendarId': room_id})
        return data.get('events') or []

    def create_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', '/create_event', json=payload)

    def update_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('PUT', '/update_event', json=payload)

    def delete_event(self, room_id: str, event_id: str) -> Dict[str, Any]:
        return self._request(
            'DELETE', '/delete_event', json={'calendarId': room_id, 'id': event_id}
        )

    def fetch_room_versions(self) -> Dict[str, int]:
        """
        Fetch the server's per-room version counters.

        Returns:
            Mapping of room id to version
        """
        data = self._request('GET', '/room_updates')
        versions = {}
        for update in data.get('updates') or []:
            try:
                versions[update['roomId']] = int(update['version'])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Ignoring malformed room update: {update}")
        return versions

    def fetch_user_version(self) -> int:
        data = self._request('GET', '/user_updates')
        return int(data.get('version') or 1)

    def fetch_users(self) -> List[Dict[str, Any]]:
        return self._request('GET', '/all_users').get('users') or []

    def query_freebusy(self, start: str, end: str, attendees: List[str]) -> Dict[str, Any]:
        """
        Run one batched free/busy query.

        Args:
            start: ISO-8601 range start
            end: ISO-8601 range end
            attendees: User emails to query

        Returns:
            Mapping of email to raw busy slots
        """
        body = {'start': start, 'end': end, 'attendees': attendees}
        return self._request('POST', '/freebusy', json=body).get('freebusy') or {}

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Send one request and decode the JSON body.

        Requests are never retried here; callers decide what a failure means.

        Raises:
            AuthExpiredError: If the organizer credentials were rejected
            TransportError: On network failure or a non-2xx status
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise TransportError(f"Request to {path} failed", str(e)) from e

        if response.status_code == 403 and self._is_reauth_signal(response):
            logger.warning(f"{method} {path} rejected: organizer must re-authenticate")
            raise AuthExpiredError(
                "Organizer must re-authenticate", REAUTH_ERROR_MESSAGE, status_code=403
            )

        if not response.ok:
            logger.error(f"{method} {path} returned {response.status_code}")
            raise TransportError(
                f"Request to {path} failed",
                f"({response.status_code}) {response.text}",
                status_code=response.status_code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid JSON from {path}", str(e), status_code=response.status_code
            ) from e

    def _is_reauth_signal(self, response: requests.Response) -> bool:
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get('error') == REAUTH_ERROR_MESSAGE
