"""Version polling that triggers targeted room refreshes."""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from client.booking_api import BookingApiClient
from processor.errors import AuthExpiredError
from storage.version_map import VersionMap
from sync.auth_guard import ReauthGuard

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 30


class SyncPoller:
    """
    Polls room and user-list version counters on independent timers.

    A room whose version increased is refreshed in full, overwriting any
    optimistic local state. A failed tick is reported and the next tick runs
    on schedule; failures are never retried early.
    """

    def __init__(
        self,
        client: BookingApiClient,
        versions: VersionMap,
        refresh_room: Callable[[str], Awaitable[object]],
        refresh_users: Callable[[], Awaitable[object]],
        guard: Optional[ReauthGuard] = None,
        room_interval: float = DEFAULT_POLL_SECONDS,
        user_interval: float = DEFAULT_POLL_SECONDS,
        on_error: Optional[Callable[[str, Exception], None]] = None
    ):
        """
        Initialize the poller.

        Args:
            client: API client for the version endpoints
            versions: Last known versions, updated in place
            refresh_room: Coroutine function refreshing one room
            refresh_users: Coroutine function reloading the user directory
            guard: Re-authentication guard shared with the session
            room_interval: Seconds between room version checks (default: 30)
            user_interval: Seconds between user version checks (default: 30)
            on_error: Called with a message and the exception on a failed tick
        """
        self.client = client
        self.versions = versions
        self.refresh_room = refresh_room
        self.refresh_users = refresh_users
        self.guard = guard or ReauthGuard()
        self.room_interval = room_interval
        self.user_interval = user_interval
        self.on_error = on_error
        self._tasks: List[asyncio.Task] = []

    async def check_room_updates(self) -> List[str]:
        """
        Run one room version check.

        Returns:
            Ids of the rooms that were refreshed
        """
        server_versions = await asyncio.to_thread(self.client.fetch_room_versions)

        changed = [
            room_id for room_id, version in server_versions.items()
            if self.versions.advance(room_id, version)
        ]
        if changed:
            logger.info(f"Room versions advanced for {len(changed)} rooms: {changed}")

        refreshed = []
        for room_id in changed:
            try:
                await self.refresh_room(room_id)
                refreshed.append(room_id)
            except AuthExpiredError:
                raise
            except Exception as e:
                self._report(f"Failed to refresh room {room_id}", e)
        return refreshed

    async def check_user_updates(self) -> bool:
        """
        Run one user-list version check.

        Returns:
            True if the user directory was reloaded
        """
        server_version = await asyncio.to_thread(self.client.fetch_user_version)
        if not self.versions.advance_user_version(server_version):
            return False

        logger.info(f"User list version advanced to {server_version}")
        await self.refresh_users()
        return True

    def start(self) -> None:
        """Start both polling timers on the running event loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._run_every(self.room_interval, self.check_room_updates, 'room updates')
            ),
            asyncio.create_task(
                self._run_every(self.user_interval, self.check_user_updates, 'user updates')
            )
        ]
        logger.info(
            f"Polling started (rooms every {self.room_interval}s, "
            f"users every {self.user_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel both timers and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _run_every(self, interval: float, tick, name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.guard.required:
                logger.debug(f"Skipping {name} check until re-authentication")
                continue
            try:
                await tick()
            except AuthExpiredError as e:
                self.guard.trip(e)
            except Exception as e:
                self._report(f"Failed to check {name}", e)

    def _report(self, message: str, error: Exception) -> None:
        logger.error(
            f"{message}: {error}",
            extra={'error_type': type(error).__name__},
            exc_info=True
        )
        if self.on_error:
            self.on_error(message, error)
