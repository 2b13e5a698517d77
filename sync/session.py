"""Per-session wiring of the booking sync components."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from client.booking_api import BookingApiClient
from processor import conflicts
from processor.errors import AuthExpiredError, TransportError
from processor.event_processor import EventProcessor
from processor.models import Event, FreeBusyMap, MutationOutcome, ReplaceResult, Room, User
from storage.event_store import EventStore
from storage.ttl_cache import TTLCache
from storage.version_map import VersionMap
from sync.auth_guard import ReauthGuard
from sync.freebusy import FREEBUSY_TTL_SECONDS, FreeBusyCache
from sync.mutations import MutationCoordinator, can_edit
from sync.poller import DEFAULT_POLL_SECONDS, SyncPoller

logger = logging.getLogger(__name__)


class BookingSession:
    """
    Owns the event store, version map and free/busy cache for one session.

    All state is mutated from the event loop thread only; blocking HTTP
    calls run in worker threads and their results are applied after the
    await resumes.
    """

    def __init__(
        self,
        client: BookingApiClient,
        user_email: Optional[str] = None,
        room_interval: float = DEFAULT_POLL_SECONDS,
        user_interval: float = DEFAULT_POLL_SECONDS,
        freebusy_ttl: float = FREEBUSY_TTL_SECONDS,
        on_reauth_required: Optional[Callable[[str], None]] = None,
        on_poll_error: Optional[Callable[[str, Exception], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.client = client
        self.user_email = user_email
        self.processor = EventProcessor()
        self.store = EventStore()
        self.versions = VersionMap()
        self.guard = ReauthGuard(on_reauth_required)
        self.rooms: Dict[str, Room] = {}
        self.users: List[User] = []

        self.freebusy = FreeBusyCache(
            store=self.store,
            client=client,
            known_rooms=lambda: self.rooms.keys(),
            processor=self.processor,
            cache=TTLCache(freebusy_ttl)
        )
        self.coordinator = MutationCoordinator(
            store=self.store,
            client=client,
            refresh_room=self.resync_room,
            guard=self.guard,
            processor=self.processor,
            user_email=user_email,
            clock=clock
        )
        self.poller = SyncPoller(
            client=client,
            versions=self.versions,
            refresh_room=self.resync_room,
            refresh_users=self.refresh_users,
            guard=self.guard,
            room_interval=room_interval,
            user_interval=user_interval,
            on_error=on_poll_error
        )

    async def load_rooms(self) -> List[Room]:
        """
        Load the room list and prefetch every room's events.

        A room that fails to load is logged and left empty; the poller
        fills it in on its next version change.
        """
        raw_rooms = await self._call(self.client.fetch_rooms)
        rooms = self.processor.process_rooms(raw_rooms)
        self.rooms = {room.id: room for room in rooms}
        logger.info(f"Loaded {len(rooms)} rooms")

        for room in rooms:
            try:
                await self.resync_room(room.id)
            except AuthExpiredError:
                raise
            except TransportError as e:
                logger.error(f"Error prefetching room {room.id}: {e}")
        return rooms

    async def resync_room(self, room_id: str) -> ReplaceResult:
        """
        Targeted refresh: overwrite the room with the server's event list.

        Used by the poller and after every committed mutation. The most
        recently completed refresh always wins.
        """
        raw_events = await self._call(self.client.fetch_room_events, room_id)
        events = self.processor.process_events(room_id, raw_events)
        result = self.store.replace_room(room_id, events)
        self.freebusy.invalidate()
        return result

    async def refresh_users(self) -> List[User]:
        """Replace the user directory wholesale."""
        raw_users = await self._call(self.client.fetch_users)
        self.users = self.processor.process_users(raw_users)
        logger.info(f"Loaded {len(self.users)} users")
        return self.users

    def get_events(self, room_id: str) -> List[Event]:
        return self.store.get_events(room_id)

    def sorted_rooms(self) -> List[Room]:
        return sorted(self.rooms.values(), key=lambda room: room.sort_order)

    def overlaps(
        self,
        room_id: str,
        candidate_start: datetime,
        candidate_end: datetime,
        exclude_event_id: Optional[str] = None
    ) -> bool:
        return conflicts.overlaps(
            self.store, room_id, candidate_start, candidate_end, exclude_event_id
        )

    def can_edit(self, event: Event) -> bool:
        return can_edit(event, self.user_email)

    async def create_or_update_event(
        self,
        room_id: str,
        event_id: Optional[str],
        title: str,
        start: datetime,
        end: datetime,
        attendees: Iterable[str] = (),
        description: str = ''
    ) -> MutationOutcome:
        return await self.coordinator.create_or_update_event(
            room_id, event_id, title, start, end, attendees, description
        )

    async def move_or_resize_event(
        self,
        room_id: str,
        event_id: str,
        new_start: datetime,
        new_end: Optional[datetime] = None
    ) -> MutationOutcome:
        return await self.coordinator.move_or_resize_event(room_id, event_id, new_start, new_end)

    async def delete_event(self, room_id: str, event_id: str) -> MutationOutcome:
        return await self.coordinator.delete_event(room_id, event_id)

    async def get_free_busy(
        self,
        participant_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime
    ) -> FreeBusyMap:
        self.guard.check()
        try:
            return await self.freebusy.get_free_busy(participant_ids, range_start, range_end)
        except AuthExpiredError as e:
            self.guard.trip(e)
            raise

    def start_polling(self) -> None:
        self.poller.start()

    async def close(self) -> None:
        await self.poller.stop()
        self.client.session.close()

    async def _call(self, func, *args):
        """Run a blocking client call off the loop, honouring the re-auth flag."""
        self.guard.check()
        try:
            return await asyncio.to_thread(func, *args)
        except AuthExpiredError as e:
            self.guard.trip(e)
            raise
