"""Free/busy aggregation over rooms and users with a TTL cache."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from client.booking_api import BookingApiClient
from processor.event_processor import EventProcessor, ensure_utc, format_instant
from processor.models import BusyInterval, FreeBusyMap
from storage.event_store import EventStore
from storage.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

FREEBUSY_TTL_SECONDS = 5 * 60

CacheKey = Tuple[Tuple[str, ...], str, str]


class FreeBusyCache:
    """
    Merged busy intervals for a set of participants.

    Room participants are answered from the local event store; user
    participants with one batched remote query. Results are cached per
    (sorted participants, range) for the TTL and served unchanged until they
    expire.
    """

    def __init__(
        self,
        store: EventStore,
        client: BookingApiClient,
        known_rooms: Callable[[], Iterable[str]],
        processor: Optional[EventProcessor] = None,
        cache: Optional[TTLCache] = None
    ):
        """
        Initialize the free/busy cache.

        Args:
            store: Event store holding room events
            client: API client used for user free/busy queries
            known_rooms: Returns the ids that should be treated as rooms
            processor: Payload processor for remote busy slots
            cache: TTL cache for merged results (default: 5 minute TTL)
        """
        self.store = store
        self.client = client
        self.known_rooms = known_rooms
        self.processor = processor or EventProcessor()
        self.cache = cache if cache is not None else TTLCache(FREEBUSY_TTL_SECONDS)

    @staticmethod
    def cache_key(participant_ids: Iterable[str], range_start: datetime, range_end: datetime) -> CacheKey:
        """Order-independent key for a participant set and range."""
        return (
            tuple(sorted(set(participant_ids))),
            format_instant(range_start),
            format_instant(range_end)
        )

    async def get_free_busy(
        self,
        participant_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime
    ) -> FreeBusyMap:
        """
        Return busy intervals per participant within the range.

        Args:
            participant_ids: Room ids and user emails
            range_start: Start of the queried range
            range_end: End of the queried range

        Returns:
            Mapping of participant id to ordered busy intervals

        Raises:
            TransportError: If the remote user query fails; nothing is cached
        """
        range_start = ensure_utc(range_start)
        range_end = ensure_utc(range_end)
        key = self.cache_key(participant_ids, range_start, range_end)
        participants = key[0]

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Free/busy cache hit for {len(participants)} participants")
            return {participant: list(busy) for participant, busy in cached.items()}

        rooms = set(self.known_rooms())
        room_ids = [p for p in participants if p in rooms]
        user_ids = [p for p in participants if p not in rooms]

        result: FreeBusyMap = {}
        if user_ids:
            logger.info(f"Querying free/busy for {len(user_ids)} users")
            raw = await asyncio.to_thread(
                self.client.query_freebusy, key[1], key[2], user_ids
            )
            remote = self.processor.process_busy(raw)
            for user_id in user_ids:
                result[user_id] = remote.get(user_id, [])

        for room_id in room_ids:
            result[room_id] = self.local_room_busy(room_id, range_start, range_end)

        self.cache.put(key, {participant: list(busy) for participant, busy in result.items()})
        return result

    def local_room_busy(self, room_id: str, range_start: datetime, range_end: datetime) -> List[BusyInterval]:
        """
        Busy intervals for a room from its cached events, clipped to the range.

        Args:
            room_id: Room identifier
            range_start: Start of the range
            range_end: End of the range

        Returns:
            One interval per overlapping event, in store order
        """
        busy = []
        for event in self.store.get_events(room_id):
            if event.end is None:
                continue
            if event.end > range_start and event.start < range_end:
                busy.append(BusyInterval(
                    start=max(event.start, range_start),
                    end=min(event.end, range_end)
                ))
        return busy

    def invalidate(self) -> None:
        """Drop every cached result."""
        self.cache.clear()
