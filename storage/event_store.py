"""In-memory per-room event store."""
import logging
from typing import Dict, Iterable, List, Optional

from processor.models import Event, EventSnapshot, ReplaceResult

logger = logging.getLogger(__name__)


class EventStore:
    """
    Mapping of room id to its ordered list of events.

    Each room holds exactly one list. Readers always get a copy, and
    replacements swap the whole list in one assignment, so no reader ever
    sees a partially replaced room.
    """

    def __init__(self):
        self._rooms: Dict[str, List[Event]] = {}
        self._generations: Dict[str, int] = {}

    def rooms(self) -> List[str]:
        """Ids of every room that has been loaded."""
        return list(self._rooms)

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get_events(self, room_id: str) -> List[Event]:
        """
        Return the room's events in server order.

        Args:
            room_id: Room identifier

        Returns:
            Copy of the event list, empty if the room is unknown
        """
        return list(self._rooms.get(room_id, ()))

    def get_event(self, room_id: str, event_id: str):
        for event in self._rooms.get(room_id, ()):
            if event.id == event_id:
                return event
        return None

    def replace_room(self, room_id: str, events: Iterable[Event]) -> ReplaceResult:
        """
        Overwrite a room's events with authoritative data.

        The new list replaces the old one wholesale; nothing is merged. The
        returned counts only describe what changed.

        Args:
            room_id: Room identifier
            events: Authoritative events in server order

        Returns:
            ReplaceResult with counts of added, updated and removed events
        """
        new_events = list(events)
        existing = {event.id: event for event in self._rooms.get(room_id, ())}
        incoming = {event.id: event for event in new_events}

        added = sum(1 for event_id in incoming if event_id not in existing)
        updated = sum(
            1 for event_id, event in incoming.items()
            if event_id in existing and existing[event_id] != event
        )
        removed = sum(1 for event_id in existing if event_id not in incoming)

        self._rooms[room_id] = new_events
        self._generations[room_id] = self.generation(room_id) + 1

        logger.info(
            f"Replaced room {room_id}: {added} added, {updated} updated, "
            f"{removed} removed"
        )
        return ReplaceResult(added=added, updated=updated, removed=removed)

    def apply_local_insert(self, room_id: str, event: Event) -> None:
        """Append an event to the room, replacing any event with the same id."""
        events = [e for e in self._rooms.get(room_id, ()) if e.id != event.id]
        events.append(event)
        self._rooms[room_id] = events

    def apply_local_update(self, room_id: str, event: Event) -> bool:
        """
        Replace the event with the same id in place, keeping its position.

        Returns:
            False if the event is not in the room
        """
        events = list(self._rooms.get(room_id, ()))
        for index, current in enumerate(events):
            if current.id == event.id:
                events[index] = event
                self._rooms[room_id] = events
                return True
        logger.warning(f"Local update for unknown event {event.id} in room {room_id}")
        return False

    def apply_local_remove(self, room_id: str, event_id: str) -> bool:
        """
        Remove an event from the room.

        Returns:
            False if the event is not in the room
        """
        events = self._rooms.get(room_id, [])
        remaining = [e for e in events if e.id != event_id]
        if len(remaining) == len(events):
            return False
        self._rooms[room_id] = remaining
        return True

    def generation(self, room_id: str) -> int:
        """Number of times the room has been replaced by authoritative data."""
        return self._generations.get(room_id, 0)

    def snapshot(self, room_id: str, event_id: Optional[str] = None) -> EventSnapshot:
        """
        Capture one event's current state for a later restore.

        Args:
            room_id: Room identifier
            event_id: Event about to change, None when nothing exists yet

        Returns:
            EventSnapshot tied to the room's current generation
        """
        events = self._rooms.get(room_id, [])
        position = len(events)
        event = None
        if event_id is not None:
            for index, current in enumerate(events):
                if current.id == event_id:
                    position, event = index, current
                    break
        return EventSnapshot(
            room_id=room_id,
            event_id=event_id,
            event=event,
            position=position,
            generation=self.generation(room_id)
        )

    def restore(self, snapshot: EventSnapshot) -> bool:
        """
        Put back the event captured by snapshot().

        Only that event is touched, and nothing happens if the room was
        replaced since the snapshot was taken.

        Returns:
            True if the room was changed
        """
        room_id = snapshot.room_id
        if self.generation(room_id) != snapshot.generation:
            logger.info(
                f"Room {room_id} was refreshed since the snapshot; "
                f"keeping server state for event {snapshot.event_id}"
            )
            return False
        if snapshot.event_id is None:
            return False

        events = [e for e in self._rooms.get(room_id, ()) if e.id != snapshot.event_id]
        if snapshot.event is not None:
            events.insert(min(snapshot.position, len(events)), snapshot.event)
        self._rooms[room_id] = events
        return True
