"""Interval overlap checks against a room's cached events."""
from datetime import datetime
from typing import List, Optional

from processor.models import Event
from storage.event_store import EventStore


def find_conflicts(
    store: EventStore,
    room_id: str,
    candidate_start: datetime,
    candidate_end: datetime,
    exclude_event_id: Optional[str] = None
) -> List[Event]:
    """
    Return events in the room that overlap the candidate interval.

    Overlap rule: event.start < candidate_end and effective_end > candidate_start,
    where effective_end is event.end, or event.start for events without an end.
    Touching boundaries (end == start) are not conflicts. Other rooms are never
    considered.

    Args:
        store: Event store to read from
        room_id: Room to check
        candidate_start: Start of the proposed interval
        candidate_end: End of the proposed interval
        exclude_event_id: Event being moved or resized, ignored in the scan

    Returns:
        Conflicting events in store order
    """
    conflicts = []
    for event in store.get_events(room_id):
        if exclude_event_id is not None and event.id == exclude_event_id:
            continue
        effective_end = event.end or event.start
        if event.start < candidate_end and effective_end > candidate_start:
            conflicts.append(event)
    return conflicts


def overlaps(
    store: EventStore,
    room_id: str,
    candidate_start: datetime,
    candidate_end: datetime,
    exclude_event_id: Optional[str] = None
) -> bool:
    """True if the candidate interval conflicts with any event in the room."""
    return bool(find_conflicts(
        store, room_id, candidate_start, candidate_end, exclude_event_id
    ))
