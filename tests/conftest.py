"""Shared fixtures for booking sync tests."""
from datetime import datetime, timezone

import pytest

from processor.models import Event

_DEFAULT = object()


def at(hour: int, minute: int = 0, day: int = 15) -> datetime:
    """UTC instant on 2030-01-<day>."""
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def make_event():
    """Factory for store events with sensible defaults."""
    def _make(
        event_id='evt-1',
        room_id='ROOM_1',
        start=None,
        end=_DEFAULT,
        title='Standup',
        attendees=('alice@x.com',),
        organizer='alice@x.com',
        description='',
        is_linked=False
    ):
        return Event(
            id=event_id,
            room_id=room_id,
            title=title,
            start=start or at(10),
            end=at(11) if end is _DEFAULT else end,
            attendees=frozenset(attendees),
            organizer=organizer,
            description=description,
            is_linked=is_linked
        )
    return _make
