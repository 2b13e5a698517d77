"""Unit tests for FreeBusyCache."""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from processor.errors import TransportError
from processor.models import BusyInterval
from storage.event_store import EventStore
from storage.ttl_cache import TTLCache
from sync.freebusy import FreeBusyCache


def at(hour, minute=0):
    return datetime(2030, 1, 15, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(make_event):
    store = EventStore()
    store.replace_room('ROOM_1', [
        make_event('early', start=at(7), end=at(9)),
        make_event('inside', start=at(10), end=at(11)),
        make_event('late', start=at(17), end=at(19)),
        make_event('instant', start=at(12), end=None),
        make_event('outside', start=at(20), end=at(21)),
    ])
    return store


@pytest.fixture
def client():
    client = Mock()
    client.query_freebusy.return_value = {
        'alice@x.com': [{'start': '2030-01-15T13:00:00Z', 'end': '2030-01-15T14:00:00Z'}]
    }
    return client


@pytest.fixture
def freebusy(store, client, clock):
    return FreeBusyCache(
        store=store,
        client=client,
        known_rooms=lambda: {'ROOM_1', 'ROOM_2'},
        cache=TTLCache(ttl_seconds=300, clock=clock)
    )


class TestFreeBusyCache:
    """Test cases for FreeBusyCache class."""

    async def test_merges_users_and_rooms(self, freebusy, client):
        """One remote call for the users; the room is computed locally and clipped."""
        result = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))

        assert result['alice@x.com'] == [BusyInterval(start=at(13), end=at(14))]
        assert result['ROOM_1'] == [
            BusyInterval(start=at(8), end=at(9)),
            BusyInterval(start=at(10), end=at(11)),
            BusyInterval(start=at(17), end=at(18)),
        ]
        client.query_freebusy.assert_called_once_with(
            '2030-01-15T08:00:00Z', '2030-01-15T18:00:00Z', ['alice@x.com']
        )

    async def test_rooms_only_makes_no_remote_call(self, freebusy, client):
        result = await freebusy.get_free_busy(['ROOM_2'], at(8), at(18))

        assert result == {'ROOM_2': []}
        client.query_freebusy.assert_not_called()

    async def test_missing_users_get_empty_lists(self, freebusy, client):
        result = await freebusy.get_free_busy(['bob@x.com', 'alice@x.com'], at(8), at(18))

        assert result['bob@x.com'] == []
        client.query_freebusy.assert_called_once_with(
            '2030-01-15T08:00:00Z', '2030-01-15T18:00:00Z', ['alice@x.com', 'bob@x.com']
        )

    async def test_second_call_within_ttl_is_served_from_cache(self, freebusy, client, store, clock):
        first = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))
        store.replace_room('ROOM_1', [])
        clock.now += 299

        second = await freebusy.get_free_busy(['ROOM_1', 'alice@x.com'], at(8), at(18))

        assert second == first
        assert client.query_freebusy.call_count == 1

    async def test_cached_result_is_not_shared_with_callers(self, freebusy, client):
        first = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))
        first['alice@x.com'].clear()
        del first['ROOM_1']

        second = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))
        second['ROOM_1'].append(BusyInterval(start=at(20), end=at(21)))
        third = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))

        assert second['alice@x.com'] == [BusyInterval(start=at(13), end=at(14))]
        assert len(third['ROOM_1']) == 3
        assert client.query_freebusy.call_count == 1

    async def test_expired_entry_is_requeried(self, freebusy, client, store, clock):
        first = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))
        store.replace_room('ROOM_1', [])
        client.query_freebusy.return_value = {}
        clock.now += 300

        second = await freebusy.get_free_busy(['alice@x.com', 'ROOM_1'], at(8), at(18))

        assert client.query_freebusy.call_count == 2
        assert second != first
        assert second == {'alice@x.com': [], 'ROOM_1': []}

    async def test_different_range_is_a_different_key(self, freebusy, client):
        await freebusy.get_free_busy(['alice@x.com'], at(8), at(18))
        await freebusy.get_free_busy(['alice@x.com'], at(8), at(19))

        assert client.query_freebusy.call_count == 2

    async def test_invalidate_forces_requery(self, freebusy, client):
        await freebusy.get_free_busy(['alice@x.com'], at(8), at(18))
        freebusy.invalidate()
        await freebusy.get_free_busy(['alice@x.com'], at(8), at(18))

        assert client.query_freebusy.call_count == 2

    async def test_remote_failure_is_not_cached(self, freebusy, client):
        client.query_freebusy.side_effect = TransportError("Request to /freebusy failed", "(500)")

        with pytest.raises(TransportError):
            await freebusy.get_free_busy(['alice@x.com'], at(8), at(18))

        assert len(freebusy.cache) == 0

    def test_cache_key_is_order_independent(self):
        key_a = FreeBusyCache.cache_key(['b', 'a', 'a'], at(8), at(9))
        key_b = FreeBusyCache.cache_key(['a', 'b'], at(8), at(9))

        assert key_a == key_b == (('a', 'b'), '2030-01-15T08:00:00Z', '2030-01-15T09:00:00Z')
