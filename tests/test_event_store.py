"""Unit tests for EventStore."""
from dataclasses import replace
from datetime import datetime, timezone

from storage.event_store import EventStore


def at(hour, minute=0):
    return datetime(2030, 1, 15, hour, minute, tzinfo=timezone.utc)


class TestEventStore:
    """Test cases for EventStore class."""

    def test_unknown_room_is_empty(self):
        store = EventStore()

        assert store.get_events('missing') == []
        assert store.has_room('missing') is False

    def test_replace_room_first_load(self, make_event):
        store = EventStore()
        events = [make_event('a'), make_event('b')]

        result = store.replace_room('ROOM_1', events)

        assert result.added == 2
        assert result.updated == 0
        assert result.removed == 0
        assert store.get_events('ROOM_1') == events
        assert store.rooms() == ['ROOM_1']

    def test_replace_room_reports_diff_and_overwrites(self, make_event):
        """Test that replacement counts changes but installs the new list verbatim."""
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a'), make_event('b'), make_event('c')])

        new_events = [make_event('d'), make_event('b', title='Renamed'), make_event('a')]
        result = store.replace_room('ROOM_1', new_events)

        assert result.added == 1
        assert result.updated == 1
        assert result.removed == 1
        assert store.get_events('ROOM_1') == new_events

    def test_replace_room_does_not_touch_other_rooms(self, make_event):
        store = EventStore()
        other = [make_event('x', room_id='ROOM_2')]
        store.replace_room('ROOM_2', other)

        store.replace_room('ROOM_1', [make_event('a')])

        assert store.get_events('ROOM_2') == other

    def test_readers_get_copies(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a')])

        events = store.get_events('ROOM_1')
        events.clear()

        assert len(store.get_events('ROOM_1')) == 1

    def test_apply_local_insert(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a')])

        store.apply_local_insert('ROOM_1', make_event('b'))
        store.apply_local_insert('ROOM_1', make_event('a', title='Again'))

        assert [e.id for e in store.get_events('ROOM_1')] == ['b', 'a']
        assert store.get_event('ROOM_1', 'a').title == 'Again'

    def test_apply_local_update_keeps_position(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a'), make_event('b'), make_event('c')])

        updated = replace(store.get_event('ROOM_1', 'b'), title='Moved')
        assert store.apply_local_update('ROOM_1', updated) is True

        events = store.get_events('ROOM_1')
        assert [e.id for e in events] == ['a', 'b', 'c']
        assert events[1].title == 'Moved'

    def test_apply_local_update_unknown_event(self, make_event):
        store = EventStore()

        assert store.apply_local_update('ROOM_1', make_event('a')) is False
        assert store.get_events('ROOM_1') == []

    def test_apply_local_remove(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a'), make_event('b')])

        assert store.apply_local_remove('ROOM_1', 'a') is True
        assert store.apply_local_remove('ROOM_1', 'a') is False
        assert [e.id for e in store.get_events('ROOM_1')] == ['b']

    def test_restore_puts_back_only_the_snapshot_event(self, make_event):
        store = EventStore()
        original = [make_event('a'), make_event('b')]
        store.replace_room('ROOM_1', original)

        snapshot = store.snapshot('ROOM_1', 'a')
        store.apply_local_remove('ROOM_1', 'a')
        store.apply_local_insert('ROOM_1', make_event('c'))

        assert store.restore(snapshot) is True
        assert [e.id for e in store.get_events('ROOM_1')] == ['a', 'b', 'c']
        assert store.get_events('ROOM_1')[0] == original[0]

    def test_restore_undoes_local_update_in_place(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a'), make_event('b', start=at(12), end=at(13))])

        snapshot = store.snapshot('ROOM_1', 'b')
        store.apply_local_update('ROOM_1', make_event('b', start=at(15), end=at(16)))
        store.restore(snapshot)

        assert [(e.id, e.start) for e in store.get_events('ROOM_1')] == [('a', at(10)), ('b', at(12))]

    def test_restore_after_replace_keeps_server_state(self, make_event):
        store = EventStore()
        store.replace_room('ROOM_1', [make_event('a')])
        snapshot = store.snapshot('ROOM_1', 'a')
        store.apply_local_remove('ROOM_1', 'a')

        store.replace_room('ROOM_1', [make_event('b')])

        assert store.restore(snapshot) is False
        assert [e.id for e in store.get_events('ROOM_1')] == ['b']

    def test_replace_room_advances_generation(self, make_event):
        store = EventStore()
        assert store.generation('ROOM_1') == 0

        store.replace_room('ROOM_1', [make_event('a')])
        store.apply_local_remove('ROOM_1', 'a')

        assert store.generation('ROOM_1') == 1
