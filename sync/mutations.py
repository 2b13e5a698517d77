"""Optimistic create/update/delete coordination with rollback."""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, Optional

from client.booking_api import BookingApiClient
from processor.conflicts import overlaps
from processor.errors import (
    AuthExpiredError,
    ConflictError,
    TransportError,
    ValidationError,
)
from processor.event_processor import EventProcessor, ensure_utc
from processor.models import (
    Event,
    EventChange,
    MutationOutcome,
    MutationState,
    PendingMutation,
)
from storage.event_store import EventStore
from sync.auth_guard import ReauthGuard

logger = logging.getLogger(__name__)

DEFAULT_MOVE_DURATION = timedelta(minutes=30)


def can_edit(event: Event, user_email: Optional[str]) -> bool:
    """
    Whether the user may edit or delete the event.

    Linked events are mirrored from another calendar and are never editable.
    Otherwise the user must be an attendee or the organizer. Without a known
    user only the linked rule applies.
    """
    if event.is_linked:
        return False
    if user_email is None:
        return True
    return user_email in event.attendees or event.organizer == user_email


class MutationCoordinator:
    """
    Applies event changes locally before the server confirms them.

    Every mutation snapshots the event it touches first. A transport failure
    puts that one event back, unless a refresh replaced the room in the
    meantime, and is re-raised; nothing is retried. A successful commit is
    followed by a targeted refresh of the room.
    """

    def __init__(
        self,
        store: EventStore,
        client: BookingApiClient,
        refresh_room: Callable[[str], Awaitable[object]],
        guard: Optional[ReauthGuard] = None,
        processor: Optional[EventProcessor] = None,
        user_email: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Initialize the coordinator.

        Args:
            store: Event store to mutate
            client: API client for create/update/delete calls
            refresh_room: Coroutine function performing a targeted refresh
            guard: Re-authentication guard shared with the session
            processor: Payload processor used to build request bodies
            user_email: Signed-in user, used for permissions and as creator
            clock: Wall-clock source for the past-date check
        """
        self.store = store
        self.client = client
        self.refresh_room = refresh_room
        self.guard = guard or ReauthGuard()
        self.processor = processor or EventProcessor()
        self.user_email = user_email
        self.clock = clock
        self.pending: Dict[str, PendingMutation] = {}

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
        """
        Create a new event, or update an existing one when event_id is given.

        Args:
            room_id: Target room
            event_id: Existing event id, None to create
            title: Event title
            start: Event start
            end: Event end
            attendees: Attendee emails
            description: Free-text description

        Returns:
            MutationOutcome in the COMMITTED state

        Raises:
            ValidationError: Past creation, bad interval, conflict or permission
            TransportError: Remote call failed; local state was rolled back
            AuthExpiredError: Session must re-authenticate
        """
        change = EventChange(
            room_id=room_id,
            event_id=event_id,
            title=title,
            start=ensure_utc(start),
            end=ensure_utc(end),
            attendees=frozenset(a for a in attendees if a),
            description=description or ''
        )
        if event_id is None:
            return await self._create(change)

        existing = self._require_editable(room_id, event_id)
        return await self._update(existing, change, 'update')

    async def move_or_resize_event(
        self,
        room_id: str,
        event_id: str,
        new_start: datetime,
        new_end: Optional[datetime] = None
    ) -> MutationOutcome:
        """
        Move or resize an existing event, keeping its other fields.

        No past-date check applies here, unlike creation. A missing end
        defaults to a 30 minute duration.
        """
        existing = self._require_editable(room_id, event_id)
        new_start = ensure_utc(new_start)
        new_end = ensure_utc(new_end) if new_end else new_start + DEFAULT_MOVE_DURATION

        change = EventChange(
            room_id=room_id,
            event_id=event_id,
            title=existing.title,
            start=new_start,
            end=new_end,
            attendees=existing.attendees,
            description=existing.description
        )
        return await self._update(existing, change, 'move')

    async def delete_event(self, room_id: str, event_id: str) -> MutationOutcome:
        """
        Delete an event, removing it locally before the server confirms.

        Raises:
            ValidationError: Unknown, linked or foreign event
            TransportError: Remote call failed; the event was restored
            AuthExpiredError: Session must re-authenticate
        """
        pending = self._begin('delete', room_id, event_id)
        try:
            self._require_editable(room_id, event_id)
        except ValidationError:
            self._settle(pending)
            raise

        self.store.apply_local_remove(room_id, event_id)
        self._transition(pending, MutationState.OPTIMISTICALLY_APPLIED)

        await self._commit(
            pending, self.client.delete_event, room_id, event_id
        )
        return await self._finish(pending, event_id)

    async def _create(self, change: EventChange) -> MutationOutcome:
        pending = self._begin('create', change.room_id, None, change)
        try:
            if change.start < self.clock():
                raise ValidationError(
                    "Cannot create an event in the past", change.start.isoformat()
                )
            self._validate_interval(change)
        except ValidationError:
            self._settle(pending)
            raise

        payload = self.processor.to_payload(change, self.user_email)
        response = await self._commit(pending, self.client.create_event, payload)

        event_id = response.get('event_id') or response.get('id')
        if event_id:
            self.store.apply_local_insert(change.room_id, Event(
                id=str(event_id),
                room_id=change.room_id,
                title=change.title,
                start=change.start,
                end=change.end,
                attendees=frozenset(payload['participants']),
                organizer=self.user_email,
                description=change.description
            ))
        return await self._finish(pending, event_id)

    async def _update(self, existing: Event, change: EventChange, kind: str) -> MutationOutcome:
        pending = self._begin(kind, change.room_id, existing.id, change)
        try:
            self._validate_interval(change)
        except ValidationError:
            self._settle(pending)
            raise

        self.store.apply_local_update(change.room_id, Event(
            id=existing.id,
            room_id=existing.room_id,
            title=change.title,
            start=change.start,
            end=change.end,
            attendees=change.attendees,
            organizer=existing.organizer,
            description=change.description,
            is_linked=existing.is_linked
        ))
        self._transition(pending, MutationState.OPTIMISTICALLY_APPLIED)

        payload = self.processor.to_payload(change, self.user_email)
        await self._commit(pending, self.client.update_event, payload)
        return await self._finish(pending, existing.id)

    def _validate_interval(self, change: EventChange) -> None:
        if change.start >= change.end:
            raise ValidationError(
                "Event must end after it starts",
                f"{change.start.isoformat()} >= {change.end.isoformat()}"
            )
        if overlaps(self.store, change.room_id, change.start, change.end, change.event_id):
            raise ConflictError(
                "Time slot overlaps an existing event in that room", change.room_id
            )

    def _require_editable(self, room_id: str, event_id: str) -> Event:
        self.guard.check()
        event = self.store.get_event(room_id, event_id)
        if event is None:
            raise ValidationError("Unknown event", f"{event_id} in {room_id}")
        if event.is_linked:
            raise ValidationError(
                "Cannot edit a linked event directly. Edit the original event.", event_id
            )
        if not can_edit(event, self.user_email):
            raise ValidationError("You do not have permission to change this event", event_id)
        return event

    def _begin(
        self,
        kind: str,
        room_id: str,
        event_id: Optional[str],
        change: Optional[EventChange] = None
    ) -> PendingMutation:
        self.guard.check()
        pending = PendingMutation(
            correlation_id=uuid.uuid4().hex,
            kind=kind,
            room_id=room_id,
            snapshot=self.store.snapshot(room_id, event_id),
            change=change
        )
        self.pending[pending.correlation_id] = pending
        self._transition(pending, MutationState.VALIDATING)
        return pending

    async def _commit(self, pending: PendingMutation, call, *args) -> dict:
        """
        Run the remote call; on failure restore the snapshot and re-raise.

        If the session needed re-authentication while the call was in
        flight, the mutation is rolled back and fails with AuthExpiredError
        whatever the server answered.
        """
        self._transition(pending, MutationState.AWAITING_SERVER)
        try:
            response = await asyncio.to_thread(call, *args) or {}
        except AuthExpiredError as e:
            self._roll_back(pending)
            self.guard.trip(e)
            raise
        except TransportError as e:
            self._roll_back(pending)
            self.guard.check()
            logger.warning(
                f"Rolled back {pending.kind} in room {pending.room_id}: {e}",
                extra={'correlation_id': pending.correlation_id}
            )
            raise

        if self.guard.required:
            self._roll_back(pending)
            self.guard.check()
        return response

    def _roll_back(self, pending: PendingMutation) -> None:
        self.store.restore(pending.snapshot)
        self._transition(pending, MutationState.ROLLED_BACK)
        self._settle(pending)

    async def _finish(self, pending: PendingMutation, event_id: Optional[str]) -> MutationOutcome:
        self._transition(pending, MutationState.COMMITTED)
        self._settle(pending)
        logger.info(
            f"Committed {pending.kind} in room {pending.room_id}",
            extra={'correlation_id': pending.correlation_id, 'event_id': event_id}
        )

        try:
            await self.refresh_room(pending.room_id)
        except TransportError as e:
            # The poller reconciles the room on its next version change.
            logger.warning(f"Refresh after {pending.kind} of room {pending.room_id} failed: {e}")

        return MutationOutcome(
            correlation_id=pending.correlation_id,
            state=pending.state,
            event_id=event_id
        )

    def _transition(self, pending: PendingMutation, state: MutationState) -> None:
        logger.debug(
            f"Mutation {pending.correlation_id} {pending.state.value} -> {state.value}"
        )
        pending.state = state

    def _settle(self, pending: PendingMutation) -> None:
        self.pending.pop(pending.correlation_id, None)
