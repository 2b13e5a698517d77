"""Event processor for validating and normalizing remote booking payloads."""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from processor.models import (
    BusyInterval,
    Event,
    EventChange,
    FreeBusyMap,
    Room,
    User,
)

logger = logging.getLogger(__name__)


ROOM_COLOR_PALETTE = [
    '#F16B61', '#3B76C2', '#EC8670', '#009688',
    '#AD1457', '#E67E22', '#8E44AD', '#757575'
]
DEFAULT_SORT_ORDER = 9999


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 instant or all-day date into an aware UTC datetime.

    Args:
        value: String such as "2024-01-15T10:00:00Z" or "2024-01-15"

    Returns:
        Aware datetime or None if the value is empty or unparseable
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'

    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_instant(value: datetime) -> str:
    """Format a datetime as a UTC ISO-8601 string with a trailing Z."""
    return ensure_utc(value).strftime('%Y-%m-%dT%H:%M:%SZ')


class EventProcessor:
    """Processor for validating and normalizing booking payloads."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def process_events(self, room_id: str, raw_events: Iterable[Dict[str, Any]]) -> List[Event]:
        """
        Process and validate raw event data for one room.

        Server order is preserved; invalid records are skipped.

        Args:
            room_id: Room the events belong to
            raw_events: Event dicts from the /room_data payload

        Returns:
            List of validated Event objects
        """
        raw_events = list(raw_events)
        processed_events = []

        for raw in raw_events:
            try:
                event = self._process_single_event(room_id, raw)
                if event:
                    processed_events.append(event)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(
                    f"Failed to process event {raw!r:.80} in room {room_id}: {e}"
                )
                continue

        if len(processed_events) != len(raw_events):
            logger.info(
                f"Processed {len(processed_events)} valid events out of "
                f"{len(raw_events)} total events for room {room_id}"
            )
        return processed_events

    def _process_single_event(self, room_id: str, raw: Dict[str, Any]) -> Optional[Event]:
        """
        Process a single raw event.

        Args:
            room_id: Room the event belongs to
            raw: Raw event dict

        Returns:
            Event object or None if validation fails
        """
        if not self._validate_required_fields(raw):
            return None

        start = parse_instant(raw.get('start'))
        if not start:
            logger.warning(
                f"Invalid start for event '{raw.get('id')}': {raw.get('start')}"
            )
            return None

        end = None
        if raw.get('end'):
            end = parse_instant(raw['end'])
            if not end:
                logger.warning(
                    f"Invalid end for event '{raw.get('id')}': {raw.get('end')}"
                )
                return None
            if end <= start:
                logger.warning(
                    f"Event '{raw.get('id')}' ends before it starts; skipping"
                )
                return None

        extended = raw.get('extendedProps') or {}
        description = extended.get('description', raw.get('description')) or ''

        return Event(
            id=str(raw['id']),
            room_id=room_id,
            title=(raw.get('title') or '')[:self.MAX_TITLE_LENGTH],
            start=start,
            end=end,
            attendees=self._normalize_attendees(raw.get('attendees')),
            organizer=extended.get('organizer', raw.get('organizer')) or None,
            description=self._normalize_description(description),
            is_linked=self._normalize_flag(
                extended.get('is_linked', raw.get('is_linked'))
            )
        )

    def _validate_required_fields(self, raw: Dict[str, Any]) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            raw: Raw event dict

        Returns:
            True if valid, False otherwise
        """
        if not raw.get('id'):
            logger.warning("Event missing required field: id")
            return False

        if not raw.get('start'):
            logger.warning(f"Event '{raw['id']}' missing required field: start")
            return False

        return True

    def _normalize_attendees(self, attendees: Any) -> frozenset:
        """Accept a list of emails or of {"email": ...} dicts."""
        emails = set()
        for attendee in attendees or []:
            if isinstance(attendee, dict):
                attendee = attendee.get('email')
            if attendee and str(attendee).strip():
                emails.add(str(attendee).strip())
        return frozenset(emails)

    def _normalize_description(self, description: str) -> str:
        """
        Convert an HTML description to plain text and truncate it.

        Args:
            description: Raw description, possibly HTML

        Returns:
            Plain-text description
        """
        if '<' in description:
            soup = BeautifulSoup(description, 'html.parser')
            description = soup.get_text(separator='\n', strip=True)
        return description[:self.MAX_DESCRIPTION_LENGTH]

    def _normalize_flag(self, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() == 'true'
        return bool(value)

    def process_rooms(self, raw_rooms: Iterable[Dict[str, Any]]) -> List[Room]:
        """
        Build Room objects, deriving colour and sort order once at load.

        Args:
            raw_rooms: Room dicts from the /rooms payload

        Returns:
            List of Room objects in server order
        """
        rooms = []
        for index, raw in enumerate(raw_rooms):
            if not raw.get('id'):
                logger.warning("Room missing required field: id")
                continue
            sort_order = raw.get('sortOrder')
            rooms.append(Room(
                id=raw['id'],
                display_name=raw.get('summary') or raw.get('displayName') or raw['id'],
                sort_order=int(sort_order) if sort_order is not None else DEFAULT_SORT_ORDER,
                color=ROOM_COLOR_PALETTE[index % len(ROOM_COLOR_PALETTE)]
            ))
        return rooms

    def process_users(self, raw_users: Iterable[Dict[str, Any]]) -> List[User]:
        """Build the user directory, skipping entries without an email."""
        return [
            User(email=raw['email'], name=raw.get('name'))
            for raw in raw_users
            if raw.get('email')
        ]

    def process_busy(self, raw_freebusy: Dict[str, Any]) -> FreeBusyMap:
        """
        Convert a /freebusy response body into busy intervals per participant.

        Args:
            raw_freebusy: Mapping of email to [{"start", "end"}] dicts

        Returns:
            Mapping of participant id to ordered BusyInterval list
        """
        result: FreeBusyMap = {}
        for participant, slots in (raw_freebusy or {}).items():
            intervals = []
            for slot in slots or []:
                start = parse_instant(slot.get('start'))
                end = parse_instant(slot.get('end'))
                if start and end and start < end:
                    intervals.append(BusyInterval(start=start, end=end))
                else:
                    logger.warning(f"Skipping malformed busy slot for {participant}: {slot}")
            result[participant] = intervals
        return result

    def to_payload(self, change: EventChange, creator_email: Optional[str] = None) -> Dict[str, Any]:
        """
        Serialize a requested change into a create/update request body.

        The creator is always added to the participants.

        Args:
            change: Requested event change
            creator_email: Email of the signed-in user

        Returns:
            JSON-ready request body
        """
        participants = set(change.attendees)
        if creator_email:
            participants.add(creator_email)

        payload = {
            'calendarId': change.room_id,
            'title': change.title,
            'start': format_instant(change.start),
            'end': format_instant(change.end),
            'participants': sorted(p for p in participants if p and p.strip()),
            'description': change.description or ''
        }
        if change.event_id:
            payload['eventId'] = change.event_id
        return payload
