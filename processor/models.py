"""Data models for room booking synchronization."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class Room:
    """Bookable room as loaded from the remote room list."""
    id: str
    display_name: str
    sort_order: int
    color: str


@dataclass(frozen=True)
class Event:
    """Validated event held in the event store."""
    id: str
    room_id: str
    title: str
    start: datetime
    end: Optional[datetime]
    attendees: FrozenSet[str] = frozenset()
    organizer: Optional[str] = None
    description: str = ''
    is_linked: bool = False


@dataclass(frozen=True)
class BusyInterval:
    """Half-open busy interval for a free/busy participant."""
    start: datetime
    end: datetime


@dataclass
class User:
    """Entry of the remote user directory."""
    email: str
    name: Optional[str] = None


@dataclass
class ReplaceResult:
    """Differences applied by a whole-room replacement."""
    added: int
    updated: int
    removed: int


class MutationState(Enum):
    """Lifecycle of a single optimistic mutation."""
    IDLE = 'idle'
    VALIDATING = 'validating'
    OPTIMISTICALLY_APPLIED = 'optimistically_applied'
    AWAITING_SERVER = 'awaiting_server'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'


@dataclass
class EventChange:
    """Requested create/update carried through a mutation."""
    room_id: str
    event_id: Optional[str]
    title: str
    start: datetime
    end: datetime
    attendees: FrozenSet[str] = frozenset()
    description: str = ''


@dataclass(frozen=True)
class EventSnapshot:
    """Prior state of one event, taken before an optimistic change."""
    room_id: str
    event_id: Optional[str]
    event: Optional[Event]
    position: int
    generation: int


@dataclass
class PendingMutation:
    """In-flight optimistic mutation; discarded once settled."""
    correlation_id: str
    kind: str
    room_id: str
    snapshot: EventSnapshot
    change: Optional[EventChange] = None
    state: MutationState = MutationState.IDLE


@dataclass
class MutationOutcome:
    """Settled result of a mutation handed back to the caller."""
    correlation_id: str
    state: MutationState
    event_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)


FreeBusyMap = Dict[str, List[BusyInterval]]
