"""Data models for event, attendee and add-on reconciliation."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class SyncStatus(str, Enum):
    """Completion flag value. COMPLETED is absorbing."""
    IN_PROGRESS = 'InProgress'
    COMPLETED = 'Completed'


class Trigger(str, Enum):
    """Which caller started a pass; decides the status flag it owns."""
    MANUAL = 'manual'
    PERIODIC = 'periodic'

    @property
    def status_field(self) -> str:
        return 'cron_status' if self is Trigger.PERIODIC else 'sync_status'


STATUS_FIELDS = ('sync_status', 'cron_status')


@dataclass
class Creator:
    """Source-system user whose events are reconciled."""
    user_id: str
    name: str
    email: Optional[str]
    timezone: Optional[str]
    last_updated: int


@dataclass
class AddOn:
    """Extra entitlement scoped to an event or to one attendee."""
    owner_key: str
    add_on_id: str
    event_id: str
    participant_id: Optional[str]
    name: str
    quantity: int
    last_updated: int

    @staticmethod
    def event_owner_key(event_id: str) -> str:
        return f'event#{event_id}'

    @staticmethod
    def attendee_owner_key(event_id: str, participant_id: str) -> str:
        return f'attendee#{event_id}#{participant_id}'


@dataclass
class Event:
    """Schedulable occasion owned by a creator."""
    event_id: str
    creator_id: str
    title: str
    start_timestamp: Optional[int]
    end_timestamp: int
    total_attendees: int = 0
    fetched_attendees: int = 0
    sync_status: SyncStatus = SyncStatus.IN_PROGRESS
    cron_status: SyncStatus = SyncStatus.IN_PROGRESS
    last_updated: int = 0
    add_ons: List[AddOn] = field(default_factory=list)

    def is_completed(self) -> bool:
        return (
            self.sync_status is SyncStatus.COMPLETED and
            self.cron_status is SyncStatus.COMPLETED
        )


@dataclass
class Attendee:
    """Registrant of exactly one event."""
    event_id: str
    participant_id: str
    name: str
    email: Optional[str]
    ticket_type: Optional[str]
    registered_at: Optional[int]
    last_updated: int
    add_ons: List[AddOn] = field(default_factory=list)


@dataclass(frozen=True)
class SingleUser:
    """Pass scope: one explicit creator."""
    user_id: str


@dataclass(frozen=True)
class AllUsers:
    """Pass scope: every creator currently known to the store."""


Scope = Union[SingleUser, AllUsers]


@dataclass
class AttendeeSyncResult:
    """Counts reported by one attendee fetch."""
    fetched_count: int
    total_count: int


@dataclass
class PassFailure:
    """One failure observed during a pass."""
    creator_id: Optional[str]
    event_id: Optional[str]
    error_type: str
    message: str


@dataclass
class PassResult:
    """Result of a reconciliation pass."""
    processed_events: int = 0
    skipped_events: int = 0
    swept_events: int = 0
    creators: int = 0
    failures: List[PassFailure] = field(default_factory=list)

    def merge(self, other: 'PassResult') -> None:
        self.processed_events += other.processed_events
        self.skipped_events += other.skipped_events
        self.swept_events += other.swept_events
        self.creators += other.creators
        self.failures.extend(other.failures)
