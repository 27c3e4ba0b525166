"""Per-event mutual exclusion and monotonic status transitions."""
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Set

from processor.errors import ConcurrentSkip
from processor.models import Event, SyncStatus

logger = logging.getLogger(__name__)


def transition(current: Optional[SyncStatus], proposed: SyncStatus) -> SyncStatus:
    """
    Apply the status transition rule to one flag.

    Completed is absorbing: once a flag is Completed every proposed value
    resolves to Completed. A missing flag takes the proposed value.
    """
    if current is SyncStatus.COMPLETED:
        return SyncStatus.COMPLETED
    return proposed


@dataclass(frozen=True)
class GuardToken:
    """Proof of holding the guard entry for one event."""
    event_id: str
    token_id: str


class StatusGuard:
    """In-process registry of events under reconciliation.

    Only protects passes running in this process. Another instance of the
    function can still write InProgress right after this one writes
    Completed; the per-creator sweep and the absorbing Completed rule are the
    only safety nets across processes. Closing that gap needs a distributed
    lock such as a lease item in the store.
    """

    def __init__(self, store):
        self._store = store
        self._lock = threading.Lock()
        self._held = {}

    def acquire(self, event_id: str) -> Optional[GuardToken]:
        """
        Try to take the guard entry for an event without blocking.

        Returns:
            GuardToken, or None if another pass in this process holds it
        """
        with self._lock:
            if event_id in self._held:
                return None
            token = GuardToken(event_id=event_id, token_id=uuid.uuid4().hex)
            self._held[event_id] = token
            return token

    def release(self, token: GuardToken) -> None:
        with self._lock:
            if self._held.get(token.event_id) == token:
                del self._held[token.event_id]
            else:
                logger.warning(f"Release of stale guard token for event {token.event_id}")

    def is_held(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._held

    def held_event_ids(self) -> Set[str]:
        with self._lock:
            return set(self._held)

    def write_status(self, event: Event, status_field: str, proposed: SyncStatus) -> SyncStatus:
        """
        Write one status flag through the transition rule.

        The rule is applied against the caller's view of the event first and
        again by the store against the stored value.

        Returns:
            The value the flag resolves to
        """
        current = getattr(event, status_field)
        resolved = transition(current, proposed)
        if current is SyncStatus.COMPLETED:
            return resolved

        if not self._store.set_status(event.event_id, status_field, resolved):
            resolved = SyncStatus.COMPLETED
        setattr(event, status_field, resolved)
        return resolved

    def complete(self, event: Event) -> None:
        """Finalize both flags of an event to Completed."""
        self._store.set_completed(event.event_id)
        event.sync_status = SyncStatus.COMPLETED
        event.cron_status = SyncStatus.COMPLETED

    @contextmanager
    def guarded(self, event: Event, status_field: str) -> Iterator[GuardToken]:
        """
        Hold the guard entry for an event across one fetch-upsert cycle.

        Marks `status_field` InProgress on entry. Every exit path completes
        both flags and then releases the entry.

        Raises:
            ConcurrentSkip: If the event is already held in this process
        """
        token = self.acquire(event.event_id)
        if token is None:
            raise ConcurrentSkip(event.event_id)

        try:
            self.write_status(event, status_field, SyncStatus.IN_PROGRESS)
            yield token
        finally:
            try:
                self.complete(event)
            finally:
                self.release(token)
