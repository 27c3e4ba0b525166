"""Per-creator reconciliation passes."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from processor.errors import ConcurrentSkip, ReconciliationError
from processor.models import (
    Creator,
    Event,
    PassFailure,
    PassResult,
    Scope,
    SyncStatus,
    Trigger,
)
from processor.record_mapper import RecordMapper
from sync.attendee_sync import AttendeeSyncWorker
from sync.status_guard import StatusGuard
from sync.user_resolver import UserResolver

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs reconciliation passes for creators.

    A pass is safe to run repeatedly, concurrently, or after a crash: every
    write is an upsert, status writes are monotonic, and each creator's pass
    ends with a sweep that completes any event still left InProgress.
    """

    def __init__(
        self,
        source_client,
        store,
        guard: Optional[StatusGuard] = None,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
        mapper: Optional[RecordMapper] = None
    ):
        self.source_client = source_client
        self.store = store
        self.guard = guard or StatusGuard(store)
        self.max_workers = max(1, max_workers)
        self.clock = clock
        self.mapper = mapper or RecordMapper()
        self.resolver = UserResolver(source_client, store, self.mapper)
        self.worker = AttendeeSyncWorker(source_client, store, self.mapper)

    def run_reconciliation_pass(
        self,
        scope: Scope,
        trigger: Trigger = Trigger.MANUAL,
        event_id: Optional[str] = None
    ) -> PassResult:
        """
        Reconcile every creator in scope.

        Args:
            scope: SingleUser or AllUsers
            trigger: Which caller started the pass; selects the owned flag
            event_id: Optional narrowing of live-event selection to one event

        Returns:
            PassResult with processed/skipped counts and failures
        """
        result = PassResult()

        try:
            creators = self.resolver.resolve(scope)
        except ReconciliationError as e:
            logger.error(
                f"Failed to resolve creators for {scope!r}: {e}",
                extra={'trigger': trigger.value, 'error_type': type(e).__name__}
            )
            user_id = getattr(scope, 'user_id', None)
            result.failures.append(self._failure(e, creator_id=user_id))
            return result

        for creator in creators:
            try:
                result.merge(self.run_pass(creator, trigger, event_id=event_id))
            except Exception as e:
                logger.error(
                    f"Pass for creator {creator.user_id} failed: {e}",
                    extra={'creator_id': creator.user_id, 'error_type': type(e).__name__},
                    exc_info=True
                )
                result.failures.append(self._failure(e, creator_id=creator.user_id))

        logger.info(
            f"Reconciliation pass finished for {len(creators)} creators",
            extra={
                'trigger': trigger.value,
                'processed_events': result.processed_events,
                'skipped_events': result.skipped_events,
                'swept_events': result.swept_events,
                'failures': len(result.failures)
            }
        )
        return result

    def run_pass(
        self,
        creator: Creator,
        trigger: Trigger,
        event_id: Optional[str] = None
    ) -> PassResult:
        """
        Reconcile one creator's events and their attendees.

        A failure refreshing the events list aborts the rest of the pass but
        never the final sweep.
        """
        result = PassResult(creators=1)
        pass_start = int(self.clock())

        try:
            self._refresh_events(creator, result)
            live_events = self.store.find_live_events(creator.user_id, pass_start)
            if event_id is not None:
                live_events = [e for e in live_events if e.event_id == event_id]
            self._sync_live_events(creator, live_events, trigger, result)
        except ReconciliationError as e:
            logger.error(
                f"Aborting pass for creator {creator.user_id}: {e}",
                extra={'creator_id': creator.user_id, 'error_type': type(e).__name__}
            )
            result.failures.append(self._failure(e, creator_id=creator.user_id))
        finally:
            self._sweep(creator, result)

        return result

    def _refresh_events(self, creator: Creator, result: PassResult) -> None:
        payloads = self.source_client.list_events_for_user(creator.user_id)
        events = self.mapper.map_events(payloads, creator.user_id)

        for event in events:
            try:
                self.store.upsert_event(event)
            except ReconciliationError as e:
                logger.error(
                    f"Failed to upsert event {event.event_id}: {e}",
                    extra={'creator_id': creator.user_id, 'event_id': event.event_id}
                )
                result.failures.append(
                    self._failure(e, creator_id=creator.user_id, event_id=event.event_id)
                )

    def _sync_live_events(
        self,
        creator: Creator,
        live_events: List[Event],
        trigger: Trigger,
        result: PassResult
    ) -> None:
        pending = []
        for event in live_events:
            if event.is_completed():
                logger.info(f"Skipping completed event {event.event_id}")
                result.skipped_events += 1
            else:
                pending.append(event)

        if not pending:
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as executor:
            futures = [
                (event, executor.submit(self._sync_event, event, trigger))
                for event in pending
            ]

            for event, future in futures:
                try:
                    future.result()
                    result.processed_events += 1
                except ConcurrentSkip:
                    logger.info(
                        f"Event {event.event_id} is already being processed, skipping",
                        extra={'event_id': event.event_id}
                    )
                    result.skipped_events += 1
                except Exception as e:
                    logger.error(
                        f"Failed to sync attendees for event {event.event_id}: {e}",
                        extra={
                            'creator_id': creator.user_id,
                            'event_id': event.event_id,
                            'error_type': type(e).__name__
                        }
                    )
                    result.failures.append(
                        self._failure(e, creator_id=creator.user_id, event_id=event.event_id)
                    )

    def _sync_event(self, event: Event, trigger: Trigger) -> None:
        with self.guard.guarded(event, trigger.status_field):
            self.worker.sync(event.event_id)

    def _sweep(self, creator: Creator, result: PassResult) -> None:
        # Events held by another pass in this process are finalized by that pass
        try:
            result.swept_events += self.store.bulk_set_completed(
                creator.user_id,
                exclude=self.guard.held_event_ids()
            )
        except ReconciliationError as e:
            logger.error(
                f"Sweep failed for creator {creator.user_id}, events may remain "
                f"{SyncStatus.IN_PROGRESS.value}: {e}",
                extra={'creator_id': creator.user_id, 'error_type': type(e).__name__}
            )
            result.failures.append(self._failure(e, creator_id=creator.user_id))

    def _failure(
        self,
        error: Exception,
        creator_id: Optional[str] = None,
        event_id: Optional[str] = None
    ) -> PassFailure:
        return PassFailure(
            creator_id=creator_id,
            event_id=event_id,
            error_type=type(error).__name__,
            message=str(error)
        )
