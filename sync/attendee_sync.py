"""Attendee roster synchronization for a single event."""
import logging

from processor.models import AttendeeSyncResult
from processor.record_mapper import RecordMapper

logger = logging.getLogger(__name__)


class AttendeeSyncWorker:
    """Fetches one event's attendees and upserts them with their add-ons.

    The worker never decides final status; failures propagate to the caller,
    which finalizes the event through the status guard.
    """

    def __init__(self, source_client, store, mapper: RecordMapper = None):
        self.source_client = source_client
        self.store = store
        self.mapper = mapper or RecordMapper()

    def sync(self, event_id: str) -> AttendeeSyncResult:
        """
        Fetch and upsert the attendee roster of one event.

        Args:
            event_id: External event id

        Returns:
            AttendeeSyncResult with fetched and total counts

        Raises:
            SourceError: If the attendee list cannot be fetched
            StorageError: If an upsert or the counter update fails
        """
        payloads = self.source_client.list_attendees(event_id)
        attendees = self.mapper.map_attendees(payloads, event_id)

        total = len(payloads)
        fetched = 0
        try:
            for attendee in attendees:
                self.store.upsert_attendee(attendee)
                fetched += 1
        finally:
            # Record partial progress even when an upsert fails
            self.store.update_attendee_counts(event_id, total=total, fetched=fetched)

        if fetched < total:
            logger.warning(
                f"Synced {fetched} of {total} attendees for event {event_id}",
                extra={'event_id': event_id, 'fetched': fetched, 'total': total}
            )
        else:
            logger.info(
                f"Synced {fetched} attendees for event {event_id}",
                extra={'event_id': event_id, 'fetched': fetched, 'total': total}
            )
        return AttendeeSyncResult(fetched_count=fetched, total_count=total)
