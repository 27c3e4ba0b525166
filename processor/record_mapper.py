"""Record mapper for validating and normalizing source payloads."""
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from processor.models import AddOn, Attendee, Creator, Event, SyncStatus

logger = logging.getLogger(__name__)


class RecordMapper:
    """Maps source-system payloads into store records."""

    MAX_TITLE_LENGTH = 200
    MAX_NAME_LENGTH = 200
    # Epoch values above this are taken to be milliseconds
    MILLISECONDS_THRESHOLD = 10 ** 11

    def map_events(
        self,
        payloads: List[Dict[str, Any]],
        creator_id: str,
        proposed_status: SyncStatus = SyncStatus.IN_PROGRESS
    ) -> List[Event]:
        """
        Map a list of source event payloads for one creator.

        Invalid payloads are skipped with a warning.

        Args:
            payloads: Event payloads as returned by the source
            creator_id: External id of the owning creator
            proposed_status: Status proposed for both flags; the store applies
                the transition rule so Completed flags are kept

        Returns:
            List of Event records
        """
        events = []

        for payload in payloads:
            try:
                event = self._map_single_event(payload, creator_id, proposed_status)
                if event:
                    events.append(event)
            except (TypeError, ValueError, OverflowError, AttributeError) as e:
                logger.warning(f"Failed to map event payload {payload!r}: {e}")
                continue

        logger.info(
            f"Mapped {len(events)} valid events out of "
            f"{len(payloads)} payloads for creator {creator_id}"
        )
        return events

    def map_attendees(
        self,
        payloads: List[Dict[str, Any]],
        event_id: str
    ) -> List[Attendee]:
        """
        Map a list of source attendee payloads for one event.

        Args:
            payloads: Participant payloads as returned by the source
            event_id: External id of the owning event

        Returns:
            List of Attendee records
        """
        attendees = []

        for payload in payloads:
            try:
                attendee = self._map_single_attendee(payload, event_id)
                if attendee:
                    attendees.append(attendee)
            except (TypeError, ValueError, OverflowError, AttributeError) as e:
                logger.warning(
                    f"Failed to map attendee payload for event {event_id}: {e}"
                )
                continue

        return attendees

    def map_creator(self, profile: Dict[str, Any]) -> Creator:
        """
        Map a source user profile into a Creator record.

        Raises:
            ValueError: If the profile has no id
        """
        user_id = self._clean_id(profile.get('id'))
        if not user_id:
            raise ValueError("User profile missing required field: id")

        name = profile.get('name')
        if not name:
            first = profile.get('first_name') or ''
            last = profile.get('last_name') or ''
            name = f"{first} {last}".strip()

        return Creator(
            user_id=user_id,
            name=(name or '')[:self.MAX_NAME_LENGTH],
            email=profile.get('email'),
            timezone=profile.get('timezone'),
            last_updated=int(time.time())
        )

    def _map_single_event(
        self,
        payload: Dict[str, Any],
        creator_id: str,
        proposed_status: SyncStatus
    ) -> Optional[Event]:
        event_id = self._clean_id(payload.get('id'))
        if not event_id:
            logger.warning("Event payload missing required field: id")
            return None

        end_timestamp = self.normalize_timestamp(payload.get('end_time'))
        if end_timestamp is None:
            logger.warning(
                f"Invalid end time for event {event_id}: {payload.get('end_time')!r}"
            )
            return None

        last_updated = int(time.time())
        add_ons = self._map_add_ons(
            payload.get('add_ons') or [],
            owner_key=AddOn.event_owner_key(event_id),
            event_id=event_id,
            participant_id=None,
            last_updated=last_updated
        )

        return Event(
            event_id=event_id,
            creator_id=creator_id,
            title=(payload.get('title') or payload.get('name') or '')[:self.MAX_TITLE_LENGTH],
            start_timestamp=self.normalize_timestamp(payload.get('start_time')),
            end_timestamp=end_timestamp,
            sync_status=proposed_status,
            cron_status=proposed_status,
            last_updated=last_updated,
            add_ons=add_ons
        )

    def _map_single_attendee(
        self,
        payload: Dict[str, Any],
        event_id: str
    ) -> Optional[Attendee]:
        participant_id = self._clean_id(payload.get('id'))
        if not participant_id:
            logger.warning(f"Attendee payload for event {event_id} missing id")
            return None

        last_updated = int(time.time())
        add_ons = self._map_add_ons(
            payload.get('add_ons') or [],
            owner_key=AddOn.attendee_owner_key(event_id, participant_id),
            event_id=event_id,
            participant_id=participant_id,
            last_updated=last_updated
        )

        return Attendee(
            event_id=event_id,
            participant_id=participant_id,
            name=(payload.get('name') or '')[:self.MAX_NAME_LENGTH],
            email=payload.get('email'),
            ticket_type=payload.get('ticket_type'),
            registered_at=self.normalize_timestamp(payload.get('registered_at')),
            last_updated=last_updated,
            add_ons=add_ons
        )

    def _map_add_ons(
        self,
        payloads: List[Dict[str, Any]],
        owner_key: str,
        event_id: str,
        participant_id: Optional[str],
        last_updated: int
    ) -> List[AddOn]:
        add_ons = []
        for payload in payloads:
            add_on_id = self._clean_id(payload.get('id'))
            if not add_on_id:
                logger.warning(f"Skipping add-on without id for {owner_key}")
                continue
            add_ons.append(AddOn(
                owner_key=owner_key,
                add_on_id=add_on_id,
                event_id=event_id,
                participant_id=participant_id,
                name=(payload.get('name') or '')[:self.MAX_NAME_LENGTH],
                quantity=int(payload.get('quantity', 1)),
                last_updated=last_updated
            ))
        return add_ons

    def normalize_timestamp(self, value: Any) -> Optional[int]:
        """
        Normalize a timestamp to UTC epoch seconds.

        Accepts epoch seconds, epoch milliseconds and ISO 8601 strings.
        Naive ISO strings are taken as UTC.

        Args:
            value: Raw timestamp value

        Returns:
            Epoch seconds or None if the value cannot be parsed
        """
        if value is None or value == '' or isinstance(value, bool):
            return None

        if isinstance(value, float) and not math.isfinite(value):
            return None

        if isinstance(value, (int, float)):
            if value > self.MILLISECONDS_THRESHOLD:
                value = value / 1000
            return int(value)

        if not isinstance(value, str):
            return None

        text = value.strip()
        if text.isdigit():
            return self.normalize_timestamp(int(text))

        if text.endswith('Z'):
            text = text[:-1] + '+00:00'

        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())

    def _clean_id(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None
