"""DynamoDB store for creators, events, attendees and add-ons."""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from processor.errors import StorageError
from processor.models import (
    STATUS_FIELDS,
    AddOn,
    Attendee,
    Creator,
    Event,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class DynamoDBStore:
    """Store backed by four DynamoDB tables sharing one name prefix.

    Every write is an upsert keyed by natural external ids. Status writes
    apply the absorbing-Completed transition inside the update expression so
    a racing writer cannot move a Completed flag back to InProgress.

    Reads through the creator index and table scans are eventually consistent.
    """

    CREATOR_INDEX = 'creator-index'

    def __init__(self, table_prefix: str, region_name: Optional[str] = None):
        """
        Initialize table names for the store.

        Args:
            table_prefix: Prefix shared by the four tables
            region_name: Optional AWS region override
        """
        self.table_prefix = table_prefix
        self.region_name = region_name
        self.table_names = {
            'creators': f"{table_prefix}-creators",
            'events': f"{table_prefix}-events",
            'attendees': f"{table_prefix}-attendees",
            'add_ons': f"{table_prefix}-add-ons",
        }
        # boto3 resources are not thread safe
        self._local = threading.local()
        logger.info(f"Initialized DynamoDBStore with table prefix: {table_prefix}")

    def _table(self, name: str):
        tables = getattr(self._local, 'tables', None)
        if tables is None:
            session = boto3.session.Session()
            dynamodb = session.resource('dynamodb', region_name=self.region_name)
            tables = {
                key: dynamodb.Table(table_name)
                for key, table_name in self.table_names.items()
            }
            self._local.tables = tables
        return tables[name]

    # Creators

    def upsert_creator(self, creator: Creator) -> None:
        """
        Create or replace a creator keyed by its external user id.

        Args:
            creator: Creator record to store
        """
        try:
            self._table('creators').put_item(Item=self._creator_to_item(creator))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error upserting creator {creator.user_id}: {e}") from e

    def get_creator(self, user_id: str) -> Optional[Creator]:
        """
        Read one creator.

        Args:
            user_id: External user id

        Returns:
            Creator record or None if unknown
        """
        try:
            response = self._table('creators').get_item(Key={'user_id': user_id})
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error reading creator {user_id}: {e}") from e
        item = response.get('Item')
        return self._item_to_creator(item) if item else None

    def list_creators(self) -> List[Creator]:
        """
        Retrieve all creators using a Scan operation.

        Returns:
            List of Creator records
        """
        logger.info("Scanning creators table")
        items = self._scan(self._table('creators'))
        creators = [self._item_to_creator(item) for item in items]
        logger.info(f"Retrieved {len(creators)} creators")
        return creators

    # Events

    def upsert_event(self, event: Event) -> None:
        """
        Create or update an event and its event-level add-ons.

        Descriptive fields are overwritten. Status flags follow the
        transition rule and attendee counters are only initialized.
        """
        names = {
            '#creator_id': 'creator_id',
            '#title': 'title',
            '#start_timestamp': 'start_timestamp',
            '#end_timestamp': 'end_timestamp',
            '#last_updated': 'last_updated',
            '#total_attendees': 'total_attendees',
            '#fetched_attendees': 'fetched_attendees',
        }
        values = {
            ':creator_id': event.creator_id,
            ':title': event.title,
            ':start_timestamp': event.start_timestamp,
            ':end_timestamp': event.end_timestamp,
            ':last_updated': event.last_updated,
            ':zero': 0,
        }
        clauses = [
            '#creator_id = :creator_id',
            '#title = :title',
            '#start_timestamp = :start_timestamp',
            '#end_timestamp = :end_timestamp',
            '#last_updated = :last_updated',
            '#total_attendees = if_not_exists(#total_attendees, :zero)',
            '#fetched_attendees = if_not_exists(#fetched_attendees, :zero)',
        ]
        for status_field in STATUS_FIELDS:
            clause, field_names, field_values = self._status_clause(
                status_field, getattr(event, status_field)
            )
            clauses.append(clause)
            names.update(field_names)
            values.update(field_values)

        try:
            self._table('events').update_item(
                Key={'event_id': event.event_id},
                UpdateExpression='SET ' + ', '.join(clauses),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error upserting event {event.event_id}: {e}") from e

        for add_on in event.add_ons:
            self.upsert_add_on(add_on)

    def get_event(self, event_id: str) -> Optional[Event]:
        """
        Read one event with a strongly consistent read.

        Args:
            event_id: External event id

        Returns:
            Event record or None if unknown
        """
        try:
            response = self._table('events').get_item(
                Key={'event_id': event_id},
                ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error reading event {event_id}: {e}") from e
        item = response.get('Item')
        return self._item_to_event(item) if item else None

    def find_live_events(self, creator_id: str, now: int) -> List[Event]:
        """
        Query a creator's events whose end timestamp is after `now`.

        Args:
            creator_id: External id of the creator
            now: Current time in epoch seconds

        Returns:
            List of live Event records
        """
        condition = (
            Key('creator_id').eq(creator_id) & Key('end_timestamp').gt(now)
        )
        items = self._query_creator_index(condition)
        return [self._item_to_event(item) for item in items]

    def find_creator_events(self, creator_id: str) -> List[Event]:
        """
        Query every event of a creator regardless of end time.

        Args:
            creator_id: External id of the creator

        Returns:
            List of Event records
        """
        items = self._query_creator_index(Key('creator_id').eq(creator_id))
        return [self._item_to_event(item) for item in items]

    def set_status(self, event_id: str, status_field: str, status: SyncStatus) -> bool:
        """
        Write one status flag through the transition rule.

        Returns:
            True if the stored flag now equals `status`, False if the write
            was absorbed by an already Completed flag or the event is unknown
        """
        if status is SyncStatus.COMPLETED:
            condition = 'attribute_exists(event_id)'
        else:
            condition = (
                'attribute_exists(event_id) AND '
                '(attribute_not_exists(#status) OR #status <> :completed)'
            )
        values = {':status': status.value}
        if status is SyncStatus.IN_PROGRESS:
            values[':completed'] = SyncStatus.COMPLETED.value

        try:
            self._table('events').update_item(
                Key={'event_id': event_id},
                UpdateExpression='SET #status = :status',
                ConditionExpression=condition,
                ExpressionAttributeNames={'#status': status_field},
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.debug(
                    f"Status write {status_field}={status.value} absorbed for event {event_id}"
                )
                return False
            raise StorageError(f"Error writing {status_field} for event {event_id}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Error writing {status_field} for event {event_id}: {e}") from e
        return True

    def set_completed(self, event_id: str) -> None:
        """Set both status flags of one event to Completed."""
        try:
            self._table('events').update_item(
                Key={'event_id': event_id},
                UpdateExpression='SET sync_status = :completed, cron_status = :completed',
                ConditionExpression='attribute_exists(event_id)',
                ExpressionAttributeValues={':completed': SyncStatus.COMPLETED.value}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Cannot complete unknown event {event_id}")
                return
            raise StorageError(f"Error completing event {event_id}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Error completing event {event_id}: {e}") from e

    def bulk_set_completed(
        self,
        creator_id: str,
        exclude: Iterable[str] = ()
    ) -> int:
        """
        Set both flags to Completed on every event of a creator still InProgress.

        Args:
            creator_id: External id of the creator
            exclude: Event ids to leave untouched

        Returns:
            Count of events that were completed

        Raises:
            StorageError: After attempting every pending event, if any of
                them could not be completed
        """
        excluded = set(exclude)
        pending = [
            event for event in self.find_creator_events(creator_id)
            if not event.is_completed() and event.event_id not in excluded
        ]

        completed = 0
        failed = []
        for event in pending:
            try:
                self.set_completed(event.event_id)
                completed += 1
            except StorageError as e:
                logger.error(
                    f"Failed to complete event {event.event_id} during sweep: {e}",
                    extra={'creator_id': creator_id, 'event_id': event.event_id}
                )
                failed.append(event.event_id)

        if completed:
            logger.info(
                f"Swept {completed} events to Completed for creator {creator_id}"
            )
        if failed:
            raise StorageError(
                f"Sweep left {len(failed)} events InProgress for creator "
                f"{creator_id}: {', '.join(failed)}"
            )
        return completed

    def update_attendee_counts(self, event_id: str, total: int, fetched: int) -> None:
        """
        Record the attendee counters of an event.

        Args:
            event_id: External event id
            total: Participants reported by the source
            fetched: Participants stored by this fetch

        Raises:
            StorageError: If the event does not exist or the write fails
        """
        try:
            self._table('events').update_item(
                Key={'event_id': event_id},
                UpdateExpression='SET total_attendees = :total, fetched_attendees = :fetched',
                ConditionExpression='attribute_exists(event_id)',
                ExpressionAttributeValues={':total': total, ':fetched': fetched}
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Error updating attendee counts for event {event_id}: {e}"
            ) from e

    # Attendees and add-ons

    def upsert_attendee(self, attendee: Attendee) -> None:
        """Create or replace an attendee and its add-ons."""
        try:
            self._table('attendees').put_item(Item=self._attendee_to_item(attendee))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Error upserting attendee {attendee.participant_id} "
                f"of event {attendee.event_id}: {e}"
            ) from e

        for add_on in attendee.add_ons:
            self.upsert_add_on(add_on)

    def upsert_add_on(self, add_on: AddOn) -> None:
        """
        Create or replace an add-on keyed by owner key and add-on id.

        Args:
            add_on: Event- or attendee-scoped AddOn record
        """
        try:
            self._table('add_ons').put_item(Item=self._add_on_to_item(add_on))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Error upserting add-on {add_on.add_on_id} for {add_on.owner_key}: {e}"
            ) from e

    # Helpers

    def _status_clause(self, status_field: str, status: SyncStatus):
        """
        Build the SET clause that writes `status` through the transition rule.

        Completed always wins; InProgress only fills an absent flag and
        otherwise keeps the stored value (InProgress or Completed).
        """
        name = f"#{status_field}"
        if status is SyncStatus.COMPLETED:
            return (
                f"{name} = :completed",
                {name: status_field},
                {':completed': SyncStatus.COMPLETED.value}
            )
        return (
            f"{name} = if_not_exists({name}, :in_progress)",
            {name: status_field},
            {':in_progress': SyncStatus.IN_PROGRESS.value}
        )

    def _query_creator_index(self, condition) -> List[Dict[str, Any]]:
        return self._query(
            self._table('events'),
            IndexName=self.CREATOR_INDEX,
            KeyConditionExpression=condition
        )

    def _query(self, table, **kwargs) -> List[Dict[str, Any]]:
        try:
            response = table.query(**kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error querying table {table.name}: {e}") from e
        return items

    def _scan(self, table) -> List[Dict[str, Any]]:
        try:
            response = table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error scanning table {table.name}: {e}") from e
        return items

    def _creator_to_item(self, creator: Creator) -> dict:
        item = {
            'user_id': creator.user_id,
            'name': creator.name,
            'last_updated': creator.last_updated
        }

        # Add optional fields if present
        if creator.email:
            item['email'] = creator.email
        if creator.timezone:
            item['timezone'] = creator.timezone

        return item

    def _item_to_creator(self, item: dict) -> Creator:
        return Creator(
            user_id=item['user_id'],
            name=item.get('name', ''),
            email=item.get('email'),
            timezone=item.get('timezone'),
            last_updated=int(item.get('last_updated', 0))
        )

    def _item_to_event(self, item: dict) -> Event:
        start = item.get('start_timestamp')
        return Event(
            event_id=item['event_id'],
            creator_id=item['creator_id'],
            title=item.get('title', ''),
            start_timestamp=int(start) if start is not None else None,
            end_timestamp=int(item['end_timestamp']),
            total_attendees=int(item.get('total_attendees', 0)),
            fetched_attendees=int(item.get('fetched_attendees', 0)),
            sync_status=SyncStatus(item.get('sync_status', SyncStatus.IN_PROGRESS.value)),
            cron_status=SyncStatus(item.get('cron_status', SyncStatus.IN_PROGRESS.value)),
            last_updated=int(item.get('last_updated', 0))
        )

    def _attendee_to_item(self, attendee: Attendee) -> dict:
        item = {
            'event_id': attendee.event_id,
            'participant_id': attendee.participant_id,
            'name': attendee.name,
            'last_updated': attendee.last_updated
        }

        if attendee.email:
            item['email'] = attendee.email
        if attendee.ticket_type:
            item['ticket_type'] = attendee.ticket_type
        if attendee.registered_at is not None:
            item['registered_at'] = attendee.registered_at

        return item

    def _add_on_to_item(self, add_on: AddOn) -> dict:
        item = {
            'owner_key': add_on.owner_key,
            'add_on_id': add_on.add_on_id,
            'event_id': add_on.event_id,
            'name': add_on.name,
            'quantity': add_on.quantity,
            'last_updated': add_on.last_updated
        }
        if add_on.participant_id:
            item['participant_id'] = add_on.participant_id
        return item

