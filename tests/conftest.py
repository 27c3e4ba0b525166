"""Shared fixtures for DynamoDB-backed tests."""
import time

import boto3
import pytest
from boto3.dynamodb.conditions import Key
from moto import mock_aws

from processor.models import Event, SyncStatus
from storage.dynamodb_store import DynamoDBStore

TABLE_PREFIX = 'test-event-sync'


@pytest.fixture
def aws_env(monkeypatch):
    """Fake credentials and region for moto."""
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')


@pytest.fixture
def dynamodb_tables(aws_env):
    """Create mock DynamoDB tables for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName=f'{TABLE_PREFIX}-creators',
            KeySchema=[{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'user_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=f'{TABLE_PREFIX}-events',
            KeySchema=[{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'creator_id', 'AttributeType': 'S'},
                {'AttributeName': 'end_timestamp', 'AttributeType': 'N'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'creator-index',
                    'KeySchema': [
                        {'AttributeName': 'creator_id', 'KeyType': 'HASH'},
                        {'AttributeName': 'end_timestamp', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=f'{TABLE_PREFIX}-attendees',
            KeySchema=[
                {'AttributeName': 'event_id', 'KeyType': 'HASH'},
                {'AttributeName': 'participant_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'participant_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=f'{TABLE_PREFIX}-add-ons',
            KeySchema=[
                {'AttributeName': 'owner_key', 'KeyType': 'HASH'},
                {'AttributeName': 'add_on_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'owner_key', 'AttributeType': 'S'},
                {'AttributeName': 'add_on_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def store(dynamodb_tables):
    """Create DynamoDBStore instance with mock tables."""
    return DynamoDBStore(TABLE_PREFIX)


@pytest.fixture
def make_event():
    """Factory for Event records ending in the future by default."""
    def _make_event(
        event_id='event-1',
        creator_id='creator-1',
        end_offset=3600,
        sync_status=SyncStatus.IN_PROGRESS,
        cron_status=SyncStatus.IN_PROGRESS,
        add_ons=None
    ):
        now = int(time.time())
        return Event(
            event_id=event_id,
            creator_id=creator_id,
            title=f'Event {event_id}',
            start_timestamp=now,
            end_timestamp=now + end_offset,
            sync_status=sync_status,
            cron_status=cron_status,
            last_updated=now,
            add_ons=add_ons or []
        )
    return _make_event


@pytest.fixture
def attendee_items(dynamodb_tables):
    """Read raw attendee items of one event."""
    table = dynamodb_tables.Table(f'{TABLE_PREFIX}-attendees')

    def _attendee_items(event_id):
        response = table.query(KeyConditionExpression=Key('event_id').eq(event_id))
        return response['Items']
    return _attendee_items


@pytest.fixture
def add_on_items(dynamodb_tables):
    """Read raw add-on items of one owner key."""
    table = dynamodb_tables.Table(f'{TABLE_PREFIX}-add-ons')

    def _add_on_items(owner_key):
        response = table.query(KeyConditionExpression=Key('owner_key').eq(owner_key))
        return response['Items']
    return _add_on_items
