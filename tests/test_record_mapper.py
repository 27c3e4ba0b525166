"""Unit tests for RecordMapper."""
import pytest

from processor.models import AddOn, SyncStatus
from processor.record_mapper import RecordMapper


class TestRecordMapper:
    """Test cases for RecordMapper class."""

    def test_map_events_valid_event(self):
        mapper = RecordMapper()

        events = mapper.map_events([
            {
                'id': 'e-1',
                'title': 'Product Launch',
                'start_time': '2030-05-01T09:00:00Z',
                'end_time': '2030-05-01T11:00:00Z',
                'add_ons': [{'id': 'lunch', 'name': 'Lunch', 'quantity': 2}]
            }
        ], creator_id='u-1')

        assert len(events) == 1
        event = events[0]
        assert event.event_id == 'e-1'
        assert event.creator_id == 'u-1'
        assert event.title == 'Product Launch'
        assert event.end_timestamp - event.start_timestamp == 7200
        assert event.sync_status is SyncStatus.IN_PROGRESS
        assert event.cron_status is SyncStatus.IN_PROGRESS
        assert event.add_ons[0].owner_key == AddOn.event_owner_key('e-1')
        assert event.add_ons[0].quantity == 2
        assert event.add_ons[0].participant_id is None

    def test_map_events_skips_invalid_payloads(self):
        """Test that events missing id or end time are skipped."""
        mapper = RecordMapper()

        events = mapper.map_events([
            {'title': 'No id', 'end_time': 1900000000},
            {'id': 'e-2', 'title': 'No end'},
            {'id': 'e-3', 'end_time': 'next tuesday'},
            {'id': 'e-4', 'end_time': 1900000000},
        ], creator_id='u-1')

        assert [event.event_id for event in events] == ['e-4']

    def test_map_events_skips_non_finite_end_time(self):
        mapper = RecordMapper()

        events = mapper.map_events([
            {'id': 'bad', 'end_time': float('inf')},
            {'id': 'good', 'end_time': 1900000000},
        ], creator_id='u-1')

        assert [event.event_id for event in events] == ['good']

    def test_map_attendees_skips_infinite_quantity(self):
        mapper = RecordMapper()

        attendees = mapper.map_attendees([
            {'id': 'p-1', 'add_ons': [{'id': 'a', 'quantity': float('inf')}]},
            {'id': 'p-2'}
        ], event_id='e-1')

        assert [attendee.participant_id for attendee in attendees] == ['p-2']

    def test_map_events_truncates_title(self):
        mapper = RecordMapper()

        events = mapper.map_events(
            [{'id': 42, 'title': 'x' * 500, 'end_time': 1900000000}],
            creator_id='u-1'
        )

        assert events[0].event_id == '42'
        assert len(events[0].title) == RecordMapper.MAX_TITLE_LENGTH

    def test_map_attendees_with_add_ons(self):
        mapper = RecordMapper()

        attendees = mapper.map_attendees([
            {
                'id': 'p-1',
                'name': 'Grace',
                'email': 'grace@example.com',
                'ticket_type': 'VIP',
                'registered_at': 1700000000000,
                'add_ons': [{'id': 'parking', 'name': 'Parking'}, {'name': 'no id'}]
            },
            {'name': 'Anonymous'}
        ], event_id='e-1')

        assert len(attendees) == 1
        attendee = attendees[0]
        assert attendee.registered_at == 1700000000
        assert len(attendee.add_ons) == 1
        assert attendee.add_ons[0].owner_key == 'attendee#e-1#p-1'
        assert attendee.add_ons[0].quantity == 1

    def test_map_attendees_skips_bad_quantity(self):
        mapper = RecordMapper()

        attendees = mapper.map_attendees([
            {'id': 'p-1', 'add_ons': [{'id': 'a', 'quantity': 'lots'}]},
            {'id': 'p-2'}
        ], event_id='e-1')

        assert [attendee.participant_id for attendee in attendees] == ['p-2']

    def test_map_creator_builds_name(self):
        mapper = RecordMapper()

        creator = mapper.map_creator({
            'id': 'u-1',
            'first_name': 'Ada',
            'last_name': 'Lovelace',
            'email': 'ada@example.com'
        })

        assert creator.user_id == 'u-1'
        assert creator.name == 'Ada Lovelace'

    def test_map_creator_requires_id(self):
        with pytest.raises(ValueError):
            RecordMapper().map_creator({'name': 'Nobody'})

    @pytest.mark.parametrize('value,expected', [
        (1700000000, 1700000000),
        (1700000000000, 1700000000),
        ('1700000000', 1700000000),
        ('2023-11-14T22:13:20Z', 1700000000),
        ('2023-11-14T23:13:20+01:00', 1700000000),
        ('2023-11-14T22:13:20', 1700000000),
        ('', None),
        (None, None),
        (True, None),
        ('not a date', None),
        (float('inf'), None),
        (float('-inf'), None),
        (float('nan'), None),
    ])
    def test_normalize_timestamp(self, value, expected):
        assert RecordMapper().normalize_timestamp(value) == expected
