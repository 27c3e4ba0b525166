"""Unit tests for SourceClient."""
import pytest
import responses
from responses import matchers
from requests.exceptions import ConnectionError, Timeout

from client.source_client import SourceClient
from processor.errors import (
    AuthError,
    MalformedResponseError,
    NotFoundError,
    SourceError,
    TransportError,
)

BASE_URL = "https://api.example-events.com/v1"


@pytest.fixture
def client():
    return SourceClient(token='secret', base_url=BASE_URL, timeout=5, retry_delay=0)


class TestSourceClient:
    """Test cases for SourceClient class."""

    @responses.activate
    def test_list_events_follows_pagination(self, client):
        """Test pages are fetched until no next_page_token is returned."""
        responses.add(
            responses.GET,
            f"{BASE_URL}/users/u-1/events",
            json={'events': [{'id': 'e-1'}], 'next_page_token': 'page-2'},
            match=[matchers.query_param_matcher({})]
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/users/u-1/events",
            json={'events': [{'id': 'e-2'}]},
            match=[matchers.query_param_matcher({'page_token': 'page-2'})]
        )

        events = client.list_events_for_user('u-1')

        assert [event['id'] for event in events] == ['e-1', 'e-2']
        assert len(responses.calls) == 2

    @responses.activate
    def test_credential_presented_on_every_call(self):
        client = SourceClient(token='secret', base_url=BASE_URL, auth_scheme='Token')
        responses.add(
            responses.GET,
            f"{BASE_URL}/events/e-1/attendees",
            json={'attendees': []}
        )

        client.list_attendees('e-1')

        assert responses.calls[0].request.headers['Authorization'] == 'Token secret'

    @responses.activate
    def test_get_user_profile(self, client):
        responses.add(
            responses.GET,
            f"{BASE_URL}/users/u-1",
            json={'id': 'u-1', 'name': 'Ada'}
        )

        assert client.get_user_profile('u-1')['name'] == 'Ada'

    @responses.activate
    def test_retry_success_after_server_errors(self, client):
        """Test retry logic succeeds after initial failures."""
        responses.add(responses.GET, f"{BASE_URL}/events/e-1/attendees", status=500)
        responses.add(responses.GET, f"{BASE_URL}/events/e-1/attendees", status=503)
        responses.add(
            responses.GET,
            f"{BASE_URL}/events/e-1/attendees",
            json={'attendees': [{'id': 'p-1'}]}
        )

        attendees = client.list_attendees('e-1')

        assert len(attendees) == 1
        assert len(responses.calls) == 3

    @responses.activate
    def test_all_retries_fail(self, client):
        """Test that TransportError is raised when all retries fail."""
        for _ in range(3):
            responses.add(responses.GET, f"{BASE_URL}/users/u-1/events", status=502)

        with pytest.raises(TransportError):
            client.list_events_for_user('u-1')

        assert len(responses.calls) == 3

    @responses.activate
    def test_timeout_is_transport_error(self, client):
        for _ in range(3):
            responses.add(
                responses.GET,
                f"{BASE_URL}/users/u-1/events",
                body=Timeout("Request timed out")
            )

        with pytest.raises(TransportError):
            client.list_events_for_user('u-1')

        assert len(responses.calls) == 3

    @responses.activate
    def test_connection_error_is_transport_error(self):
        client = SourceClient(token='secret', base_url=BASE_URL, max_retries=1)
        responses.add(
            responses.GET,
            f"{BASE_URL}/users/u-1",
            body=ConnectionError("refused")
        )

        with pytest.raises(TransportError):
            client.get_user_profile('u-1')

    @responses.activate
    def test_throttling_is_retried(self, client):
        responses.add(responses.GET, f"{BASE_URL}/users/u-1", status=429)
        responses.add(responses.GET, f"{BASE_URL}/users/u-1", json={'id': 'u-1'})

        assert client.get_user_profile('u-1') == {'id': 'u-1'}
        assert len(responses.calls) == 2

    def test_retry_follows_retryable_flag(self, client, monkeypatch):
        """Test the retry decision reads the error's retryable flag."""
        error = SourceError('flaky upstream')
        error.retryable = True
        calls = []

        def failing_get(url, params):
            calls.append(url)
            raise error

        monkeypatch.setattr(client, '_get', failing_get)

        with pytest.raises(SourceError):
            client.get_user_profile('u-1')

        assert len(calls) == 3

    @responses.activate
    def test_auth_error_not_retried(self, client):
        responses.add(responses.GET, f"{BASE_URL}/users/u-1/events", status=401)

        with pytest.raises(AuthError):
            client.list_events_for_user('u-1')

        assert len(responses.calls) == 1

    @responses.activate
    def test_not_found(self, client):
        responses.add(responses.GET, f"{BASE_URL}/users/ghost", status=404)

        with pytest.raises(NotFoundError):
            client.get_user_profile('ghost')

    @responses.activate
    def test_other_client_errors_not_retried(self, client):
        responses.add(responses.GET, f"{BASE_URL}/users/u-1/events", status=400)

        with pytest.raises(SourceError) as excinfo:
            client.list_events_for_user('u-1')

        assert not isinstance(excinfo.value, TransportError)
        assert len(responses.calls) == 1

    @responses.activate
    def test_invalid_json(self, client):
        responses.add(
            responses.GET,
            f"{BASE_URL}/events/e-1/attendees",
            body="<html>oops</html>",
            status=200
        )

        with pytest.raises(MalformedResponseError):
            client.list_attendees('e-1')

    @responses.activate
    def test_missing_list_key(self, client):
        responses.add(
            responses.GET,
            f"{BASE_URL}/events/e-1/attendees",
            json={'participants': []}
        )

        with pytest.raises(MalformedResponseError):
            client.list_attendees('e-1')
