"""HTTP client for the external events source system."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from processor.errors import (
    AuthError,
    MalformedResponseError,
    NotFoundError,
    SourceError,
    TransportError,
)

logger = logging.getLogger(__name__)


class SourceClient:
    """Client for the source system's events, attendees and user profiles."""

    DEFAULT_BASE_URL = "https://api.example-events.com/v1"
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        auth_scheme: str = 'Bearer',
        timeout: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the source client.

        Args:
            token: Credential presented on every call
            base_url: Base URL of the source API
            auth_scheme: Authorization header scheme presented with the token
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request for retryable failures
            retry_delay: Base delay in seconds for exponential backoff
            session: Optional requests session to reuse connections
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f"{auth_scheme} {token}",
            'Accept': 'application/json'
        })

    def list_events_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """
        List every event owned by a user, following pagination.

        Args:
            user_id: External user id

        Returns:
            List of event payloads
        """
        logger.info(f"Fetching events for user {user_id}")
        events = self._get_paginated(f"/users/{user_id}/events", 'events')
        logger.info(f"Fetched {len(events)} events for user {user_id}")
        return events

    def list_attendees(self, event_id: str) -> List[Dict[str, Any]]:
        """
        List every attendee registered for an event, following pagination.

        Args:
            event_id: External event id

        Returns:
            List of participant payloads
        """
        logger.info(f"Fetching attendees for event {event_id}")
        attendees = self._get_paginated(f"/events/{event_id}/attendees", 'attendees')
        logger.info(f"Fetched {len(attendees)} attendees for event {event_id}")
        return attendees

    def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        """
        Fetch one user's profile.

        Raises:
            NotFoundError: If the user does not exist upstream
        """
        logger.info(f"Fetching profile for user {user_id}")
        profile = self._request_json(f"/users/{user_id}")
        if not isinstance(profile, dict):
            raise MalformedResponseError(
                f"Expected an object for user {user_id}, got {type(profile).__name__}"
            )
        return profile

    def _get_paginated(self, path: str, key: str) -> List[Dict[str, Any]]:
        items = []
        params = {}

        while True:
            body = self._request_json(path, params=params)
            if not isinstance(body, dict) or not isinstance(body.get(key), list):
                raise MalformedResponseError(
                    f"Response from {path} has no '{key}' list"
                )
            items.extend(body[key])

            next_token = body.get('next_page_token')
            if not next_token:
                return items
            params = {'page_token': next_token}

    def _request_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """
        GET a JSON document with retry logic.

        Raises:
            TransportError: If all retry attempts fail
            SourceError: For other client errors, raised without retry
            AuthError: If the credential is rejected
            NotFoundError: If the resource does not exist
            MalformedResponseError: If the body is not JSON
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries):
            try:
                response = self._get(url, params)
            except SourceError as e:
                if not e.retryable:
                    raise
                if attempt < self.max_retries - 1:
                    # Calculate exponential backoff delay
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                    continue
                logger.error(
                    f"All {self.max_retries} retry attempts failed. Last error: {e}"
                )
                raise

            try:
                return response.json()
            except ValueError as e:
                raise MalformedResponseError(f"Invalid JSON from {url}: {e}") from e

    def _get(self, url: str, params: Optional[Dict[str, str]]) -> requests.Response:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"Credential rejected by {url} (HTTP {status})")
        if status == 404:
            raise NotFoundError(f"Not found: {url}")
        if status in self.RETRYABLE_STATUS_CODES:
            raise TransportError(f"HTTP {status} from {url}")

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise SourceError(str(e)) from e
        return response
