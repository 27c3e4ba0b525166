"""AWS Lambda handler for event and attendee reconciliation."""
import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import boto3

from client.source_client import SourceClient
from processor.errors import NotFoundError, StorageError
from processor.models import AllUsers, PassFailure, PassResult, SingleUser, Trigger
from storage.dynamodb_store import DynamoDBStore
from sync.orchestrator import SyncOrchestrator
from sync.status_guard import StatusGuard

RECONCILE_ACTION = 'reconcile'

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


@dataclass
class Settings:
    """Configuration read from environment variables."""
    table_prefix: str = 'event-sync'
    log_level: str = 'INFO'
    source_api_url: str = SourceClient.DEFAULT_BASE_URL
    source_api_token: str = ''
    source_auth_scheme: str = 'Bearer'
    timeout_seconds: int = 30
    max_retries: int = 3
    max_workers: int = 4
    worker_function_name: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            table_prefix=os.environ.get('TABLE_PREFIX', 'event-sync'),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            source_api_url=os.environ.get('SOURCE_API_URL', SourceClient.DEFAULT_BASE_URL),
            source_api_token=os.environ.get('SOURCE_API_TOKEN', ''),
            source_auth_scheme=os.environ.get('SOURCE_AUTH_SCHEME', 'Bearer'),
            timeout_seconds=_int_env('TIMEOUT_SECONDS', 30),
            max_retries=_int_env('MAX_RETRIES', 3),
            max_workers=_int_env('MAX_WORKERS', 4),
            worker_function_name=os.environ.get('WORKER_FUNCTION_NAME') or None
        )


# Shared by every pass running in this container
_guards: Dict[str, StatusGuard] = {}


def get_guard(store: DynamoDBStore) -> StatusGuard:
    """Return the process-wide status guard for a table prefix."""
    guard = _guards.get(store.table_prefix)
    if guard is None:
        guard = _guards.setdefault(store.table_prefix, StatusGuard(store))
    return guard


def build_orchestrator(settings: Settings) -> SyncOrchestrator:
    """Instantiate the engine components from settings."""
    store = DynamoDBStore(table_prefix=settings.table_prefix)
    source_client = SourceClient(
        token=settings.source_api_token,
        base_url=settings.source_api_url,
        auth_scheme=settings.source_auth_scheme,
        timeout=settings.timeout_seconds,
        max_retries=settings.max_retries
    )
    return SyncOrchestrator(
        source_client=source_client,
        store=store,
        guard=get_guard(store),
        max_workers=settings.max_workers
    )


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def _pass_response(result: PassResult, duration: float) -> Dict[str, Any]:
    return _response(200, {
        'message': 'Reconciliation pass completed',
        'statistics': {
            'creators': result.creators,
            'processed_events': result.processed_events,
            'skipped_events': result.skipped_events,
            'swept_events': result.swept_events,
            'duration_seconds': round(duration, 2)
        },
        'failures': [asdict(failure) for failure in result.failures]
    })


def run_worker(payload: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """
    Run one reconciliation pass described by a worker payload.

    Args:
        payload: {'action': 'reconcile', 'scope': {...}, 'trigger': ..., 'event_id': ...}
        settings: Runtime settings

    Returns:
        Response dict with statusCode and pass statistics
    """
    start_time = time.time()
    trigger = Trigger(payload.get('trigger', Trigger.MANUAL.value))
    scope_data = payload.get('scope') or {}
    event_id = payload.get('event_id')

    orchestrator = build_orchestrator(settings)

    if event_id and not scope_data.get('user_id'):
        try:
            event = orchestrator.store.get_event(event_id)
        except StorageError as e:
            logger.error(f"Failed to look up event {event_id}: {e}", exc_info=True)
            failure = PassFailure(None, event_id, type(e).__name__, str(e))
            return _pass_response(PassResult(failures=[failure]), time.time() - start_time)

        if event is None:
            logger.warning(f"Cannot reconcile unknown event {event_id}")
            failure = PassFailure(
                None, event_id, NotFoundError.__name__, f"Unknown event {event_id}"
            )
            return _pass_response(PassResult(failures=[failure]), time.time() - start_time)

        scope_data = {'user_id': event.creator_id}

    if scope_data.get('user_id'):
        scope = SingleUser(user_id=scope_data['user_id'])
    else:
        scope = AllUsers()

    logger.info(
        f"Running reconciliation pass",
        extra={'scope': repr(scope), 'trigger': trigger.value, 'event_id': event_id}
    )
    result = orchestrator.run_reconciliation_pass(scope, trigger, event_id=event_id)
    return _pass_response(result, time.time() - start_time)


def dispatch_worker(
    payload: Dict[str, Any],
    settings: Settings,
    context: Any
) -> None:
    """Invoke the worker asynchronously so the request returns immediately."""
    function_name = settings.worker_function_name or context.function_name
    lambda_client = boto3.client('lambda')
    lambda_client.invoke(
        FunctionName=function_name,
        InvocationType='Event',
        Payload=json.dumps(payload).encode('utf-8')
    )
    logger.info(
        f"Dispatched reconciliation worker",
        extra={'function_name': function_name, 'payload': payload}
    )


_CREATOR_SYNC_ROUTE = re.compile(r'^/creators/(?P<user_id>[^/]+)/sync/?$')
_EVENT_SYNC_ROUTE = re.compile(r'^/events/(?P<event_id>[^/]+)/sync/?$')
_CREATORS_ROUTE = re.compile(r'^/creators/?$')


def _route_request(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an API Gateway request to a worker payload.

    Returns:
        Worker payload, or a response dict (marked with 'statusCode') for
        requests that cannot be routed
    """
    method = (event.get('httpMethod') or
              event.get('requestContext', {}).get('http', {}).get('method', '')).upper()
    path = event.get('path') or event.get('rawPath') or ''

    if method != 'POST':
        return _response(405, {'message': f'Method {method} not allowed'})

    match = _CREATOR_SYNC_ROUTE.match(path)
    if match:
        return {
            'action': RECONCILE_ACTION,
            'scope': {'user_id': match.group('user_id')},
            'trigger': Trigger.MANUAL.value
        }

    match = _EVENT_SYNC_ROUTE.match(path)
    if match:
        return {
            'action': RECONCILE_ACTION,
            'scope': {},
            'trigger': Trigger.MANUAL.value,
            'event_id': match.group('event_id')
        }

    if _CREATORS_ROUTE.match(path):
        try:
            body = json.loads(event.get('body') or '{}')
        except ValueError:
            return _response(400, {'message': 'Request body must be JSON'})
        user_id = body.get('user_id') if isinstance(body, dict) else None
        if not user_id:
            return _response(400, {'message': 'user_id is required'})
        return {
            'action': RECONCILE_ACTION,
            'scope': {'user_id': str(user_id)},
            'trigger': Trigger.MANUAL.value
        }

    return _response(404, {'message': f'No route for {path}'})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for reconciliation triggers.

    Handles the EventBridge schedule (periodic pass over all creators),
    API Gateway requests (acknowledged with 202, then run asynchronously)
    and the asynchronous worker invocation itself.

    Args:
        event: EventBridge, API Gateway or worker payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and body
    """
    settings = Settings.from_env()

    # Initialize logging
    setup_logging(settings.log_level)

    start_time = time.time()

    try:
        if event.get('action') == RECONCILE_ACTION:
            return run_worker(event, settings)

        if event.get('source') == 'aws.events':
            logger.info(
                f"Lambda execution started",
                extra={'trigger': Trigger.PERIODIC.value, 'table_prefix': settings.table_prefix}
            )
            return run_worker({
                'action': RECONCILE_ACTION,
                'scope': {},
                'trigger': Trigger.PERIODIC.value
            }, settings)

        routed = _route_request(event)
        if 'statusCode' in routed:
            return routed

        dispatch_worker(routed, settings, context)
        return _response(202, {
            'message': 'Reconciliation accepted',
            'scope': routed['scope'],
            'event_id': routed.get('event_id')
        })

    except Exception as e:
        # Calculate execution duration
        duration = time.time() - start_time

        # Log error
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        # Return error response
        return _response(500, {
            'message': 'Reconciliation failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
