"""Error taxonomy for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base class for failures raised by the engine and its collaborators."""
    retryable = False


class SourceError(ReconciliationError):
    """Failure calling the external source system."""


class TransportError(SourceError):
    """Network failure, timeout, throttling or 5xx from the source."""
    retryable = True


class AuthError(SourceError):
    """The source rejected the presented credential."""


class NotFoundError(SourceError):
    """The requested entity does not exist upstream (or locally)."""


class MalformedResponseError(SourceError):
    """The source answered with a body that cannot be interpreted."""


class StorageError(ReconciliationError):
    """Local persistence failure."""


class ConcurrentSkip(Exception):
    """Event is already being processed in this process.

    Not a failure: the pass that raised it skips the event and leaves it to
    the current holder.
    """

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} is already being processed")
        self.event_id = event_id
