"""Resolution of the creator set targeted by a pass."""
import logging
from typing import List

from processor.errors import StorageError
from processor.models import AllUsers, Creator, Scope, SingleUser
from processor.record_mapper import RecordMapper

logger = logging.getLogger(__name__)


class UserResolver:
    """Resolves a pass scope into creators."""

    def __init__(self, source_client, store, mapper: RecordMapper = None):
        self.source_client = source_client
        self.store = store
        self.mapper = mapper or RecordMapper()

    def resolve(self, scope: Scope) -> List[Creator]:
        """
        Resolve the creators for a pass.

        SingleUser fetches the profile from the source and upserts the
        creator. AllUsers returns every stored creator; an empty or
        unavailable listing yields an empty list, which callers treat as a
        no-op pass.

        Raises:
            SourceError: If the explicit user's profile cannot be fetched
            StorageError: If the explicit user cannot be stored
        """
        if isinstance(scope, SingleUser):
            profile = self.source_client.get_user_profile(scope.user_id)
            creator = self.mapper.map_creator(profile)
            self.store.upsert_creator(creator)
            logger.info(f"Resolved creator {creator.user_id}")
            return [creator]

        if isinstance(scope, AllUsers):
            try:
                creators = self.store.list_creators()
            except StorageError as e:
                logger.warning(f"Creator listing unavailable, nothing to do this pass: {e}")
                return []
            if not creators:
                logger.warning("No creators found, nothing to do this pass")
            return creators

        raise TypeError(f"Unsupported pass scope: {scope!r}")
