"""
Store Handle Base Class

Defines the narrow interface the orchestration engine consumes from a
multi-region document store. One handle exists per write region; each
handle prefers its own region for reads and writes.

Implementations raise StoreError with a classified StoreStatus on failure.
The write attempts turn those errors into Committed/LostRace/Fatal outcomes.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Callable, Dict, Any
import logging

from ..models import CollectionRef, CollectionSpec, ConflictRecord, Record

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[Record], bool]


class StoreHandle(ABC):
    """
    Abstract store access handle bound to one preferred write region.

    Handles are independent of each other and may be used concurrently.
    A single call on a handle is owned by one attempt.

    Example:
        async with SomeHandle(region="West US 2") as handle:
            created = await handle.create(collection, record)
            await handle.replace(collection, created, if_match=created.version_token)
    """

    def __init__(self, region: str):
        self.region = region

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """
        Establish the connection for this region.

        Raises:
            SetupError: If the region is unreachable or credentials are rejected
        """
        pass

    async def close(self) -> None:
        """Release connection resources"""
        pass

    # ==================== Documents ====================

    @abstractmethod
    async def create(self, collection: CollectionRef, record: Record) -> Record:
        """
        Create a record.

        Returns:
            The stored record with server-assigned metadata

        Raises:
            StoreError: ALREADY_EXISTS if the id is taken, other statuses otherwise
        """
        pass

    @abstractmethod
    async def replace(self, collection: CollectionRef, record: Record,
                      if_match: Optional[str] = None) -> Record:
        """
        Replace a record, optionally conditioned on its version token.

        Raises:
            StoreError: PRECONDITION_FAILED if the token is stale,
                        NOT_FOUND if the record is gone
        """
        pass

    @abstractmethod
    async def delete(self, collection: CollectionRef, record: Record,
                     if_match: Optional[str] = None) -> None:
        """
        Delete a record, optionally conditioned on its version token.

        Raises:
            StoreError: PRECONDITION_FAILED or NOT_FOUND as for replace
        """
        pass

    @abstractmethod
    async def query(self, collection: CollectionRef,
                    predicate: Optional[RecordPredicate] = None,
                    cross_partition: bool = True) -> List[Record]:
        """Return records matching the predicate (all records if None)."""
        pass

    # ==================== Conflict feed ====================

    @abstractmethod
    async def read_conflicts(self, collection: CollectionRef) -> List[ConflictRecord]:
        """Read the full conflict feed of a collection, across partitions."""
        pass

    @abstractmethod
    async def delete_conflict(self, collection: CollectionRef,
                              conflict: ConflictRecord) -> None:
        """Acknowledge and remove one conflict feed entry."""
        pass

    # ==================== Setup ====================

    @abstractmethod
    async def ensure_database(self, database: str) -> bool:
        """
        Create the database if missing.

        Returns:
            True if it was created, False if it already existed
        """
        pass

    @abstractmethod
    async def ensure_collection(self, database: str, spec: CollectionSpec,
                                throughput: Optional[int] = None) -> bool:
        """
        Create the collection if missing.

        Returns:
            True if it was created, False if it already existed
        """
        pass

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.__class__.__name__, "region": self.region}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(region={self.region!r})"
