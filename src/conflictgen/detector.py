"""
Conflict Detector

Reads a collection's conflict feed (cross-partition) and reports how many
entries appeared since a baseline. The baseline is taken at the start of a
round so stale unresolved conflicts from earlier runs are not mistaken for
new ones.
"""

from typing import List
import logging

from .models import CollectionRef, ConflictRecord
from .store.base import StoreHandle

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Counts conflict feed entries for one collection"""

    def __init__(self, handle: StoreHandle, collection: CollectionRef):
        self.handle = handle
        self.collection = collection

    async def read_conflicts(self) -> List[ConflictRecord]:
        conflicts = await self.handle.read_conflicts(self.collection)
        logger.debug(f"Conflict feed for {self.collection} has {len(conflicts)} entries")
        return conflicts

    async def snapshot(self) -> int:
        """Current length of the conflict feed."""
        return len(await self.read_conflicts())

    async def new_conflicts(self, baseline: int) -> int:
        """Entries added since `baseline` (post-round length minus baseline)."""
        return max(0, await self.snapshot() - baseline)
