"""
Setup and cleanup collaborators

Not part of the orchestration engine: provisioning runs once before any
campaign, cleanup resets the collections afterwards.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from .errors import SetupError, StoreError, StoreStatus
from .models import CollectionRef, CollectionSpec
from .store.base import StoreHandle

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    conflicts_deleted: int = 0
    documents_deleted: int = 0


async def provision(handle: StoreHandle,
                    database: str,
                    specs: List[CollectionSpec],
                    throughput: Optional[int] = None,
                    provision_delay: float = 0.0,
                    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> Dict[str, bool]:
    """
    Create the database and collections if they do not exist yet.

    Args:
        handle: Any connected handle of the account
        database: Database id
        specs: Collections with their conflict resolution policies
        throughput: Provisioned throughput per collection
        provision_delay: Wait after each collection to let it replicate

    Returns:
        Mapping of resource name -> True if created, False if it existed

    Raises:
        SetupError: On any provisioning failure (never retried)
    """
    created: Dict[str, bool] = {}
    try:
        created[database] = await handle.ensure_database(database)
        logger.info(f"Database {database}: {'created' if created[database] else 'exists'}")

        for spec in specs:
            created[spec.name] = await handle.ensure_collection(database, spec, throughput)
            logger.info(f"Collection {spec.name} ({spec.mode.value}): "
                        f"{'created' if created[spec.name] else 'exists'}")
            if created[spec.name] and provision_delay > 0:
                await sleep(provision_delay)
    except StoreError as e:
        raise SetupError(f"Provisioning {database} failed: {e}") from e
    return created


async def clear_conflicts(handle: StoreHandle, collection: CollectionRef) -> int:
    """Delete every entry of the collection's conflict feed."""
    conflicts = await handle.read_conflicts(collection)
    for conflict in conflicts:
        await handle.delete_conflict(collection, conflict)
    if conflicts:
        logger.info(f"Deleted {len(conflicts)} conflict(s) from {collection}")
    return len(conflicts)


async def cleanup(handle: StoreHandle, collections: List[CollectionRef]) -> CleanupReport:
    """
    Remove unresolved conflicts and all documents from the collections.

    Documents are found with a cross-partition query and deleted with their
    partition key.
    """
    report = CleanupReport()
    for collection in collections:
        report.conflicts_deleted += await clear_conflicts(handle, collection)

        records = await handle.query(collection, cross_partition=True)
        deleted = 0
        for record in records:
            try:
                await handle.delete(collection, record)
            except StoreError as e:
                if e.status != StoreStatus.NOT_FOUND:
                    raise
                continue
            deleted += 1
        report.documents_deleted += deleted
        logger.info(f"Deleted {deleted} document(s) from {collection}")
    return report
