"""
Write Attempts

A single create, replace or delete against one regional handle, classified
into an AttemptOutcome:

    Committed  The store accepted the write
    LostRace   A conflicting version already committed and replicated
               (ALREADY_EXISTS on insert, PRECONDITION_FAILED or NOT_FOUND
               on update/delete). Expected steady state; never an error.
    Fatal      Any other failure. The round re-raises it.
"""

from typing import Awaitable, Callable, FrozenSet
import logging

from .errors import StoreError, StoreStatus
from .models import (
    AttemptOutcome,
    CollectionRef,
    Committed,
    Fatal,
    LostRace,
    Record,
    WriteOperation,
)
from .store.base import StoreHandle

logger = logging.getLogger(__name__)

INSERT_RACE_STATUSES: FrozenSet[StoreStatus] = frozenset({StoreStatus.ALREADY_EXISTS})
MUTATION_RACE_STATUSES: FrozenSet[StoreStatus] = frozenset({
    StoreStatus.PRECONDITION_FAILED,
    StoreStatus.NOT_FOUND,
})

Attempt = Callable[[StoreHandle, CollectionRef, Record], Awaitable[AttemptOutcome]]


async def _classify(handle: StoreHandle, operation: str, record: Record,
                    call: Awaitable[Record], race_statuses: FrozenSet[StoreStatus],
                    race_reason: str) -> AttemptOutcome:
    try:
        result = await call
    except StoreError as e:
        if e.status in race_statuses:
            logger.info(f"Attempted {operation} for Doc Id: {record.id} from Region: "
                        f"{handle.region} unsuccessful as {race_reason} ({e.status})")
            return LostRace(region=handle.region, reason=str(e.status))
        logger.error(f"{operation.capitalize()} for Doc Id: {record.id} from Region: "
                     f"{handle.region} failed: {e}")
        return Fatal(region=handle.region, error=e)
    except Exception as e:
        logger.exception(f"{operation.capitalize()} for Doc Id: {record.id} from Region: "
                         f"{handle.region} raised unexpectedly")
        return Fatal(region=handle.region, error=e)
    return Committed(result)


async def insert_attempt(handle: StoreHandle, collection: CollectionRef,
                         record: Record) -> AttemptOutcome:
    """
    Create `record` through `handle`.

    Returns:
        Committed with server metadata, LostRace if the id already exists
        in this region, Fatal otherwise
    """
    record = record.copy(region=handle.region, version_token=None, self_ref=None,
                         timestamp=None)
    logger.info(f"Inserting {record}")
    return await _classify(
        handle, "insert", record,
        handle.create(collection, record),
        INSERT_RACE_STATUSES,
        "previous insert already committed and replicated",
    )


async def update_attempt(handle: StoreHandle, collection: CollectionRef,
                         record: Record) -> AttemptOutcome:
    """
    Conditionally replace `record` through `handle`, moving its region to the
    handle's region. The record's version token is the If-Match precondition.
    """
    previous_region = record.region
    record = record.copy(region=handle.region)
    logger.info(f"Updating document, Id: {record.id} from Region: {previous_region} "
                f"to Region: {handle.region}")
    return await _classify(
        handle, "update", record,
        handle.replace(collection, record, if_match=record.version_token),
        MUTATION_RACE_STATUSES,
        "previous update already committed and replicated",
    )


async def delete_attempt(handle: StoreHandle, collection: CollectionRef,
                         record: Record) -> AttemptOutcome:
    """Conditionally delete `record` through `handle`."""
    record = record.copy(region=handle.region)

    async def call() -> Record:
        await handle.delete(collection, record, if_match=record.version_token)
        return record

    logger.info(f"Deleting document, Id: {record.id} from Region: {handle.region}")
    return await _classify(
        handle, "delete", record, call(),
        MUTATION_RACE_STATUSES,
        "a conflicting write already committed and replicated",
    )


ATTEMPTS = {
    WriteOperation.INSERT: insert_attempt,
    WriteOperation.UPDATE: update_attempt,
    WriteOperation.DELETE: delete_attempt,
}


def attempt_for(operation: WriteOperation) -> Attempt:
    return ATTEMPTS[operation]
