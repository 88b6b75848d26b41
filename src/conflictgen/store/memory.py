"""
Simulated Multi-Region Store

An in-process stand-in for a multi-master document account, used by the
test-suite and for offline demos (`store.backend: memory`).

Each region keeps its own replica. A write commits on the local replica
immediately and reaches the other regions after `replication_lag` seconds
(or synchronously when the lag is 0). When a replicated version arrives at a
replica whose current version it does not descend from, the two versions
conflict:

- Arbitration is deterministic so every replica converges on the same
  winner: deletes win, then the higher resolution-path value, then the
  later server timestamp, then the ETag.
- Collections in CUSTOM mode also persist each losing version to the
  conflict feed. Two concurrent deletes are not a conflict.
"""

import asyncio
import itertools
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Set, Tuple
import logging

from ..errors import StoreError, StoreStatus, SetupError
from ..models import CollectionRef, CollectionSpec, ConflictRecord, Record, ResolutionMode
from .base import StoreHandle, RecordPredicate

logger = logging.getLogger(__name__)


@dataclass
class _Version:
    """One version of a document as held by a replica"""
    document: Dict[str, Any]
    etag: str
    parent_etag: Optional[str]
    operation: str
    origin: str
    ts: int
    deleted: bool = False

    @property
    def document_id(self) -> str:
        return self.document["id"]


class _Collection:
    """Per-collection replicas and conflict feed"""

    def __init__(self, ref: CollectionRef, spec: CollectionSpec, regions: List[str]):
        self.ref = ref
        self.spec = spec
        self.replicas: Dict[str, Dict[str, _Version]] = {r: {} for r in regions}
        self.seen: Dict[str, Dict[str, Set[str]]] = {r: defaultdict(set) for r in regions}
        self.conflicts: List[ConflictRecord] = []
        self.recorded_losers: Set[str] = set()

    def resolution_value(self, version: _Version) -> Any:
        if self.spec.mode != ResolutionMode.LAST_WRITER_WINS or not self.spec.resolution_path:
            return 0
        return version.document.get(self.spec.resolution_path.lstrip("/"), 0)

    def arbitrate(self, current: _Version, incoming: _Version) -> Tuple[_Version, _Version]:
        """Return (winner, loser); the order is a total order on versions."""
        def rank(v: _Version):
            return (v.deleted, self.resolution_value(v), v.ts, v.etag)

        if rank(incoming) > rank(current):
            return incoming, current
        return current, incoming


class SimulatedAccount:
    """
    In-memory multi-region account.

    Example:
        account = SimulatedAccount(["West US 2", "North Europe"], replication_lag=0.2)
        handle = account.handle("North Europe")
    """

    def __init__(self, regions: List[str], replication_lag: float = 0.25,
                 multiple_write_locations: bool = True):
        if not regions:
            raise SetupError("SimulatedAccount requires at least one region")
        self.regions = list(regions)
        self.replication_lag = replication_lag
        self.multiple_write_locations = multiple_write_locations
        self.databases: Dict[str, Dict[str, _Collection]] = {}
        self.operation_count = 0
        self._clock = itertools.count(1)
        self._conflict_ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()
        self._failures: Dict[str, List[StoreStatus]] = defaultdict(list)

    def handle(self, region: str, latency: float = 0.0) -> "SimulatedHandle":
        return SimulatedHandle(self, region, latency=latency)

    def fail_next(self, region: str, status: StoreStatus = StoreStatus.OTHER_FAILURE,
                  count: int = 1) -> None:
        """Make the next `count` operations issued in `region` fail with `status`."""
        self._failures[region].extend([status] * count)

    async def drain(self) -> None:
        """Wait until all in-flight replication has been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ==================== Internal ====================

    def _check_failure(self, region: str) -> None:
        self.operation_count += 1
        if self._failures.get(region):
            status = self._failures[region].pop(0)
            raise StoreError(status, f"Injected failure in region {region}", status_code=503)

    def _collection(self, ref: CollectionRef) -> _Collection:
        collections = self.databases.get(ref.database)
        if collections is None or ref.collection not in collections:
            raise StoreError(StoreStatus.NOT_FOUND, f"Collection {ref.link} does not exist",
                             status_code=404)
        return collections[ref.collection]

    def _new_version(self, coll: _Collection, region: str, document: Dict[str, Any],
                     parent: Optional[_Version], operation: str,
                     deleted: bool = False) -> _Version:
        etag = f'"{uuid.uuid4()}"'
        ts = next(self._clock)
        document = dict(document)
        document.update({
            "_etag": etag,
            "_self": coll.ref.document_link(document["id"]),
            "_ts": ts,
        })
        return _Version(
            document=document,
            etag=etag,
            parent_etag=parent.etag if parent else None,
            operation=operation,
            origin=region,
            ts=ts,
            deleted=deleted,
        )

    def _commit(self, coll: _Collection, region: str, version: _Version) -> None:
        coll.replicas[region][version.document_id] = version
        coll.seen[region][version.document_id].add(version.etag)

        for target in self.regions:
            if target == region:
                continue
            if self.replication_lag <= 0:
                self._deliver(coll, target, version)
            else:
                task = asyncio.ensure_future(self._deliver_later(coll, target, version))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _deliver_later(self, coll: _Collection, target: str, version: _Version) -> None:
        await asyncio.sleep(self.replication_lag)
        self._deliver(coll, target, version)

    def _deliver(self, coll: _Collection, target: str, incoming: _Version) -> None:
        doc_id = incoming.document_id
        seen = coll.seen[target][doc_id]
        if incoming.etag in seen:
            return
        seen.add(incoming.etag)

        replica = coll.replicas[target]
        current = replica.get(doc_id)
        if current is None or incoming.parent_etag == current.etag:
            replica[doc_id] = incoming
            return

        winner, loser = coll.arbitrate(current, incoming)
        replica[doc_id] = winner

        if current.deleted and incoming.deleted:
            return

        logger.debug(
            f"Replication conflict on {coll.ref.link} id={doc_id} in {target}: "
            f"{winner.operation} from {winner.origin} beats {loser.operation} from {loser.origin}"
        )
        if coll.spec.mode == ResolutionMode.CUSTOM and loser.etag not in coll.recorded_losers:
            coll.recorded_losers.add(loser.etag)
            conflict_id = f"conflict-{next(self._conflict_ids)}"
            content = loser.document if not loser.deleted else {
                "id": doc_id, "postalcode": loser.document.get("postalcode"),
            }
            coll.conflicts.append(ConflictRecord(
                id=conflict_id,
                resource_id=doc_id,
                operation_type=loser.operation,
                self_ref=f"{coll.ref.link}/conflicts/{conflict_id}",
                content=dict(content),
                partition_key=content.get("postalcode"),
            ))


class SimulatedHandle(StoreHandle):
    """Regional handle onto a SimulatedAccount"""

    def __init__(self, account: SimulatedAccount, region: str, latency: float = 0.0):
        super().__init__(region)
        self.account = account
        self.latency = latency

    async def connect(self) -> None:
        if self.region not in self.account.regions:
            raise SetupError(f"Region '{self.region}' is not a write region of this account")

    async def _enter(self) -> None:
        await asyncio.sleep(self.latency)
        self.account._check_failure(self.region)

    def _current(self, coll: _Collection, record_id: str) -> Optional[_Version]:
        return coll.replicas[self.region].get(record_id)

    async def create(self, collection: CollectionRef, record: Record) -> Record:
        await self._enter()
        coll = self.account._collection(collection)
        current = self._current(coll, record.id)
        if current is not None and not current.deleted:
            raise StoreError(StoreStatus.ALREADY_EXISTS,
                             f"Resource with id {record.id} already exists", status_code=409)

        version = self.account._new_version(coll, self.region, record.to_document(),
                                            current, "create")
        self.account._commit(coll, self.region, version)
        return Record.from_document(version.document)

    def _check_precondition(self, coll: _Collection, record: Record,
                            if_match: Optional[str]) -> _Version:
        current = self._current(coll, record.id)
        if current is None or current.deleted:
            raise StoreError(StoreStatus.NOT_FOUND,
                             f"Resource with id {record.id} not found", status_code=404)
        if if_match is not None and current.etag != if_match:
            raise StoreError(StoreStatus.PRECONDITION_FAILED,
                             f"ETag mismatch on id {record.id}", status_code=412)
        return current

    async def replace(self, collection: CollectionRef, record: Record,
                      if_match: Optional[str] = None) -> Record:
        await self._enter()
        coll = self.account._collection(collection)
        current = self._check_precondition(coll, record, if_match)
        version = self.account._new_version(coll, self.region, record.to_document(),
                                            current, "replace")
        self.account._commit(coll, self.region, version)
        return Record.from_document(version.document)

    async def delete(self, collection: CollectionRef, record: Record,
                     if_match: Optional[str] = None) -> None:
        await self._enter()
        coll = self.account._collection(collection)
        current = self._check_precondition(coll, record, if_match)
        version = self.account._new_version(coll, self.region, current.document,
                                            current, "delete", deleted=True)
        self.account._commit(coll, self.region, version)

    async def query(self, collection: CollectionRef,
                    predicate: Optional[RecordPredicate] = None,
                    cross_partition: bool = True) -> List[Record]:
        await self._enter()
        if not cross_partition:
            raise StoreError(StoreStatus.OTHER_FAILURE,
                             "Cross partition query is required but disabled", status_code=400)
        coll = self.account._collection(collection)
        records = [Record.from_document(v.document)
                   for v in coll.replicas[self.region].values() if not v.deleted]
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return sorted(records, key=lambda r: r.timestamp or 0)

    async def read_conflicts(self, collection: CollectionRef) -> List[ConflictRecord]:
        await self._enter()
        coll = self.account._collection(collection)
        return list(coll.conflicts)

    async def delete_conflict(self, collection: CollectionRef,
                              conflict: ConflictRecord) -> None:
        await self._enter()
        coll = self.account._collection(collection)
        for i, entry in enumerate(coll.conflicts):
            if entry.id == conflict.id:
                del coll.conflicts[i]
                return
        raise StoreError(StoreStatus.NOT_FOUND, f"Conflict {conflict.id} not found",
                         status_code=404)

    async def ensure_database(self, database: str) -> bool:
        await self._enter()
        if database in self.account.databases:
            return False
        self.account.databases[database] = {}
        return True

    async def ensure_collection(self, database: str, spec: CollectionSpec,
                                throughput: Optional[int] = None) -> bool:
        await self._enter()
        if database not in self.account.databases:
            raise StoreError(StoreStatus.NOT_FOUND, f"Database {database} does not exist",
                             status_code=404)
        collections = self.account.databases[database]
        if spec.name in collections:
            return False
        collections[spec.name] = _Collection(CollectionRef(database, spec.name), spec,
                                             self.account.regions)
        return True

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info.update({
            "replication_lag": self.account.replication_lag,
            "latency": self.latency,
        })
        return info
