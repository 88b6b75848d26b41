"""Pytest fixtures for conflictgen tests"""
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conflictgen.models import (
    CollectionRef,
    CollectionSpec,
    ConflictRecord,
    Record,
    ResolutionMode,
)
from conflictgen.pool import RegionalClientPool
from conflictgen.store.base import StoreHandle
from conflictgen.store.memory import SimulatedAccount

DATABASE = "TestDb"
LWW = CollectionRef(DATABASE, "LwwCollection")
CUSTOM = CollectionRef(DATABASE, "AsyncCollection")


class ScriptedHandle(StoreHandle):
    """
    Handle with scripted results.

    Each of create/replace/delete succeeds unless an exception instance is
    configured for it. Calls are logged as ("start"|"end", region, op).
    """

    def __init__(self, region: str, create: Optional[Exception] = None,
                 replace: Optional[Exception] = None, delete: Optional[Exception] = None,
                 latency: float = 0.0, log: Optional[list] = None,
                 conflicts: Optional[List[ConflictRecord]] = None, on_write=None):
        super().__init__(region)
        self.errors = {"create": create, "replace": replace, "delete": delete}
        self.latency = latency
        self.log = log if log is not None else []
        self.conflicts = conflicts if conflicts is not None else []
        self.on_write = on_write
        self.calls = 0

    async def _perform(self, op: str, record: Record) -> Record:
        self.calls += 1
        self.log.append(("start", self.region, op))
        await asyncio.sleep(self.latency)
        self.log.append(("end", self.region, op))
        error = self.errors[op]
        if error is not None:
            raise error
        if self.on_write is not None:
            self.on_write(self, op, record)
        return record.copy(version_token=f'"{self.region}-{self.calls}"',
                           self_ref=f"docs/{record.id}")

    async def create(self, collection, record):
        return await self._perform("create", record)

    async def replace(self, collection, record, if_match=None):
        return await self._perform("replace", record)

    async def delete(self, collection, record, if_match=None):
        await self._perform("delete", record)

    async def query(self, collection, predicate=None, cross_partition=True):
        return []

    async def read_conflicts(self, collection):
        self.log.append(("feed", self.region, len(self.conflicts)))
        return list(self.conflicts)

    async def delete_conflict(self, collection, conflict):
        self.conflicts.remove(conflict)

    async def ensure_database(self, database):
        return True

    async def ensure_collection(self, database, spec, throughput=None):
        return True


def make_conflict(n: int) -> ConflictRecord:
    return ConflictRecord(id=f"c{n}", resource_id=str(n), operation_type="replace")


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


async def provision_account(account: SimulatedAccount) -> None:
    """Create the test database with one LWW and one custom collection."""
    handle = account.handle(account.regions[0])
    await handle.ensure_database(DATABASE)
    await handle.ensure_collection(DATABASE, CollectionSpec(LWW.collection,
                                                           ResolutionMode.LAST_WRITER_WINS))
    await handle.ensure_collection(DATABASE, CollectionSpec(CUSTOM.collection,
                                                           ResolutionMode.CUSTOM,
                                                           resolution_path=None))


async def open_pool(account: SimulatedAccount, latencies=None) -> RegionalClientPool:
    latencies = latencies or {}
    pool = RegionalClientPool(
        account.regions,
        lambda region: account.handle(region, latency=latencies.get(region, 0.0)),
    )
    await pool.open()
    return pool


async def open_scripted_pool(handles: List[ScriptedHandle]) -> RegionalClientPool:
    by_region = {h.region: h for h in handles}
    pool = RegionalClientPool([h.region for h in handles], lambda region: by_region[region])
    await pool.open()
    return pool


@pytest.fixture
def regions():
    return ["West US 2", "North Europe"]


@pytest.fixture
def account(regions):
    """Account that replicates synchronously at commit time."""
    return SimulatedAccount(regions, replication_lag=0.0)


@pytest.fixture
def lagged_account(regions):
    """Account whose replication lags behind local commits."""
    return SimulatedAccount(regions, replication_lag=0.02)


@pytest.fixture
def config_file(tmp_path):
    """Config file for the memory backend with short delays."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "store:\n"
        "  backend: memory\n"
        "  database: TestDb\n"
        "  regions: [West US 2, North Europe]\n"
        "campaign:\n"
        "  seed_delay: 0.05\n"
        "  settle_delay: 0.05\n"
        "memory:\n"
        "  replication_lag: 0.01\n"
        "  latency: 0.0\n"
    )
    return path
