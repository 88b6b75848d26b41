"""
Regional Client Pool

Holds one store handle per configured write region. Each handle prefers its
own region, so a fan-out through the pool issues one write per region.
"""

from typing import Callable, Dict, Iterator, List, Optional
import logging

from .config import ConflictGenConfig
from .errors import ConflictGenError, SetupError
from .store.base import StoreHandle
from .store.cosmos import CosmosHandle
from .store.memory import SimulatedAccount

logger = logging.getLogger(__name__)

HandleFactory = Callable[[str], StoreHandle]


class RegionalClientPool:
    """
    Ordered set of regional handles.

    The first region is authoritative: update and delete rounds seed their
    record through it.

    Example:
        async with RegionalClientPool(["West US 2", "North Europe"], factory) as pool:
            for handle in pool:
                ...
    """

    def __init__(self, regions: List[str], factory: HandleFactory):
        """
        Args:
            regions: Ordered write regions
            factory: Builds an unconnected handle for a region

        Raises:
            SetupError: If no regions are given
        """
        if not regions:
            raise SetupError("RegionalClientPool requires at least one region")
        self.regions = list(regions)
        self._factory = factory
        self.handles: List[StoreHandle] = []

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        """
        Create and connect one handle per region.

        Raises:
            SetupError: If any handle cannot be established (not retried)
        """
        if self.handles:
            return
        for region in self.regions:
            logger.info(f"Creating client with preferred write region: {region}")
            try:
                handle = self._factory(region)
                await handle.connect()
            except SetupError:
                await self.close()
                raise
            except ConflictGenError as e:
                await self.close()
                raise SetupError(f"Cannot establish handle for region '{region}': {e}") from e
            self.handles.append(handle)

    async def close(self) -> None:
        handles, self.handles = self.handles, []
        for handle in handles:
            await handle.close()

    @property
    def primary(self) -> StoreHandle:
        if not self.handles:
            raise SetupError("RegionalClientPool is not open")
        return self.handles[0]

    def handle_for(self, region: str) -> StoreHandle:
        for handle in self.handles:
            if handle.region == region:
                return handle
        raise KeyError(region)

    def __iter__(self) -> Iterator[StoreHandle]:
        return iter(self.handles)

    def __len__(self) -> int:
        return len(self.handles)

    @classmethod
    def from_config(cls, config: ConflictGenConfig,
                    account: Optional[SimulatedAccount] = None) -> "RegionalClientPool":
        """
        Build a pool for the configured backend.

        Args:
            config: Validated configuration
            account: Simulated account to attach to (memory backend only);
                     a new one is created when omitted
        """
        store = config.store
        if store.backend == "memory":
            if account is None:
                account = SimulatedAccount(store.regions,
                                           replication_lag=config.memory.replication_lag)
            latency = config.memory.latency
            return cls(store.regions, lambda region: account.handle(region, latency=latency))

        return cls(store.regions, lambda region: CosmosHandle(
            endpoint=store.endpoint,
            key=store.key,
            region=region,
            timeout=store.timeout,
        ))

    def describe(self) -> List[Dict]:
        return [handle.describe() for handle in self.handles]
