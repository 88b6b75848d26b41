"""
Conflict Generator

Facade wiring configuration, the regional pool, rounds and campaigns
together. The CLI talks to this class only.

Default targets: insert conflicts go to the last-writer-wins collection,
update and delete conflicts to the collection with custom (manual)
resolution.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from .admin import CleanupReport, cleanup, clear_conflicts, provision
from .campaign import CampaignLoop, CampaignResult, OperatorHook, RoundListener
from .config import ConflictGenConfig
from .models import CollectionRef, ConflictKind, ConflictRecord, ResolutionMode
from .pool import RegionalClientPool
from .rounds import ConflictRound, OperationAssigner, RoundSettings
from .store.memory import SimulatedAccount

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = {
    ConflictKind.INSERT: "lww",
    ConflictKind.UPDATE: "custom",
    ConflictKind.DELETE: "custom",
}


class ConflictGenerator:
    """
    High-level entry point.

    Example:
        async with ConflictGenerator(config) as generator:
            result = await generator.generate(ConflictKind.DELETE, max_rounds=20)
    """

    def __init__(self,
                 config: ConflictGenConfig,
                 pool: Optional[RegionalClientPool] = None,
                 account: Optional[SimulatedAccount] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """
        Args:
            config: Validated configuration
            pool: Pre-built pool (default: built from config)
            account: Simulated account for the memory backend
            sleep: Delay function (tests pass a fast one)
        """
        self.config = config
        self.pool = pool or RegionalClientPool.from_config(config, account=account)
        self._sleep = sleep

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        await self.pool.open()
        if self.config.store.backend == "memory":
            # Simulated accounts live in-process; provision them on every start
            await self.provision(provision_delay=0.0)

    async def close(self) -> None:
        await self.pool.close()

    def collection_for(self, kind: ConflictKind, which: Optional[str] = None) -> CollectionRef:
        return self.config.collection_ref(which or DEFAULT_COLLECTIONS[kind])

    def resolution_mode(self, collection: CollectionRef) -> ResolutionMode:
        if collection == self.config.collection_ref("lww"):
            return ResolutionMode.LAST_WRITER_WINS
        return ResolutionMode.CUSTOM

    def build_round(self,
                    kind: ConflictKind,
                    collection: Optional[CollectionRef] = None,
                    confirm_with_feed: Optional[bool] = None,
                    assigner: Optional[OperationAssigner] = None) -> ConflictRound:
        campaign = self.config.campaign
        settings = RoundSettings(
            seed_delay=campaign.seed_delay_for(kind),
            settle_delay=campaign.settle_delay,
            confirm_with_feed=confirm_with_feed,
            assigner=assigner,
        )
        collection = collection or self.collection_for(kind)
        return ConflictRound(self.pool, collection, kind, settings=settings,
                             sleep=self._sleep, mode=self.resolution_mode(collection))

    async def generate(self,
                       kind: ConflictKind,
                       collection: Optional[CollectionRef] = None,
                       max_rounds: Optional[int] = None,
                       should_continue: Optional[OperatorHook] = None,
                       on_round: Optional[RoundListener] = None,
                       stop_on_success: bool = True,
                       stop_event: Optional[asyncio.Event] = None,
                       deadline: Optional[float] = None,
                       seed: Optional[int] = None,
                       confirm_with_feed: Optional[bool] = None) -> CampaignResult:
        """
        Run a campaign for one conflict kind.

        Unset `max_rounds` and `seed` fall back to the campaign configuration.

        Raises:
            FatalAttemptError: When a write fails for a reason other than a race
        """
        conflict_round = self.build_round(kind, collection, confirm_with_feed=confirm_with_feed)
        if max_rounds is None:
            max_rounds = self.config.campaign.max_rounds
        if seed is None:
            seed = self.config.campaign.seed

        logger.info(f"Generating {kind.value} conflicts in {conflict_round.collection} "
                    f"across {len(self.pool)} region(s)")
        loop = CampaignLoop(
            conflict_round,
            max_rounds=max_rounds,
            stop_on_success=stop_on_success,
            should_continue=should_continue,
            on_round=on_round,
            stop_event=stop_event,
            deadline=deadline,
            seed=seed,
        )
        return await loop.run()

    async def provision(self, provision_delay: Optional[float] = None) -> Dict[str, bool]:
        store = self.config.store
        if provision_delay is None:
            provision_delay = store.provision_delay
        return await provision(
            self.pool.primary,
            store.database,
            self.config.collection_specs(),
            throughput=store.throughput,
            provision_delay=provision_delay,
            sleep=self._sleep,
        )

    async def list_conflicts(self, which: str = "custom") -> List[ConflictRecord]:
        return await self.pool.primary.read_conflicts(self.config.collection_ref(which))

    async def clear_conflicts(self, which: str = "custom") -> int:
        return await clear_conflicts(self.pool.primary, self.config.collection_ref(which))

    async def cleanup(self) -> CleanupReport:
        collections = [self.config.collection_ref("custom"), self.config.collection_ref("lww")]
        return await cleanup(self.pool.primary, collections)
