"""
Conflict Round Orchestrator

One round targets one freshly drawn record id and walks through:

    SEEDING   Draw the id. Update/delete rounds insert the record through
              the first region and wait for it to replicate.
    FANNING   Start one write task per region, then join all of them.
    SETTLING  Wait for cross-region replication to converge.
    DECIDING  SUCCESS or RETRY.

Insert and update rounds only induce conflicts, so any committed write is a
success. Delete rounds against a Custom collection (or any round with feed
confirmation) also require new entries in the conflict feed. A
last-writer-wins collection resolves conflicts transparently and never
writes to the feed.
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional
import logging

from .attempts import attempt_for, insert_attempt
from .detector import ConflictDetector
from .errors import FatalAttemptError, SetupError
from .models import (
    ID_RANGE,
    USER_DEFINED_ID_RANGE,
    AttemptOutcome,
    CollectionRef,
    Committed,
    ConflictKind,
    Fatal,
    LostRace,
    Record,
    ResolutionMode,
    WriteOperation,
)
from .pool import RegionalClientPool

logger = logging.getLogger(__name__)

# (region index, region name) -> operation issued by that region
OperationAssigner = Callable[[int, str], WriteOperation]
Sleep = Callable[[float], Awaitable[None]]


class RoundState(Enum):
    SEEDING = "seeding"
    FANNING = "fanning"
    SETTLING = "settling"
    DECIDING = "deciding"
    SUCCESS = "success"
    RETRY = "retry"


class RoundDecision(Enum):
    SUCCESS = "success"
    RETRY = "retry"


def uniform(operation: WriteOperation) -> OperationAssigner:
    """Every region issues the same operation."""
    def assign(index: int, region: str) -> WriteOperation:
        return operation
    return assign


def alternate_delete_update(index: int, region: str) -> WriteOperation:
    """Delete, update, delete, ... so the race is delete-vs-update."""
    return WriteOperation.DELETE if index % 2 == 0 else WriteOperation.UPDATE


DEFAULT_ASSIGNERS = {
    ConflictKind.INSERT: uniform(WriteOperation.INSERT),
    ConflictKind.UPDATE: uniform(WriteOperation.UPDATE),
    ConflictKind.DELETE: alternate_delete_update,
}


@dataclass
class RoundSettings:
    """
    Tunables for a round.

    Attributes:
        seed_delay: Wait after the seeding insert (update/delete rounds)
        settle_delay: Wait after fan-out before deciding
        confirm_with_feed: Require new conflict-feed entries for SUCCESS
                           (None = only for delete rounds on a Custom collection)
        assigner: Per-region operation assignment (None = kind default)
    """
    seed_delay: float = 1.0
    settle_delay: float = 1.0
    confirm_with_feed: Optional[bool] = None
    assigner: Optional[OperationAssigner] = None


@dataclass
class RoundResult:
    """Outcome of one round"""
    number: int
    kind: ConflictKind
    record_id: str
    decision: RoundDecision
    outcomes: List[AttemptOutcome] = field(default_factory=list)
    seed: Optional[AttemptOutcome] = None
    new_conflicts: Optional[int] = None
    states: List[RoundState] = field(default_factory=list)

    @property
    def committed(self) -> List[Committed]:
        return [o for o in self.outcomes if isinstance(o, Committed)]

    @property
    def lost(self) -> List[LostRace]:
        return [o for o in self.outcomes if isinstance(o, LostRace)]

    @property
    def succeeded(self) -> bool:
        return self.decision == RoundDecision.SUCCESS

    def summary(self) -> str:
        text = (f"Round {self.number} ({self.kind.value}, id={self.record_id}): "
                f"{len(self.committed)} committed, {len(self.lost)} lost race")
        if self.new_conflicts is not None:
            text += f", {self.new_conflicts} new conflict(s)"
        return f"{text} -> {self.decision.value}"


class ConflictRound:
    """
    Runs single rounds of one conflict kind against one collection.

    Example:
        round_ = ConflictRound(pool, collection, ConflictKind.DELETE,
                               RoundSettings(seed_delay=1.0, settle_delay=1.0))
        result = await round_.run(random.Random(7))
    """

    def __init__(self,
                 pool: RegionalClientPool,
                 collection: CollectionRef,
                 kind: ConflictKind,
                 settings: Optional[RoundSettings] = None,
                 detector: Optional[ConflictDetector] = None,
                 sleep: Sleep = asyncio.sleep,
                 mode: ResolutionMode = ResolutionMode.CUSTOM):
        self.pool = pool
        self.collection = collection
        self.kind = kind
        self.mode = mode
        self.settings = settings or RoundSettings()
        self.assigner = self.settings.assigner or DEFAULT_ASSIGNERS[kind]
        if self.settings.confirm_with_feed is None:
            self.confirm_with_feed = (kind == ConflictKind.DELETE
                                      and mode == ResolutionMode.CUSTOM)
        else:
            self.confirm_with_feed = self.settings.confirm_with_feed
        self._detector = detector
        self._sleep = sleep

    @property
    def detector(self) -> ConflictDetector:
        if self._detector is None:
            self._detector = ConflictDetector(self.pool.primary, self.collection)
        return self._detector

    async def run(self, rng: random.Random, number: int = 1) -> RoundResult:
        """
        Execute one round.

        Args:
            rng: Caller-owned random source (record ids, resolution values)
            number: Round number, for reporting

        Returns:
            RoundResult with SUCCESS or RETRY

        Raises:
            FatalAttemptError: If any attempt (or the seed) failed fatally
        """
        states = [RoundState.SEEDING]
        record_id = str(rng.randrange(*ID_RANGE))
        result = RoundResult(number=number, kind=self.kind, record_id=record_id,
                             decision=RoundDecision.RETRY, states=states)

        baseline = await self.detector.snapshot() if self.confirm_with_feed else 0

        if self.kind == ConflictKind.INSERT:
            base = Record.sample(record_id, None, rng)
        else:
            primary = self.pool.primary
            logger.info(f"Inserting new document to create an {self.kind.value} conflict "
                        f"with ID: {record_id} in multiple regions")
            seed = await insert_attempt(primary, self.collection,
                                        Record.sample(record_id, primary.region, rng))
            result.seed = seed
            if isinstance(seed, Fatal):
                raise FatalAttemptError(seed.region, seed.error) from seed.error
            if isinstance(seed, LostRace):
                logger.warning(f"Seed insert for id {record_id} lost ({seed.reason}); "
                               f"round {number} is inconclusive")
                states.append(RoundState.RETRY)
                return result
            base = seed.record
            await self._sleep(self.settings.seed_delay)

        states.append(RoundState.FANNING)
        outcomes = await self._fan_out(base, rng)
        result.outcomes = outcomes

        for outcome in outcomes:
            if isinstance(outcome, Fatal):
                raise FatalAttemptError(outcome.region, outcome.error) from outcome.error

        states.append(RoundState.SETTLING)
        await self._sleep(self.settings.settle_delay)

        states.append(RoundState.DECIDING)
        result.decision = await self._decide(result, baseline)
        states.append(RoundState.SUCCESS if result.succeeded else RoundState.RETRY)

        logger.info(result.summary())
        return result

    async def _fan_out(self, base: Record, rng: random.Random) -> List[AttemptOutcome]:
        """Start every regional attempt before joining any of them."""
        if len(self.pool) == 0:
            raise SetupError("RegionalClientPool is not open")
        jobs = []
        for index, handle in enumerate(self.pool):
            operation = self.assigner(index, handle.region)
            record = base.copy()
            if operation == WriteOperation.INSERT:
                record.user_defined_id = rng.randrange(*USER_DEFINED_ID_RANGE)
            jobs.append((attempt_for(operation), handle, record))

        tasks = [asyncio.ensure_future(attempt(handle, self.collection, record))
                 for attempt, handle, record in jobs]
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            logger.warning(f"Round cancelled during fan-out; draining {len(tasks)} attempt(s)")
            await asyncio.wait(tasks)
            raise
        return [task.result() for task in tasks]

    async def _decide(self, result: RoundResult, baseline: int) -> RoundDecision:
        if not result.committed:
            logger.info(f"Every attempt on id {result.record_id} lost the race; retrying")
            return RoundDecision.RETRY

        if not self.confirm_with_feed:
            return RoundDecision.SUCCESS

        result.new_conflicts = await self.detector.new_conflicts(baseline)
        if result.new_conflicts > 0:
            return RoundDecision.SUCCESS

        logger.info("No conflicts in Conflicts feed. Continue generating conflicts...")
        return RoundDecision.RETRY
