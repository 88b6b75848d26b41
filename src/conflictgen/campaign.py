"""
Campaign Loop

Repeats conflict rounds of one kind, strictly one after another, until a
conflict is confirmed or something stops the campaign at a round boundary:

- the round limit (`max_rounds`, None for unbounded)
- the operator (`should_continue` returning False)
- a stop signal (`stop_event`) or a `deadline` in seconds

Fatal attempt failures are not caught here; they abort the campaign and
propagate to the caller.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional
import logging

from .models import ConflictKind
from .rounds import ConflictRound, RoundResult

logger = logging.getLogger(__name__)

OperatorHook = Callable[[RoundResult], Awaitable[bool]]
RoundListener = Callable[[RoundResult], None]


@dataclass
class CampaignResult:
    """
    Structured result of a campaign.

    Attributes:
        kind: Conflict kind attempted
        rounds_attempted: Number of rounds started and completed
        confirmed: Whether any round reached SUCCESS
        rounds: Per-round results
        stopped_by: confirmed | max_rounds | operator | stopped | deadline
    """
    kind: ConflictKind
    rounds_attempted: int = 0
    confirmed: bool = False
    rounds: List[RoundResult] = field(default_factory=list)
    stopped_by: str = "max_rounds"


class CampaignLoop:
    """
    Drives repeated ConflictRounds.

    Example:
        loop = CampaignLoop(round_, max_rounds=10, seed=42)
        result = await loop.run()
        print(result.confirmed, result.rounds_attempted)
    """

    def __init__(self,
                 conflict_round: ConflictRound,
                 max_rounds: Optional[int] = None,
                 stop_on_success: bool = True,
                 should_continue: Optional[OperatorHook] = None,
                 on_round: Optional[RoundListener] = None,
                 stop_event: Optional[asyncio.Event] = None,
                 deadline: Optional[float] = None,
                 rng: Optional[random.Random] = None,
                 seed: Optional[int] = None):
        """
        Args:
            conflict_round: Round runner for one kind and collection
            max_rounds: Round budget (None = unbounded)
            stop_on_success: End the campaign at the first SUCCESS
            should_continue: Operator hook consulted after every round
            on_round: Called with every finished round (progress reporting)
            stop_event: Cooperative stop signal checked between rounds
            deadline: Seconds after which no new round is started
            rng: Random source owned by this campaign
            seed: Seed for a new random source when `rng` is omitted
        """
        if max_rounds is not None and max_rounds < 0:
            raise ValueError("max_rounds cannot be negative")
        self.conflict_round = conflict_round
        self.max_rounds = max_rounds
        self.stop_on_success = stop_on_success
        self.should_continue = should_continue
        self.on_round = on_round
        self.stop_event = stop_event
        self.deadline = deadline
        self.rng = rng or random.Random(seed)

    def _stop_reason(self, rounds_done: int, deadline_at: Optional[float]) -> Optional[str]:
        if self.max_rounds is not None and rounds_done >= self.max_rounds:
            return "max_rounds"
        if self.stop_event is not None and self.stop_event.is_set():
            return "stopped"
        if deadline_at is not None and asyncio.get_running_loop().time() >= deadline_at:
            return "deadline"
        return None

    async def run(self) -> CampaignResult:
        kind = self.conflict_round.kind
        result = CampaignResult(kind=kind)
        deadline_at = None
        if self.deadline is not None:
            deadline_at = asyncio.get_running_loop().time() + self.deadline

        while True:
            reason = self._stop_reason(result.rounds_attempted, deadline_at)
            if reason:
                result.stopped_by = reason
                break

            round_result = await self.conflict_round.run(self.rng,
                                                         number=result.rounds_attempted + 1)
            result.rounds.append(round_result)
            result.rounds_attempted += 1
            if self.on_round is not None:
                self.on_round(round_result)

            if round_result.succeeded:
                result.confirmed = True
                if self.stop_on_success:
                    result.stopped_by = "confirmed"
                    break

            if self.max_rounds is not None and result.rounds_attempted >= self.max_rounds:
                result.stopped_by = "max_rounds"
                break

            if self.should_continue is not None and not await self.should_continue(round_result):
                result.stopped_by = "operator"
                break

        logger.info(f"{kind.value.capitalize()} campaign finished after "
                    f"{result.rounds_attempted} round(s): "
                    f"{'conflict confirmed' if result.confirmed else 'no conflict confirmed'} "
                    f"({result.stopped_by})")
        return result
