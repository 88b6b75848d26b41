"""
test_campaign.py - Campaign loop stop conditions
"""

import asyncio

import pytest

from conflictgen.campaign import CampaignLoop
from conflictgen.errors import FatalAttemptError, StoreError, StoreStatus
from conflictgen.models import ConflictKind
from conflictgen.rounds import ConflictRound, RoundSettings

from conftest import (
    CUSTOM,
    LWW,
    ScriptedHandle,
    no_sleep,
    open_pool,
    open_scripted_pool,
    provision_account,
)

FAST = RoundSettings(seed_delay=0.0, settle_delay=0.0)


class CountingRound(ConflictRound):
    """ConflictRound that counts how often it was started"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.started = 0

    async def run(self, rng, number=1):
        self.started += 1
        return await super().run(rng, number)


async def losing_round():
    lost = StoreError(StoreStatus.ALREADY_EXISTS, "exists")
    pool = await open_scripted_pool([ScriptedHandle("A", create=lost),
                                     ScriptedHandle("B", create=lost)])
    return CountingRound(pool, LWW, ConflictKind.INSERT, FAST, sleep=no_sleep)


async def winning_round():
    pool = await open_scripted_pool([ScriptedHandle("A"), ScriptedHandle("B")])
    return CountingRound(pool, LWW, ConflictKind.INSERT, FAST, sleep=no_sleep)


class TestRoundBudget:

    @pytest.mark.asyncio
    async def test_zero_rounds_touches_nothing(self, account):
        await provision_account(account)
        pool = await open_pool(account)
        before = account.operation_count

        result = await CampaignLoop(
            ConflictRound(pool, CUSTOM, ConflictKind.DELETE, FAST, sleep=no_sleep),
            max_rounds=0,
        ).run()

        assert account.operation_count == before
        assert result.rounds_attempted == 0
        assert result.confirmed is False
        assert result.stopped_by == "max_rounds"

    @pytest.mark.asyncio
    async def test_bounded_campaign_without_confirmation(self):
        conflict_round = await losing_round()

        result = await CampaignLoop(conflict_round, max_rounds=3, seed=1).run()

        assert conflict_round.started == 3
        assert result.rounds_attempted == 3
        assert len(result.rounds) == 3
        assert result.confirmed is False
        assert result.stopped_by == "max_rounds"

    @pytest.mark.asyncio
    async def test_negative_budget_rejected(self):
        conflict_round = await losing_round()
        with pytest.raises(ValueError):
            CampaignLoop(conflict_round, max_rounds=-1)

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self):
        conflict_round = await winning_round()

        result = await CampaignLoop(conflict_round, max_rounds=10).run()

        assert result.confirmed is True
        assert result.rounds_attempted == 1
        assert result.stopped_by == "confirmed"

    @pytest.mark.asyncio
    async def test_keeps_going_after_success_when_asked(self):
        conflict_round = await winning_round()

        result = await CampaignLoop(conflict_round, max_rounds=4,
                                    stop_on_success=False).run()

        assert result.confirmed is True
        assert result.rounds_attempted == 4
        assert result.stopped_by == "max_rounds"


class TestStopSignals:

    @pytest.mark.asyncio
    async def test_operator_stops_between_rounds(self):
        conflict_round = await losing_round()
        answers = iter([True, False])

        async def should_continue(result):
            return next(answers)

        result = await CampaignLoop(conflict_round, should_continue=should_continue).run()

        assert result.rounds_attempted == 2
        assert result.stopped_by == "operator"

    @pytest.mark.asyncio
    async def test_operator_not_asked_after_last_budgeted_round(self):
        conflict_round = await losing_round()
        asked = []

        async def should_continue(result):
            asked.append(result.number)
            return True

        result = await CampaignLoop(conflict_round, max_rounds=2,
                                    should_continue=should_continue).run()

        assert asked == [1]
        assert result.rounds_attempted == 2
        assert result.stopped_by == "max_rounds"

    @pytest.mark.asyncio
    async def test_stop_event_checked_at_round_boundary(self):
        conflict_round = await losing_round()
        stop = asyncio.Event()

        result = await CampaignLoop(conflict_round, stop_event=stop,
                                    on_round=lambda r: stop.set()).run()

        assert result.rounds_attempted == 1
        assert result.stopped_by == "stopped"

    @pytest.mark.asyncio
    async def test_expired_deadline_starts_no_round(self):
        conflict_round = await losing_round()

        result = await CampaignLoop(conflict_round, deadline=0).run()

        assert conflict_round.started == 0
        assert result.stopped_by == "deadline"

    @pytest.mark.asyncio
    async def test_on_round_sees_every_round(self):
        conflict_round = await losing_round()
        seen = []

        await CampaignLoop(conflict_round, max_rounds=3, on_round=seen.append).run()

        assert [r.number for r in seen] == [1, 2, 3]


class TestFailures:

    @pytest.mark.asyncio
    async def test_fatal_attempt_stops_campaign(self, account):
        await provision_account(account)
        pool = await open_pool(account)
        account.fail_next("North Europe", StoreStatus.OTHER_FAILURE)
        conflict_round = CountingRound(pool, LWW, ConflictKind.INSERT, FAST, sleep=no_sleep)

        with pytest.raises(FatalAttemptError) as exc_info:
            await CampaignLoop(conflict_round, max_rounds=5).run()

        assert conflict_round.started == 1
        assert exc_info.value.region == "North Europe"


class TestDeterminism:

    @pytest.mark.asyncio
    async def test_same_seed_same_record_ids(self):
        first = await CampaignLoop(await losing_round(), max_rounds=4, seed=99).run()
        second = await CampaignLoop(await losing_round(), max_rounds=4, seed=99).run()

        assert [r.record_id for r in first.rounds] == [r.record_id for r in second.rounds]


class TestSimulatedCampaign:

    @pytest.mark.asyncio
    async def test_delete_campaign_confirms_with_replication_lag(self, lagged_account):
        await provision_account(lagged_account)
        pool = await open_pool(lagged_account)
        conflict_round = ConflictRound(pool, CUSTOM, ConflictKind.DELETE,
                                       RoundSettings(seed_delay=0.05, settle_delay=0.05))

        result = await CampaignLoop(conflict_round, max_rounds=5, seed=3).run()

        assert result.confirmed is True
        assert result.rounds[-1].new_conflicts >= 1
