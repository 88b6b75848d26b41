"""
test_rounds.py - Conflict round state machine

Tests:
- Fan-out starts every regional attempt before joining
- Settling only after every attempt produced an outcome
- All-lost rounds retry, fatal attempts abort after the join
- Insert/update/delete races against the simulated account
- Conflict feed baseline and delta
- Cancellation drains in-flight attempts
"""

import asyncio
import random

import pytest

from conflictgen.detector import ConflictDetector
from conflictgen.errors import FatalAttemptError, SetupError, StoreError, StoreStatus
from conflictgen.models import (
    Committed,
    ConflictKind,
    LostRace,
    ResolutionMode,
    WriteOperation,
)
from conflictgen.pool import RegionalClientPool
from conflictgen.rounds import (
    ConflictRound,
    RoundDecision,
    RoundSettings,
    RoundState,
    alternate_delete_update,
    uniform,
)

from conftest import (
    CUSTOM,
    LWW,
    ScriptedHandle,
    make_conflict,
    no_sleep,
    open_pool,
    open_scripted_pool,
    provision_account,
)

FAST = RoundSettings(seed_delay=0.0, settle_delay=0.0)
LAGGED = RoundSettings(seed_delay=0.05, settle_delay=0.05)


class TestAssigners:

    def test_uniform(self):
        assign = uniform(WriteOperation.UPDATE)
        assert [assign(i, "r") for i in range(3)] == [WriteOperation.UPDATE] * 3

    def test_alternate_delete_update(self):
        ops = [alternate_delete_update(i, "r") for i in range(4)]
        assert ops == [WriteOperation.DELETE, WriteOperation.UPDATE,
                       WriteOperation.DELETE, WriteOperation.UPDATE]

    def test_feed_confirmation_defaults_to_delete_only(self):
        pool = object()
        assert ConflictRound(pool, CUSTOM, ConflictKind.DELETE).confirm_with_feed is True
        assert ConflictRound(pool, CUSTOM, ConflictKind.UPDATE).confirm_with_feed is False
        forced = ConflictRound(pool, CUSTOM, ConflictKind.UPDATE,
                               RoundSettings(confirm_with_feed=True))
        assert forced.confirm_with_feed is True

    def test_last_writer_wins_delete_skips_feed(self):
        pool = object()
        lww_delete = ConflictRound(pool, LWW, ConflictKind.DELETE,
                                   mode=ResolutionMode.LAST_WRITER_WINS)
        assert lww_delete.confirm_with_feed is False
        forced = ConflictRound(pool, LWW, ConflictKind.DELETE,
                               RoundSettings(confirm_with_feed=True),
                               mode=ResolutionMode.LAST_WRITER_WINS)
        assert forced.confirm_with_feed is True


class TestFanOut:

    @pytest.mark.asyncio
    async def test_all_attempts_start_before_any_completes(self):
        log = []
        handles = [ScriptedHandle(region, latency=0.01 * (i + 1), log=log)
                   for i, region in enumerate(["A", "B", "C"])]
        pool = await open_scripted_pool(handles)

        result = await ConflictRound(pool, LWW, ConflictKind.INSERT, FAST,
                                     sleep=no_sleep).run(random.Random(1))

        starts = [i for i, e in enumerate(log) if e[0] == "start"]
        ends = [i for i, e in enumerate(log) if e[0] == "end"]
        assert len(starts) == len(ends) == 3
        assert max(starts) < min(ends)
        assert len(result.outcomes) == 3

    @pytest.mark.asyncio
    async def test_settling_waits_for_every_outcome(self):
        log = []
        handles = [ScriptedHandle("A", latency=0.0, log=log),
                   ScriptedHandle("B", latency=0.05, log=log)]
        pool = await open_scripted_pool(handles)

        async def recording_sleep(delay):
            log.append(("sleep", None, delay))

        settings = RoundSettings(seed_delay=0.0, settle_delay=0.5)
        result = await ConflictRound(pool, LWW, ConflictKind.INSERT, settings,
                                     sleep=recording_sleep).run(random.Random(1))

        settle = log.index(("sleep", None, 0.5))
        assert [e[0] for e in log[:settle]].count("end") == 2
        assert result.states == [RoundState.SEEDING, RoundState.FANNING, RoundState.SETTLING,
                                 RoundState.DECIDING, RoundState.SUCCESS]

    @pytest.mark.asyncio
    async def test_insert_regions_draw_independent_resolution_values(self):
        written = []
        handles = [ScriptedHandle(f"R{i}", on_write=lambda h, op, r: written.append(r))
                   for i in range(8)]
        pool = await open_scripted_pool(handles)

        await ConflictRound(pool, LWW, ConflictKind.INSERT, FAST,
                            sleep=no_sleep).run(random.Random(3))

        assert len({r.id for r in written}) == 1
        assert len({r.user_defined_id for r in written}) > 1
        assert [r.region for r in written] == [f"R{i}" for i in range(8)]

    @pytest.mark.asyncio
    async def test_cancellation_drains_in_flight_attempts(self):
        log = []
        handles = [ScriptedHandle("A", latency=0.05, log=log),
                   ScriptedHandle("B", latency=0.05, log=log)]
        pool = await open_scripted_pool(handles)
        round_ = ConflictRound(pool, LWW, ConflictKind.INSERT, FAST, sleep=no_sleep)

        task = asyncio.ensure_future(round_.run(random.Random(1)))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [e[0] for e in log].count("end") == 2

    @pytest.mark.asyncio
    async def test_unopened_pool_is_setup_error(self, account):
        pool = RegionalClientPool(account.regions, account.handle)
        round_ = ConflictRound(pool, LWW, ConflictKind.INSERT, FAST, sleep=no_sleep)

        with pytest.raises(SetupError, match="not open"):
            await round_.run(random.Random(1))
        assert account.operation_count == 0


class TestDecision:

    @pytest.mark.asyncio
    async def test_all_lost_is_retry(self):
        lost = StoreError(StoreStatus.ALREADY_EXISTS, "exists")
        pool = await open_scripted_pool([ScriptedHandle("A", create=lost),
                                         ScriptedHandle("B", create=lost)])

        result = await ConflictRound(pool, LWW, ConflictKind.INSERT, FAST,
                                     sleep=no_sleep).run(random.Random(1))

        assert result.decision == RoundDecision.RETRY
        assert len(result.lost) == 2
        assert result.committed == []

    @pytest.mark.asyncio
    async def test_fatal_raised_after_every_attempt_finished(self):
        log = []
        failure = StoreError(StoreStatus.OTHER_FAILURE, "throttled", status_code=429)
        handles = [ScriptedHandle("A", create=failure, latency=0.0, log=log),
                   ScriptedHandle("B", latency=0.03, log=log)]
        pool = await open_scripted_pool(handles)

        with pytest.raises(FatalAttemptError) as exc_info:
            await ConflictRound(pool, LWW, ConflictKind.INSERT, FAST,
                                sleep=no_sleep).run(random.Random(1))

        assert exc_info.value.region == "A"
        assert exc_info.value.status == StoreStatus.OTHER_FAILURE
        assert [e[0] for e in log].count("end") == 2

    @pytest.mark.asyncio
    async def test_fatal_seed_aborts_before_fan_out(self):
        log = []
        failure = StoreError(StoreStatus.OTHER_FAILURE, "unauthorized", status_code=401)
        handles = [ScriptedHandle("A", create=failure, log=log), ScriptedHandle("B", log=log)]
        pool = await open_scripted_pool(handles)

        with pytest.raises(FatalAttemptError):
            await ConflictRound(pool, CUSTOM, ConflictKind.UPDATE, FAST,
                                sleep=no_sleep).run(random.Random(1))

        assert [e for e in log if e[0] == "start"] == [("start", "A", "create")]

    @pytest.mark.asyncio
    async def test_lost_seed_is_retry(self):
        lost = StoreError(StoreStatus.ALREADY_EXISTS, "exists")
        handles = [ScriptedHandle("A", create=lost), ScriptedHandle("B")]
        pool = await open_scripted_pool(handles)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.UPDATE, FAST,
                                     sleep=no_sleep).run(random.Random(1))

        assert result.decision == RoundDecision.RETRY
        assert isinstance(result.seed, LostRace)
        assert result.outcomes == []
        assert handles[1].calls == 0


class TestDetectorDelta:

    @pytest.mark.asyncio
    async def test_stale_conflicts_do_not_confirm(self):
        feed = [make_conflict(1), make_conflict(2)]
        handles = [ScriptedHandle("A", conflicts=feed), ScriptedHandle("B")]
        pool = await open_scripted_pool(handles)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.DELETE, FAST,
                                     sleep=no_sleep).run(random.Random(1))

        assert len(result.committed) == 2
        assert result.new_conflicts == 0
        assert result.decision == RoundDecision.RETRY

    @pytest.mark.asyncio
    async def test_new_entry_confirms(self):
        feed = [make_conflict(1), make_conflict(2)]

        def record_conflict(handle, op, record):
            if op == "replace":
                feed.append(make_conflict(len(feed) + 1))

        handles = [ScriptedHandle("A", conflicts=feed),
                   ScriptedHandle("B", on_write=record_conflict)]
        pool = await open_scripted_pool(handles)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.DELETE, FAST,
                                     sleep=no_sleep).run(random.Random(1))

        assert result.new_conflicts == 1
        assert result.decision == RoundDecision.SUCCESS

    @pytest.mark.asyncio
    async def test_baseline_taken_before_writes(self):
        log = []
        handles = [ScriptedHandle("A", log=log), ScriptedHandle("B", log=log)]
        pool = await open_scripted_pool(handles)

        await ConflictRound(pool, CUSTOM, ConflictKind.DELETE, FAST,
                            sleep=no_sleep).run(random.Random(1))

        kinds = [e[0] for e in log]
        assert kinds[0] == "feed"
        assert kinds[-1] == "feed"
        assert kinds.count("feed") == 2

    @pytest.mark.asyncio
    async def test_new_conflicts_never_negative(self):
        feed = [make_conflict(1)]
        detector = ConflictDetector(ScriptedHandle("A", conflicts=feed), CUSTOM)
        assert await detector.new_conflicts(5) == 0
        assert await detector.snapshot() == 1


class TestAgainstSimulatedAccount:

    @pytest.mark.asyncio
    async def test_insert_race_with_synchronous_replication(self, account):
        await provision_account(account)
        pool = await open_pool(account)

        result = await ConflictRound(pool, LWW, ConflictKind.INSERT, FAST,
                                     sleep=no_sleep).run(random.Random(5))

        assert len(result.committed) == 1
        assert len(result.lost) == 1
        assert result.decision == RoundDecision.SUCCESS

    @pytest.mark.asyncio
    async def test_update_race_winner_is_stored(self, account):
        await provision_account(account)
        pool = await open_pool(account)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.UPDATE, FAST,
                                     sleep=no_sleep).run(random.Random(5))

        assert len(result.committed) == 1
        assert len(result.lost) == 1
        assert result.lost[0].reason == "precondition_failed"
        [stored] = await pool.primary.query(CUSTOM,
                                            predicate=lambda r: r.id == result.record_id)
        assert stored.region == result.committed[0].record.region

    @pytest.mark.asyncio
    async def test_delete_vs_update_lost_update_is_not_fatal(self, account):
        await provision_account(account)
        pool = await open_pool(account)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.DELETE, FAST,
                                     sleep=no_sleep).run(random.Random(5))

        assert len(result.committed) == 1
        assert result.lost == [LostRace(region="North Europe", reason="not_found")]
        assert result.new_conflicts == 0
        assert result.decision == RoundDecision.RETRY

    @pytest.mark.asyncio
    async def test_delete_conflict_confirmed_through_feed(self, lagged_account):
        await provision_account(lagged_account)
        pool = await open_pool(lagged_account)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.DELETE,
                                     LAGGED).run(random.Random(5))

        assert len(result.committed) == 2
        assert result.new_conflicts == 1
        assert result.decision == RoundDecision.SUCCESS
        [conflict] = await pool.primary.read_conflicts(CUSTOM)
        assert conflict.resource_id == result.record_id

    @pytest.mark.asyncio
    async def test_delete_on_last_writer_wins_succeeds_without_feed(self, lagged_account):
        await provision_account(lagged_account)
        pool = await open_pool(lagged_account)

        result = await ConflictRound(pool, LWW, ConflictKind.DELETE, LAGGED,
                                     mode=ResolutionMode.LAST_WRITER_WINS).run(random.Random(5))

        assert len(result.committed) == 2
        assert result.new_conflicts is None
        assert result.decision == RoundDecision.SUCCESS
        assert await pool.primary.read_conflicts(LWW) == []

    @pytest.mark.asyncio
    async def test_update_conflict_both_commit_with_lag(self, lagged_account):
        await provision_account(lagged_account)
        pool = await open_pool(lagged_account)

        result = await ConflictRound(pool, CUSTOM, ConflictKind.UPDATE,
                                     LAGGED).run(random.Random(5))

        assert all(isinstance(o, Committed) for o in result.outcomes)
        assert result.decision == RoundDecision.SUCCESS
        await lagged_account.drain()
        assert len(await pool.primary.read_conflicts(CUSTOM)) == 1

    @pytest.mark.asyncio
    async def test_seed_failure_in_authoritative_region(self, account):
        await provision_account(account)
        pool = await open_pool(account)
        account.fail_next("West US 2", StoreStatus.OTHER_FAILURE)

        with pytest.raises(FatalAttemptError) as exc_info:
            await ConflictRound(pool, CUSTOM, ConflictKind.UPDATE, FAST,
                                sleep=no_sleep).run(random.Random(5))
        assert exc_info.value.region == "West US 2"
