"""
Live Tournament Engine Tests.

Lock + load + tick + apply + CAS save per call.
"""

import asyncio
from decimal import Decimal

import pytest

from tdcore.tournament.engine import LiveTournamentEngine
from tdcore.tournament.models import ClockStatus, TournamentConfig, TransactionType
from tdcore.tournament.store import InMemoryTournamentStore
from tdcore.utils.errors import (
    ConcurrentModificationError,
    InvalidTournamentStateError,
    MissingReasonError,
    TableNotEmptyError,
    TournamentNotFoundError,
)


async def _seed(engine, players=("alice", "bob", "carol"), tables=1, tid="t1", config=None):
    await engine.initialize_tournament(tid, config)
    for _ in range(tables):
        await engine.add_table(tid)
    for player_id in players:
        await engine.process_buyin(tid, player_id, "100", actor_user_id="td")
    await engine.auto_seat_players(tid)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, engine):
        first = await engine.initialize_tournament("t1", TournamentConfig(name="Main Event"))
        second = await engine.initialize_tournament("t1", TournamentConfig(name="Other"))

        assert first.name == "Main Event"
        assert second.name == "Main Event"
        assert second.version == first.version == 1
        assert first.clock.status == "not_started"

    @pytest.mark.asyncio
    async def test_unknown_tournament(self, engine):
        with pytest.raises(TournamentNotFoundError):
            await engine.get_state("missing")
        with pytest.raises(TournamentNotFoundError):
            await engine.start_clock("missing")


class TestClockThroughEngine:
    @pytest.mark.asyncio
    async def test_director_scenario(self, engine, manual_clock):
        await engine.initialize_tournament("t1")

        outcome = await engine.start_clock("t1", level_duration=900)
        assert outcome.snapshot.clock.status == "running"
        assert outcome.snapshot.clock.time_remaining == 900

        manual_clock.advance(15)
        snapshot = await engine.get_state("t1")
        assert snapshot.clock.time_remaining == 885

        await engine.pause_clock("t1", time_remaining=500)
        manual_clock.advance(600)
        assert (await engine.get_state("t1")).clock.time_remaining == 500

        await engine.resume_clock("t1")
        outcome = await engine.advance_level("t1", next_level_duration=600)

        clock = outcome.snapshot.clock
        assert clock.current_level == 2
        assert clock.time_remaining == 600
        assert clock.current_blind.big_blind == 100
        assert clock.next_blind.big_blind == 150

    @pytest.mark.asyncio
    async def test_long_poll_gap_is_clamped(self, engine, manual_clock):
        await engine.initialize_tournament("t1")
        await engine.start_clock("t1", level_duration=900)

        manual_clock.advance(300)
        snapshot = await engine.get_state("t1")

        assert snapshot.clock.time_remaining == 870

    @pytest.mark.asyncio
    async def test_level_expired_is_flagged_not_advanced(self, engine, manual_clock):
        await engine.initialize_tournament("t1")
        await engine.start_clock("t1", level_duration=20)

        manual_clock.advance(25)
        snapshot = await engine.get_state("t1")

        assert snapshot.clock.time_remaining == 0
        assert snapshot.clock.level_expired
        assert snapshot.clock.current_level == 1

    @pytest.mark.asyncio
    async def test_concurrent_reads_tick_once(self, engine, manual_clock):
        await engine.initialize_tournament("t1")
        await engine.start_clock("t1", level_duration=900)

        manual_clock.advance(10)
        snapshots = await asyncio.gather(*(engine.get_state("t1") for _ in range(10)))

        assert {s.clock.time_remaining for s in snapshots} == {890}

    @pytest.mark.asyncio
    async def test_rejected_action_persists_nothing(self, engine, store):
        await engine.initialize_tournament("t1")
        before = await store.load("t1")

        with pytest.raises(InvalidTournamentStateError):
            await engine.resume_clock("t1")

        assert (await store.load("t1")).version == before.version

    @pytest.mark.asyncio
    async def test_finished_tournament_still_readable(self, engine):
        await engine.initialize_tournament("t1")
        await engine.start_clock("t1")
        await engine.finish_tournament("t1")

        with pytest.raises(InvalidTournamentStateError):
            await engine.add_time("t1", 60)
        assert (await engine.get_state("t1")).clock.status == ClockStatus.FINISHED.value

    @pytest.mark.asyncio
    async def test_break_flow(self, engine, manual_clock):
        await engine.initialize_tournament("t1")
        await engine.start_clock("t1")
        await engine.start_break("t1", break_duration=120)

        manual_clock.advance(20)
        assert (await engine.get_state("t1")).clock.time_remaining == 120

        outcome = await engine.end_break("t1")
        assert outcome.snapshot.clock.status == "running"
        assert outcome.snapshot.clock.current_level == 2


class TestPlayersThroughEngine:
    @pytest.mark.asyncio
    async def test_snapshot_counts_and_prize_pool(self, engine):
        await _seed(engine)

        snapshot = await engine.get_state("t1")

        assert snapshot.seated_players == 3
        assert snapshot.remaining_players == 3
        assert snapshot.registered_players == 3
        assert snapshot.prize_pool == Decimal("300")
        seat_players = [s.player_id for s in snapshot.tables[0].seats if s.player_id]
        assert seat_players == ["alice", "bob", "carol"]

    @pytest.mark.asyncio
    async def test_bustout_and_ledger_reads(self, engine):
        await _seed(engine)

        outcome = await engine.process_bustout("t1", "alice", eliminated_by=["bob"], actor_user_id="td")

        assert outcome.result.registration.finish_position == 3
        assert outcome.snapshot.seated_players == 2
        assert outcome.snapshot.busted_players == 1

        rows = await engine.get_transactions("t1", transaction_type=TransactionType.BUSTOUT)
        assert len(rows) == 1
        assert rows[0].actor_user_id == "td"

        summary = {s.transaction_type: s for s in await engine.get_transaction_summary("t1")}
        assert summary[TransactionType.BUYIN].count == 3

        order = await engine.get_bustout_order("t1")
        assert [r.player_id for r in order] == ["alice"]

    @pytest.mark.asyncio
    async def test_failed_operation_is_not_saved(self, engine):
        await _seed(engine)
        with pytest.raises(MissingReasonError):
            await engine.process_chip_adjustment("t1", "alice", 100, "")
        assert len(await engine.get_transactions("t1")) == 3

    @pytest.mark.asyncio
    async def test_rebuy_withdrawal_flow(self, engine):
        config = TournamentConfig(allow_rebuy=True)
        await _seed(engine, config=config)

        await engine.process_bustout("t1", "alice")
        rebuy = await engine.process_rebuy("t1", "alice", "100")
        assert rebuy.result.registration.rebuys_count == 1
        assert rebuy.snapshot.prize_pool == Decimal("400")

        # 리바이 후 좌석은 일반 배치 흐름으로 다시 배정
        seated = await engine.auto_seat_player("t1", rebuy.result.registration.registration_id)
        assert seated.result.to_table_id is not None

        await engine.process_bustout("t1", "bob")
        withdrawn = await engine.process_withdrawal("t1", "bob", reason="done")
        assert withdrawn.result.registration.status.value == "withdrawn"

    @pytest.mark.asyncio
    async def test_last_player_standing_completes_tournament(self, engine):
        await _seed(engine, players=("p1", "p2", "p3"))
        await engine.process_bustout("t1", "p3")
        assert await engine.get_tournament_winner("t1") is None

        await engine.process_bustout("t1", "p2", eliminated_by=["p1"])
        winner = await engine.get_tournament_winner("t1")
        assert winner.player_id == "p1"

        outcome = await engine.complete_tournament("t1", actor_user_id="td")

        assert outcome.result.registration.finish_position == 1
        assert outcome.snapshot.winner_player_id == "p1"
        assert outcome.snapshot.model_dump()["winnerPlayerId"] == "p1"
        rows = await engine.get_transactions("t1", transaction_type=TransactionType.WINNER)
        assert [r.player_id for r in rows] == ["p1"]

    @pytest.mark.asyncio
    async def test_withdrawal_reads(self, engine):
        await _seed(engine)
        await engine.process_bustout("t1", "carol")
        await engine.process_withdrawal("t1", "carol", withdrawal_type="disqualified")

        withdrawn = await engine.get_withdrawn_players("t1")
        stats = await engine.get_withdrawal_statistics("t1")

        assert [r.player_id for r in withdrawn] == ["carol"]
        assert stats.disqualified == 1
        assert stats.total == 1


class TestTablesThroughEngine:
    @pytest.mark.asyncio
    async def test_balance_plan_and_execute(self, engine):
        await engine.initialize_tournament("t1")
        first = await engine.add_table("t1")
        for i in range(6):
            await engine.process_buyin("t1", f"p{i}", 100)
        await engine.auto_seat_players("t1")
        second = await engine.add_table("t1")

        status = await engine.get_balance_status("t1")
        assert status.spread == 6

        plan = await engine.get_balance_plan("t1")
        assert plan.total_moves == 3

        outcome = await engine.execute_balance("t1")
        assert outcome.result.success
        counts = [t.player_count for t in outcome.snapshot.tables]
        assert counts == [3, 3]
        assert first.result.table_id != second.result.table_id

    @pytest.mark.asyncio
    async def test_move_player_validates(self, engine):
        await _seed(engine, tables=2)
        state = await engine.get_tournament_state("t1")
        t1, t2 = state.active_tables
        rid = t1.occupant(1)

        await engine.validate_assignment("t1", rid, t2.table_id, 5)
        outcome = await engine.move_player("t1", rid, t2.table_id, 5)

        assert outcome.result.changed
        assert (await engine.get_tournament_state("t1")).seat_of(rid) == (t2.table_id, 5)

    @pytest.mark.asyncio
    async def test_table_break_through_engine(self, engine):
        await _seed(engine, players=("a", "b", "c", "d", "e"), tables=2)
        suggestion = await engine.suggest_table_break("t1")
        assert suggestion.can_break

        outcome = await engine.execute_table_break("t1", suggestion.table_id)

        assert outcome.result.table_broken
        assert len(outcome.snapshot.tables) == 1
        assert outcome.snapshot.seated_players == 5

    @pytest.mark.asyncio
    async def test_partial_table_break_persists_landed_moves(self, engine, store):
        await _seed(engine, players=("a", "b", "c", "d", "e"), tables=2)
        suggestion = await engine.suggest_table_break("t1")
        stuck = suggestion.moves[0].registration_id

        # 계획 이후 같은 테이블 안에서 좌석이 바뀜
        await engine.move_player("t1", stuck, suggestion.table_id, 9)

        with pytest.raises(TableNotEmptyError):
            await engine.execute_table_break("t1", suggestion.table_id, suggestion.moves)

        saved = await store.load("t1")
        table = saved.tables[suggestion.table_id]
        assert table.is_active
        assert table.occupied_seats == [(9, stuck)]

    @pytest.mark.asyncio
    async def test_remove_occupied_table(self, engine):
        await _seed(engine)
        state = await engine.get_tournament_state("t1")
        with pytest.raises(TableNotEmptyError):
            await engine.remove_table("t1", state.active_tables[0].table_id)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_buyins_are_serialized(self, engine):
        await engine.initialize_tournament("t1")

        await asyncio.gather(
            *(engine.process_buyin("t1", f"p{i}", 100) for i in range(20))
        )

        snapshot = await engine.get_state("t1")
        assert snapshot.remaining_players == 20
        assert snapshot.prize_pool == Decimal("2000")
        ids = [t.transaction_id for t in await engine.get_transactions("t1", order="asc")]
        assert ids == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_stale_save_is_rejected(self, manual_clock, settings):
        store = InMemoryTournamentStore()

        class NoLock:
            def lock(self, tournament_id):
                return _NullLock()

        engine = LiveTournamentEngine(store, NoLock(), now=manual_clock, settings=settings)
        await engine.initialize_tournament("t1")
        stale = await store.load("t1")

        await engine.add_table("t1")

        with pytest.raises(ConcurrentModificationError):
            await store.save(stale, stale.version)

    @pytest.mark.asyncio
    async def test_tournaments_do_not_share_locks(self, engine, lock_manager):
        await engine.initialize_tournament("t1")
        await engine.initialize_tournament("t2")

        async with lock_manager.lock("t1"):
            snapshot = await asyncio.wait_for(engine.get_state("t2"), timeout=1)
        assert snapshot.tournament_id == "t2"


class _NullLock:
    async def __aenter__(self):
        return None

    async def __aexit__(self, *args):
        return False
