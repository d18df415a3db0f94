"""Table balancing tests."""

from dataclasses import replace

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from tdcore.tournament.balancer import BalancingPriority, PlayerMove, TableBalancer
from tdcore.tournament.models import RegistrationStatus, TableStatus
from tdcore.utils.errors import ErrorCode, PartialBalanceFailureError


def _counts(state):
    return [t.player_count for t in state.active_tables]


class TestBalancePlan:
    def test_no_balancing_needed(self, state_factory):
        plan = TableBalancer().calculate_balance_plan(state_factory([5, 5]))

        assert plan.balanced
        assert plan.moves == []
        assert plan.priority == BalancingPriority.NONE

    def test_single_table_never_moves(self, state_factory):
        assert TableBalancer().calculate_balance_plan(state_factory([9])).balanced

    def test_nine_nine_one_converges(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([9, 9, 1])

        plan = balancer.calculate_balance_plan(state)
        assert plan.priority == BalancingPriority.HIGH
        assert sorted(plan.counts_after.values()) == [6, 6, 7]

        state, result = balancer.execute_balance(state, plan.moves)

        assert result.success
        assert result.status == "complete"
        counts = _counts(state)
        assert max(counts) - min(counts) <= 1
        assert sum(counts) == 19

        # 재계산 시 추가 이동 없음
        assert balancer.calculate_balance_plan(state).balanced

    def test_moves_take_highest_seat_to_lowest_empty_seat(self, state_factory):
        state = state_factory([5, 3])
        t1, t2 = state.active_tables

        plan = TableBalancer().calculate_balance_plan(state)

        assert len(plan.moves) == 1
        move = plan.moves[0]
        assert (move.from_table_id, move.from_seat) == (t1.table_id, 5)
        assert (move.to_table_id, move.to_seat) == (t2.table_id, 4)
        assert move.registration_id == t1.occupant(5)
        assert plan.priority == BalancingPriority.MEDIUM

    def test_plan_is_deterministic(self, state_factory):
        state = state_factory([8, 2, 2])
        balancer = TableBalancer()
        first = balancer.calculate_balance_plan(state)
        second = balancer.calculate_balance_plan(state)

        strip = lambda plan: [replace(m, move_id="") for m in plan.moves]
        assert strip(first) == strip(second)

    def test_player_move_round_trips_through_dict(self):
        move = PlayerMove("r1", "a", 3, "b", 1)
        assert PlayerMove.from_dict(move.to_dict()) == move

    @given(st.lists(st.integers(min_value=0, max_value=9), min_size=2, max_size=6))
    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_any_seating_converges(self, state_factory, counts):
        balancer = TableBalancer()
        state = state_factory(counts)

        state, result = balancer.execute_balance(
            state, balancer.calculate_balance_plan(state).moves
        )

        after = _counts(state)
        assert result.success
        assert max(after) - min(after) <= 1
        assert sum(after) == sum(counts)


class TestExecuteBalance:
    def test_busted_player_move_is_skipped(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([9, 9, 1])
        plan = balancer.calculate_balance_plan(state)

        victim = plan.moves[0].registration_id
        reg = state.registrations[victim]
        state = state.with_registration(replace(reg, status=RegistrationStatus.BUSTED))

        state, result = balancer.execute_balance(state, plan.moves)

        assert result.status == "partial"
        assert len(result.failed) == 1
        assert result.failed[0].move.registration_id == victim
        assert result.failed[0].error_code == ErrorCode.PLAYER_NOT_ACTIVE.value
        assert len(result.succeeded) == len(plan.moves) - 1

        error = result.error
        assert isinstance(error, PartialBalanceFailureError)
        assert error.details["succeeded"] == len(plan.moves) - 1
        with pytest.raises(PartialBalanceFailureError):
            result.raise_for_partial()

    def test_stale_origin_is_skipped(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([5, 3])
        move = balancer.calculate_balance_plan(state).moves[0]

        # 계획 이후 플레이어가 같은 테이블의 다른 좌석으로 이동
        state, _ = balancer.seats.move_player(state, move.registration_id, move.from_table_id, 9)

        state, result = balancer.execute_balance(state, [move])

        assert result.status == "failed"
        assert result.failed[0].error_code == ErrorCode.STALE_MOVE.value
        assert state.seat_of(move.registration_id) == (move.from_table_id, 9)

    def test_filled_target_seat_is_skipped(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([5, 3])
        move = balancer.calculate_balance_plan(state).moves[0]
        t2 = state.tables[move.to_table_id]

        other = t2.occupant(1)
        state, _ = balancer.seats.move_player(state, other, move.to_table_id, move.to_seat)

        state, result = balancer.execute_balance(state, [move])

        assert result.failed[0].error_code == ErrorCode.SEAT_OCCUPIED.value

    def test_result_to_dict(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([4, 2])
        _, result = balancer.execute_balance(state, balancer.calculate_balance_plan(state).moves)

        data = result.to_dict()
        assert data["status"] == "complete"
        assert len(data["succeeded"]) == 1
        assert data["failed"] == []


class TestTableBreak:
    def test_suggests_table_with_fewest_players(self, state_factory):
        state = state_factory([7, 7, 3])
        t3 = state.active_tables[2]

        suggestion = TableBalancer().suggest_table_break(state)

        assert suggestion.can_break
        assert suggestion.table_id == t3.table_id
        assert suggestion.player_count == 3
        assert len(suggestion.moves) == 3
        assert {m.to_table_id for m in suggestion.moves} <= {
            t.table_id for t in state.active_tables[:2]
        }

    def test_tie_goes_to_latest_table(self, state_factory):
        state = state_factory([4, 4])
        suggestion = TableBalancer().suggest_table_break(state)
        assert suggestion.table_number == 2

    def test_no_break_without_capacity(self, state_factory):
        state = state_factory([9, 8, 8])
        suggestion = TableBalancer().suggest_table_break(state)
        assert not suggestion.can_break

    def test_last_table_cannot_break(self, state_factory):
        suggestion = TableBalancer().suggest_table_break(state_factory([5]))
        assert not suggestion.can_break
        assert suggestion.table_id is None

    def test_execute_table_break(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([6, 6, 2])
        suggestion = balancer.suggest_table_break(state)

        state, result = balancer.execute_table_break(state, suggestion.table_id, suggestion.moves)

        assert result.table_broken
        assert result.error is None
        assert state.tables[suggestion.table_id].status == TableStatus.BROKEN
        assert sorted(_counts(state)) == [7, 7]

    def test_failed_evacuation_keeps_table_and_landed_moves(self, state_factory):
        balancer = TableBalancer()
        state = state_factory([6, 6, 2])
        suggestion = balancer.suggest_table_break(state)

        stuck = suggestion.moves[1].registration_id
        state = state.with_registration(
            replace(state.registrations[stuck], status=RegistrationStatus.BUSTED)
        )

        state, result = balancer.execute_table_break(state, suggestion.table_id, suggestion.moves)

        assert not result.table_broken
        assert result.error.code == ErrorCode.TABLE_NOT_EMPTY.value
        assert len(result.moves.succeeded) == 1
        assert state.tables[suggestion.table_id].status == TableStatus.ACTIVE
        assert state.tables[suggestion.table_id].player_count == 1

    def test_plan_table_break_for_specific_table(self, state_factory):
        state = state_factory([3, 5, 4])
        t1 = state.active_tables[0]

        suggestion = TableBalancer().plan_table_break(state, t1.table_id)

        assert suggestion.can_break
        assert [m.from_table_id for m in suggestion.moves] == [t1.table_id] * 3


class TestBalanceStatus:
    def test_status_summary(self, state_factory):
        status = TableBalancer().get_balance_status(state_factory([5, 5, 1]))

        assert status.spread == 4
        assert not status.balanced
        assert status.label == "unbalanced"
        assert status.seated_players == 11
        assert status.break_suggested
        assert not status.can_consolidate

    def test_final_table_consolidation(self, state_factory):
        status = TableBalancer().get_balance_status(state_factory([4, 3]))
        assert status.can_consolidate
        assert status.balanced

    def test_single_table(self, state_factory):
        status = TableBalancer().get_balance_status(state_factory([6]))
        assert status.single_table
        assert status.label == "single_table"
        assert not status.can_consolidate
