"""
Table Balancing Algorithm.

탈락자 발생 시 테이블 인원을 재배치하는 알고리즘.

핵심 설계 원칙:
1. 테이블 간 인원 차이 최소화 (±1 이내 유지)
2. 최소 이동 원칙 (불필요한 이동 방지)
3. 계획과 실행 분리 (계획은 스냅샷 기준, 실행 시 이동별 재검증)
4. 부분 실패는 에러가 아닌 보고 대상 (이동 단위 성공/실패)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from tdcore.logging_config import get_logger
from tdcore.utils.errors import (
    PartialBalanceFailureError,
    StaleMoveError,
    TableNotEmptyError,
    TournamentError,
)
from .models import Table, TournamentState, utcnow
from .seats import SeatManager
from .tables import TableManager

logger = get_logger(__name__)


class BalancingPriority(Enum):
    """Balancing urgency levels."""

    NONE = 0  # 밸런싱 불필요
    MEDIUM = 2  # 인원 차이 2
    HIGH = 3  # 인원 차이 3 이상


@dataclass(frozen=True)
class PlayerMove:
    """Single player move instruction."""

    registration_id: str
    from_table_id: str
    from_seat: int
    to_table_id: str
    to_seat: int
    move_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "move_id": self.move_id,
            "registration_id": self.registration_id,
            "from_table_id": self.from_table_id,
            "from_seat": self.from_seat,
            "to_table_id": self.to_table_id,
            "to_seat": self.to_seat,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerMove":
        return cls(
            registration_id=data["registration_id"],
            from_table_id=data["from_table_id"],
            from_seat=data["from_seat"],
            to_table_id=data["to_table_id"],
            to_seat=data["to_seat"],
            move_id=data.get("move_id") or str(uuid4()),
        )


@dataclass
class BalancingPlan:
    """Computed (not yet applied) balancing plan."""

    plan_id: str = field(default_factory=lambda: str(uuid4()))
    tournament_id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    moves: List[PlayerMove] = field(default_factory=list)
    counts_before: Dict[str, int] = field(default_factory=dict)
    counts_after: Dict[str, int] = field(default_factory=dict)
    priority: BalancingPriority = BalancingPriority.NONE

    @property
    def total_moves(self) -> int:
        return len(self.moves)

    @property
    def balanced(self) -> bool:
        """Already balanced: nothing needs to change."""
        return not self.moves

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "tournament_id": self.tournament_id,
            "total_moves": self.total_moves,
            "balanced": self.balanced,
            "priority": self.priority.name,
            "counts_before": self.counts_before,
            "counts_after": self.counts_after,
            "moves": [m.to_dict() for m in self.moves],
        }


@dataclass(frozen=True)
class FailedMove:
    move: PlayerMove
    error_code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.move.to_dict(),
            "error_code": self.error_code,
            "message": self.message,
        }


@dataclass
class BalanceResult:
    """
    Move-granular execution result.

    Callers must handle partial success: re-query balance status and
    retry the remaining moves. There is no plan-level rollback.
    """

    succeeded: List[PlayerMove] = field(default_factory=list)
    failed: List[FailedMove] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def status(self) -> str:
        if not self.failed:
            return "complete"
        return "partial" if self.succeeded else "failed"

    @property
    def error(self) -> Optional[PartialBalanceFailureError]:
        if self.success:
            return None
        return PartialBalanceFailureError(
            len(self.succeeded),
            [f.to_dict() for f in self.failed],
        )

    def raise_for_partial(self) -> None:
        error = self.error
        if error is not None:
            raise error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "success": self.success,
            "succeeded": [m.to_dict() for m in self.succeeded],
            "failed": [f.to_dict() for f in self.failed],
        }


@dataclass
class TableBreakSuggestion:
    can_break: bool
    message: str
    table_id: Optional[str] = None
    table_number: Optional[int] = None
    player_count: int = 0
    moves: List[PlayerMove] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_break": self.can_break,
            "message": self.message,
            "table_id": self.table_id,
            "table_number": self.table_number,
            "player_count": self.player_count,
            "moves": [m.to_dict() for m in self.moves],
        }


@dataclass
class TableBreakResult:
    table_id: str
    moves: BalanceResult
    table_broken: bool
    error: Optional[TableNotEmptyError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_id": self.table_id,
            "table_broken": self.table_broken,
            "moves": self.moves.to_dict(),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class BalanceStatus:
    """Read-only summary for display."""

    table_counts: List[Dict[str, Any]]
    seated_players: int
    spread: int
    balanced: bool
    single_table: bool
    break_suggested: bool
    can_consolidate: bool

    @property
    def label(self) -> str:
        if self.single_table:
            return "single_table"
        return "balanced" if self.balanced else "unbalanced"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.label,
            "table_counts": self.table_counts,
            "seated_players": self.seated_players,
            "spread": self.spread,
            "balanced": self.balanced,
            "single_table": self.single_table,
            "break_suggested": self.break_suggested,
            "can_consolidate": self.can_consolidate,
        }


class TableBalancer:
    """
    Tournament Table Balancing Engine.

    밸런싱 알고리즘 상세:
    ─────────────────────────────────────────────────────────────────

    1. 밸런싱 조건:
       - 활성 테이블 간 인원 차이 > 1

    2. 이동 대상 선택 (그리디):
       - 가장 많은 테이블의 가장 높은 번호 좌석 플레이어
       - 가장 적은 테이블의 가장 낮은 번호 빈 좌석으로
       - max - min ≤ 1 이 되거나 이동으로 차이가 줄지 않을 때까지 반복

    3. 테이블 해체:
       - 인원이 가장 적은 테이블을 해체 후보로 선정
       - 나머지 테이블의 빈 좌석이 충분할 때만 제안

    ─────────────────────────────────────────────────────────────────
    """

    def __init__(
        self,
        seat_manager: Optional[SeatManager] = None,
        table_manager: Optional[TableManager] = None,
    ):
        self.tables = table_manager or TableManager()
        self.seats = seat_manager or SeatManager(self.tables)

    # =========================================================================
    # Balance plan
    # =========================================================================

    def calculate_balance_plan(self, state: TournamentState) -> BalancingPlan:
        """
        Compute the moves that bring every active table within one player.

        Deterministic: ties on count go to the earliest-created table.
        The plan is computed against a simulated copy of the seating.
        """
        plan = BalancingPlan(tournament_id=state.tournament_id)
        tables = state.active_tables
        sim = {t.table_id: list(t.seats) for t in tables}
        numbers = {t.table_id: t.table_number for t in tables}

        plan.counts_before = {tid: _count(seats) for tid, seats in sim.items()}
        if len(tables) < 2:
            plan.counts_after = dict(plan.counts_before)
            return plan

        spread = max(plan.counts_before.values()) - min(plan.counts_before.values())
        if spread >= 3:
            plan.priority = BalancingPriority.HIGH
        elif spread == 2:
            plan.priority = BalancingPriority.MEDIUM

        # 각 이동마다 인원 제곱합이 감소하므로 유한 번 안에 종료
        while True:
            fullest = min(sim, key=lambda tid: (-_count(sim[tid]), numbers[tid]))
            receivers = [tid for tid in sim if None in sim[tid] and tid != fullest]
            if not receivers:
                break
            emptiest = min(receivers, key=lambda tid: (_count(sim[tid]), numbers[tid]))

            if _count(sim[fullest]) - _count(sim[emptiest]) <= 1:
                break

            from_idx = max(i for i, s in enumerate(sim[fullest]) if s is not None)
            to_idx = sim[emptiest].index(None)
            registration_id = sim[fullest][from_idx]

            plan.moves.append(
                PlayerMove(
                    registration_id=registration_id,
                    from_table_id=fullest,
                    from_seat=from_idx + 1,
                    to_table_id=emptiest,
                    to_seat=to_idx + 1,
                )
            )
            sim[fullest][from_idx] = None
            sim[emptiest][to_idx] = registration_id

        plan.counts_after = {tid: _count(seats) for tid, seats in sim.items()}

        logger.info(
            "balance_plan_calculated",
            tournament_id=state.tournament_id,
            moves=plan.total_moves,
            spread=spread,
        )
        return plan

    # =========================================================================
    # Execution
    # =========================================================================

    def execute_balance(
        self,
        state: TournamentState,
        moves: List[PlayerMove],
    ) -> Tuple[TournamentState, BalanceResult]:
        """
        Apply planned moves one at a time, re-validating each.

        A move whose player busted, changed seat, or whose target seat
        filled since planning is skipped and reported; the rest apply.
        """
        result = BalanceResult()

        for move in moves:
            try:
                state = self._apply_move(state, move)
            except TournamentError as e:
                result.failed.append(FailedMove(move, e.code, e.message))
                logger.warning(
                    "balance_move_skipped",
                    tournament_id=state.tournament_id,
                    registration_id=move.registration_id,
                    error_code=e.code,
                )
                continue
            result.succeeded.append(move)

        log = logger.info if result.success else logger.warning
        log(
            "balance_executed",
            tournament_id=state.tournament_id,
            status=result.status,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return state, result

    def _apply_move(self, state: TournamentState, move: PlayerMove) -> TournamentState:
        expected = (move.from_table_id, move.from_seat)
        actual = state.seat_of(move.registration_id)
        self.seats.validate_assignment(
            state, move.registration_id, move.to_table_id, move.to_seat
        )
        if actual != expected:
            raise StaleMoveError(move.registration_id, expected, actual)

        state, _ = self.seats.move_player(
            state, move.registration_id, move.to_table_id, move.to_seat
        )
        return state

    # =========================================================================
    # Table break
    # =========================================================================

    def suggest_table_break(self, state: TournamentState) -> TableBreakSuggestion:
        """
        Suggest closing the table with the fewest players.

        Only suggested when the other active tables have enough empty
        seats for every occupant. Ties go to the most recently created
        table. Occupants are spread to the emptiest remaining tables.
        """
        tables = state.active_tables
        if len(tables) <= 1:
            return TableBreakSuggestion(
                can_break=False,
                message="Cannot break the last table",
            )

        candidate = min(tables, key=lambda t: (t.player_count, -t.table_number))
        return self.plan_table_break(state, candidate.table_id)

    def plan_table_break(self, state: TournamentState, table_id: str) -> TableBreakSuggestion:
        """Evacuation moves for one specific active table."""
        candidate = self.tables.get_table(state, table_id)
        others = [t for t in state.active_tables if t.table_id != candidate.table_id]
        if not others:
            return TableBreakSuggestion(
                can_break=False,
                message="Cannot break the last table",
                table_id=candidate.table_id,
                table_number=candidate.table_number,
                player_count=candidate.player_count,
            )

        capacity = sum(len(t.empty_seats) for t in others)

        if capacity < candidate.player_count:
            return TableBreakSuggestion(
                can_break=False,
                message="Remaining tables cannot absorb all players",
                table_id=candidate.table_id,
                table_number=candidate.table_number,
                player_count=candidate.player_count,
            )

        sim = {t.table_id: list(t.seats) for t in others}
        numbers = {t.table_id: t.table_number for t in others}
        moves: List[PlayerMove] = []

        for seat_number, registration_id in candidate.occupied_seats:
            open_tables = [tid for tid in sim if None in sim[tid]]
            dest = min(open_tables, key=lambda tid: (_count(sim[tid]), numbers[tid]))
            to_idx = sim[dest].index(None)
            sim[dest][to_idx] = registration_id
            moves.append(
                PlayerMove(
                    registration_id=registration_id,
                    from_table_id=candidate.table_id,
                    from_seat=seat_number,
                    to_table_id=dest,
                    to_seat=to_idx + 1,
                )
            )

        return TableBreakSuggestion(
            can_break=True,
            message=(
                f"Table {candidate.table_number} can be broken "
                f"({candidate.player_count} players to move)"
            ),
            table_id=candidate.table_id,
            table_number=candidate.table_number,
            player_count=candidate.player_count,
            moves=moves,
        )

    def execute_table_break(
        self,
        state: TournamentState,
        table_id: str,
        moves: List[PlayerMove],
    ) -> Tuple[TournamentState, TableBreakResult]:
        """
        Evacuate a table and mark it broken.

        Moves that land stay applied even when others fail; the table is
        only removed once empty, otherwise the result carries TableNotEmpty.
        """
        self.tables.get_table(state, table_id)
        state, moved = self.execute_balance(state, moves)

        table = state.tables[table_id]
        if table.player_count > 0:
            error = TableNotEmptyError(
                table_id,
                table.player_count,
                details={"failed": [f.to_dict() for f in moved.failed]},
            )
            logger.warning(
                "table_break_incomplete",
                tournament_id=state.tournament_id,
                table_id=table_id,
                remaining=table.player_count,
            )
            return state, TableBreakResult(table_id, moved, table_broken=False, error=error)

        state, _ = self.tables.remove_table(state, table_id)
        return state, TableBreakResult(table_id, moved, table_broken=True)

    # =========================================================================
    # Status
    # =========================================================================

    def check_final_table(self, state: TournamentState) -> bool:
        """All seated players fit on the largest active table."""
        tables = state.active_tables
        if len(tables) <= 1:
            return False
        seated = sum(t.player_count for t in tables)
        return seated <= max(t.max_seats for t in tables)

    def get_balance_status(self, state: TournamentState) -> BalanceStatus:
        tables: List[Table] = state.active_tables
        counts = [t.player_count for t in tables]
        spread = (max(counts) - min(counts)) if counts else 0

        return BalanceStatus(
            table_counts=[
                {
                    "table_id": t.table_id,
                    "table_number": t.table_number,
                    "player_count": t.player_count,
                    "max_seats": t.max_seats,
                }
                for t in tables
            ],
            seated_players=sum(counts),
            spread=spread,
            balanced=self.calculate_balance_plan(state).balanced,
            single_table=len(tables) <= 1,
            break_suggested=self.suggest_table_break(state).can_break,
            can_consolidate=self.check_final_table(state),
        )


def _count(seats: List[Optional[str]]) -> int:
    return sum(1 for s in seats if s is not None)
