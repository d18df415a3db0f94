"""
Table Manager - Table Lifecycle.

테이블 생성/해체와 조회. 좌석 배치는 SeatManager 담당.
"""

from typing import List, Optional, Tuple

from tdcore.logging_config import get_logger
from tdcore.utils.errors import InvalidAmountError, TableNotEmptyError, TableNotFoundError
from .models import Table, TableStatus, TournamentState

logger = get_logger(__name__)


class TableManager:
    """Creates, removes and lists tables of one tournament aggregate."""

    def add_table(
        self,
        state: TournamentState,
        max_seats: Optional[int] = None,
    ) -> Tuple[TournamentState, Table]:
        """Create an active table with every seat empty."""
        seats = max_seats if max_seats is not None else state.config.default_max_seats
        if seats <= 0:
            raise InvalidAmountError(seats, "max_seats must be greater than zero")

        table = Table.create(
            tournament_id=state.tournament_id,
            table_number=self._next_table_number(state),
            max_seats=seats,
        )
        logger.info(
            "table_created",
            tournament_id=state.tournament_id,
            table_id=table.table_id,
            table_number=table.table_number,
            max_seats=seats,
        )
        return state.with_table(table), table

    def remove_table(self, state: TournamentState, table_id: str) -> Tuple[TournamentState, Table]:
        """Mark an empty table broken; seated players block removal."""
        table = self.get_table(state, table_id)
        if table.player_count > 0:
            raise TableNotEmptyError(table_id, table.player_count)

        broken = table.with_status(TableStatus.BROKEN)
        logger.info(
            "table_broken",
            tournament_id=state.tournament_id,
            table_id=table_id,
            table_number=table.table_number,
        )
        return state.with_table(broken), broken

    def get_table(self, state: TournamentState, table_id: str) -> Table:
        """Active table by id."""
        table = state.tables.get(table_id)
        if table is None or not table.is_active:
            raise TableNotFoundError(table_id)
        return table

    def get_tables(
        self,
        state: TournamentState,
        status: Optional[TableStatus] = None,
    ) -> List[Table]:
        return state.ordered_tables(status)

    def get_table_count(
        self,
        state: TournamentState,
        status: Optional[TableStatus] = None,
    ) -> int:
        return len(state.ordered_tables(status))

    def get_seated_player_count(self, state: TournamentState) -> int:
        return sum(t.player_count for t in state.active_tables)

    @staticmethod
    def _next_table_number(state: TournamentState) -> int:
        # 해체된 테이블 번호는 재사용하지 않음 (생성 순서 유지)
        return max((t.table_number for t in state.tables.values()), default=0) + 1
