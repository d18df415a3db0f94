"""
Seat Manager - Registration ↔ (table, seat) Assignment.

좌석 배치는 탈락/칩과 독립적: 레지스트레이션 상태를 변경하지 않음.

validate_assignment와 move_player는 분리되어 있음:
- UI가 커밋 전에 이동 가능 여부를 미리 확인할 수 있도록
- move_player는 재검증하지 않지만, 같은 상태 전이 안에서
  좌석 범위/공석 여부는 다시 확인 (동시 요청 방어)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from tdcore.logging_config import get_logger
from tdcore.utils.errors import (
    InvalidSeatNumberError,
    SeatOccupiedError,
    TableFullError,
    TournamentError,
)
from .models import Registration, RegistrationStatus, Table, TournamentState
from .registration import get_registration, require_status
from .tables import TableManager

logger = get_logger(__name__)

_SEATABLE = (RegistrationStatus.REGISTERED, RegistrationStatus.ACTIVE)


@dataclass(frozen=True)
class SeatAssignment:
    """Result of a seat change."""

    registration_id: str
    to_table_id: Optional[str]
    to_seat: Optional[int]
    from_table_id: Optional[str] = None
    from_seat: Optional[int] = None

    @property
    def changed(self) -> bool:
        return (self.from_table_id, self.from_seat) != (self.to_table_id, self.to_seat)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registration_id": self.registration_id,
            "from_table_id": self.from_table_id,
            "from_seat": self.from_seat,
            "to_table_id": self.to_table_id,
            "to_seat": self.to_seat,
            "changed": self.changed,
        }


@dataclass
class AutoSeatResult:
    """Outcome of seating every unseated registration."""

    seated: List[SeatAssignment] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def seated_count(self) -> int:
        return len(self.seated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seated_count": self.seated_count,
            "seated": [s.to_dict() for s in self.seated],
            "errors": self.errors,
        }


class SeatManager:
    """Moves, validates and clears seat assignments."""

    def __init__(self, table_manager: Optional[TableManager] = None):
        self.tables = table_manager or TableManager()

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_assignment(
        self,
        state: TournamentState,
        registration_id: str,
        to_table_id: str,
        to_seat_number: int,
    ) -> None:
        """
        Check that a registration may take the given seat.

        Read-only. Raises RegistrationNotFound, PlayerNotActive,
        TableNotFound, InvalidSeatNumber, TableFull or SeatOccupied.
        """
        reg = get_registration(state, registration_id)
        require_status(reg, _SEATABLE, "take a seat")

        table = self.tables.get_table(state, to_table_id)
        self._check_seat(table, to_seat_number)
        if table.is_full:
            raise TableFullError(table.table_id, table.max_seats)
        occupant = table.occupant(to_seat_number)
        if occupant is not None:
            raise SeatOccupiedError(table.table_id, to_seat_number, occupant)

    def check_assignment(
        self,
        state: TournamentState,
        registration_id: str,
        to_table_id: str,
        to_seat_number: int,
    ) -> Optional[TournamentError]:
        """validate_assignment as a value: the error, or None when legal."""
        try:
            self.validate_assignment(state, registration_id, to_table_id, to_seat_number)
        except TournamentError as e:
            return e
        return None

    # =========================================================================
    # Mutations
    # =========================================================================

    def move_player(
        self,
        state: TournamentState,
        registration_id: str,
        to_table_id: str,
        to_seat_number: int,
    ) -> Tuple[TournamentState, SeatAssignment]:
        """
        Clear the registration's current seat and occupy the target seat.

        Callers validate first; the target seat's range and emptiness are
        still re-checked here so a stale validation cannot double-book.
        """
        table = self.tables.get_table(state, to_table_id)
        self._check_seat(table, to_seat_number)

        occupant = table.occupant(to_seat_number)
        current = state.seat_of(registration_id)

        if occupant == registration_id:
            return state, SeatAssignment(
                registration_id=registration_id,
                to_table_id=to_table_id,
                to_seat=to_seat_number,
                from_table_id=to_table_id,
                from_seat=to_seat_number,
            )
        if occupant is not None:
            raise SeatOccupiedError(to_table_id, to_seat_number, occupant)

        new_state = state
        if current is not None:
            from_table = new_state.tables[current[0]]
            new_state = new_state.with_table(from_table.with_player_removed(registration_id))

        # 같은 테이블 내 이동이면 갱신된 테이블을 다시 읽어야 함
        target = new_state.tables[to_table_id]
        new_state = new_state.with_table(target.with_player_seated(registration_id, to_seat_number))

        assignment = SeatAssignment(
            registration_id=registration_id,
            to_table_id=to_table_id,
            to_seat=to_seat_number,
            from_table_id=current[0] if current else None,
            from_seat=current[1] if current else None,
        )
        logger.info(
            "player_moved",
            tournament_id=state.tournament_id,
            **assignment.to_dict(),
        )
        return new_state, assignment

    def unseat_player(
        self,
        state: TournamentState,
        registration_id: str,
    ) -> Tuple[TournamentState, SeatAssignment]:
        """Clear the registration's seat without seating it elsewhere."""
        current = state.seat_of(registration_id)
        if current is None:
            return state, SeatAssignment(registration_id, None, None)

        table = state.tables[current[0]]
        new_state = state.with_table(table.with_player_removed(registration_id))
        logger.info(
            "player_unseated",
            tournament_id=state.tournament_id,
            registration_id=registration_id,
            table_id=current[0],
            seat=current[1],
        )
        return new_state, SeatAssignment(
            registration_id=registration_id,
            to_table_id=None,
            to_seat=None,
            from_table_id=current[0],
            from_seat=current[1],
        )

    # =========================================================================
    # Lookups & auto seating
    # =========================================================================

    def get_player_seat(
        self,
        state: TournamentState,
        registration_id: str,
    ) -> Optional[Tuple[str, int]]:
        get_registration(state, registration_id)
        return state.seat_of(registration_id)

    def get_unseated_registrations(self, state: TournamentState) -> List[Registration]:
        """Seatable registrations without a seat, in registration order."""
        seated = {rid for t in state.active_tables for _, rid in t.occupied_seats}
        return sorted(
            (
                r
                for r in state.registrations.values()
                if r.is_seatable and r.registration_id not in seated
            ),
            key=lambda r: r.registered_at,
        )

    def find_optimal_seat(self, state: TournamentState) -> Optional[Tuple[str, int]]:
        """
        Lowest empty seat at the active table with the fewest players.

        Ties go to the earliest-created table.
        """
        candidates: List[Table] = [t for t in state.active_tables if t.empty_seats]
        if not candidates:
            return None
        table = min(candidates, key=lambda t: (t.player_count, t.table_number))
        return table.table_id, table.empty_seats[0]

    def auto_seat_player(
        self,
        state: TournamentState,
        registration_id: str,
    ) -> Tuple[TournamentState, Optional[SeatAssignment]]:
        """Seat one registration at the optimal seat; None when no seat is free."""
        reg = get_registration(state, registration_id)
        require_status(reg, _SEATABLE, "take a seat")

        seat = self.find_optimal_seat(state)
        if seat is None:
            return state, None
        return self.move_player(state, registration_id, seat[0], seat[1])

    def auto_seat_players(self, state: TournamentState) -> Tuple[TournamentState, AutoSeatResult]:
        """Seat every unseated registration, keeping tables balanced."""
        result = AutoSeatResult()

        for reg in self.get_unseated_registrations(state):
            seat = self.find_optimal_seat(state)
            if seat is None:
                result.errors.append(
                    {
                        "registration_id": reg.registration_id,
                        "player_id": reg.player_id,
                        "error": "No available seat",
                    }
                )
                continue
            state, assignment = self.move_player(state, reg.registration_id, seat[0], seat[1])
            result.seated.append(assignment)

        logger.info(
            "players_auto_seated",
            tournament_id=state.tournament_id,
            seated=result.seated_count,
            unseated=len(result.errors),
        )
        return state, result

    @staticmethod
    def _check_seat(table: Table, seat_number: int) -> None:
        if not 1 <= seat_number <= table.max_seats:
            raise InvalidSeatNumberError(table.table_id, seat_number, table.max_seats)
