"""
Live Tournament Data Models.

Immutable state representations for live tournament entities.
All mutations go through the component modules (clock, tables, seats,
operations, ledger) and return new instances; the engine persists them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ClockStatus(Enum):
    """Tournament clock states."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"  # 디렉터가 수동으로 멈춘 상태
    ON_BREAK = "on_break"  # 레벨 사이 휴식 (블라인드 증가 없음)
    FINISHED = "finished"


class TableStatus(Enum):
    ACTIVE = "active"
    BROKEN = "broken"


class RegistrationStatus(Enum):
    """Tournament player states."""

    REGISTERED = "registered"  # 등록만 완료 (바이인 전)
    ACTIVE = "active"
    BUSTED = "busted"
    WITHDRAWN = "withdrawn"  # 종료 상태 - 리바이 불가


class TransactionType(Enum):
    """Ledger entry types."""

    BUYIN = "buyin"
    REBUY = "rebuy"
    ADDON = "addon"
    BUSTOUT = "bustout"
    CHIP_ADJUSTMENT = "chip_adjustment"
    WINNER = "winner"


# Types that move money into the prize pool
MONETARY_TYPES = (TransactionType.BUYIN, TransactionType.REBUY, TransactionType.ADDON)


@dataclass(frozen=True)
class BlindLevel:
    """Blind level configuration.

    break_minutes > 0 schedules a break after this level.
    """

    level: int
    small_blind: int
    big_blind: int
    ante: int = 0
    duration_minutes: int = 15
    break_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "ante": self.ante,
            "duration_minutes": self.duration_minutes,
            "break_minutes": self.break_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlindLevel":
        return cls(**data)


@dataclass(frozen=True)
class TournamentConfig:
    """
    Tournament configuration - immutable after initialization.

    Supports freezeout (no rebuy/addon) and rebuy/add-on formats.
    Durations fall back to engine settings when the blind structure
    does not cover a level.
    """

    name: str = "Tournament"
    default_max_seats: int = 9
    starting_chips: int = 10000

    blind_levels: Tuple[BlindLevel, ...] = field(
        default_factory=lambda: (
            BlindLevel(1, 25, 50, 0, 15),
            BlindLevel(2, 50, 100, 0, 15),
            BlindLevel(3, 75, 150, 0, 15),
            BlindLevel(4, 100, 200, 25, 15, break_minutes=10),
            BlindLevel(5, 150, 300, 25, 15),
            BlindLevel(6, 200, 400, 50, 15),
            BlindLevel(7, 300, 600, 75, 12),
            BlindLevel(8, 400, 800, 100, 12, break_minutes=10),
            BlindLevel(9, 600, 1200, 150, 12),
            BlindLevel(10, 800, 1600, 200, 10),
        )
    )

    # 리바이/애드온
    allow_rebuy: bool = False
    rebuy_period_levels: int = 6  # 리바이 가능 레벨 수
    rebuy_chips: int = 10000
    max_rebuys: int = 3
    allow_addon: bool = False
    addon_chips: int = 15000
    max_addons: int = 1

    final_table_size: int = 9

    def get_blind_level(self, level: int) -> Optional[BlindLevel]:
        """Get blind level by number."""
        for bl in self.blind_levels:
            if bl.level == level:
                return bl
        return None

    def level_duration_seconds(self, level: int) -> Optional[int]:
        bl = self.get_blind_level(level)
        return bl.duration_minutes * 60 if bl else None

    def break_duration_seconds(self, after_level: int) -> Optional[int]:
        bl = self.get_blind_level(after_level)
        if bl and bl.break_minutes > 0:
            return bl.break_minutes * 60
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "default_max_seats": self.default_max_seats,
            "starting_chips": self.starting_chips,
            "blind_levels": [bl.to_dict() for bl in self.blind_levels],
            "allow_rebuy": self.allow_rebuy,
            "rebuy_period_levels": self.rebuy_period_levels,
            "rebuy_chips": self.rebuy_chips,
            "max_rebuys": self.max_rebuys,
            "allow_addon": self.allow_addon,
            "addon_chips": self.addon_chips,
            "max_addons": self.max_addons,
            "final_table_size": self.final_table_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TournamentConfig":
        data = dict(data)
        data["blind_levels"] = tuple(
            BlindLevel.from_dict(bl) for bl in data.get("blind_levels", [])
        )
        return cls(**data)


@dataclass(frozen=True)
class ClockState:
    """
    Tournament clock state.

    updated_at is a reading (seconds) of the engine's time source. A
    single worker uses time.monotonic; workers sharing a Redis store use
    time.time so every host measures elapsed time against the same base.
    time_remaining never goes below zero.
    """

    status: ClockStatus = ClockStatus.NOT_STARTED
    current_level: int = 1
    time_remaining: float = 0.0
    updated_at: float = 0.0

    @property
    def is_running(self) -> bool:
        return self.status == ClockStatus.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.status == ClockStatus.FINISHED

    @property
    def level_expired(self) -> bool:
        """Running level reached zero; the director decides when to advance."""
        return self.status == ClockStatus.RUNNING and self.time_remaining <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "current_level": self.current_level,
            "time_remaining": self.time_remaining,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClockState":
        return cls(
            status=ClockStatus(data["status"]),
            current_level=data["current_level"],
            time_remaining=data["time_remaining"],
            updated_at=data["updated_at"],
        )


@dataclass(frozen=True)
class Table:
    """
    Tournament table state - immutable.

    seats[i] holds the registration_id at seat number i + 1.
    """

    table_id: str = field(default_factory=lambda: str(uuid4()))
    tournament_id: str = ""
    table_number: int = 1
    max_seats: int = 9
    status: TableStatus = TableStatus.ACTIVE
    seats: Tuple[Optional[str], ...] = ()
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, tournament_id: str, table_number: int, max_seats: int) -> "Table":
        return cls(
            tournament_id=tournament_id,
            table_number=table_number,
            max_seats=max_seats,
            seats=tuple([None] * max_seats),
        )

    @property
    def is_active(self) -> bool:
        return self.status == TableStatus.ACTIVE

    @property
    def player_count(self) -> int:
        """Current player count."""
        return sum(1 for s in self.seats if s is not None)

    @property
    def empty_seats(self) -> List[int]:
        """Empty seat numbers, ascending."""
        return [i + 1 for i, s in enumerate(self.seats) if s is None]

    @property
    def occupied_seats(self) -> List[Tuple[int, str]]:
        """(seat_number, registration_id) pairs, ascending by seat."""
        return [(i + 1, s) for i, s in enumerate(self.seats) if s is not None]

    @property
    def is_full(self) -> bool:
        return self.player_count >= self.max_seats

    def occupant(self, seat_number: int) -> Optional[str]:
        return self.seats[seat_number - 1]

    def seat_of(self, registration_id: str) -> Optional[int]:
        for i, s in enumerate(self.seats):
            if s == registration_id:
                return i + 1
        return None

    def with_player_seated(self, registration_id: str, seat_number: int) -> "Table":
        """Return new table with registration seated."""
        new_seats = list(self.seats)
        new_seats[seat_number - 1] = registration_id
        return replace(self, seats=tuple(new_seats))

    def with_player_removed(self, registration_id: str) -> "Table":
        """Return new table with registration removed."""
        new_seats = [None if s == registration_id else s for s in self.seats]
        return replace(self, seats=tuple(new_seats))

    def with_status(self, status: TableStatus) -> "Table":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_id": self.table_id,
            "tournament_id": self.tournament_id,
            "table_number": self.table_number,
            "max_seats": self.max_seats,
            "status": self.status.value,
            "seats": list(self.seats),
            "player_count": self.player_count,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        return cls(
            table_id=data["table_id"],
            tournament_id=data["tournament_id"],
            table_number=data["table_number"],
            max_seats=data["max_seats"],
            status=TableStatus(data["status"]),
            seats=tuple(data["seats"]),
            created_at=_parse_dt(data["created_at"]),
        )


@dataclass(frozen=True)
class Registration:
    """
    Tournament player record - immutable.

    Mutated only through player operations, each paired with
    exactly one ledger entry.
    """

    player_id: str
    tournament_id: str = ""
    registration_id: str = field(default_factory=lambda: str(uuid4()))
    status: RegistrationStatus = RegistrationStatus.REGISTERED

    chip_count: int = 0
    paid_amount: Decimal = Decimal("0")
    rebuys_count: int = 0
    addons_count: int = 0

    # 탈락 기록 (멀티 히트맨 지원)
    eliminated_by: Tuple[str, ...] = ()
    finish_position: Optional[int] = None
    busted_at: Optional[datetime] = None

    withdrawal_reason: Optional[str] = None
    withdrawal_type: Optional[str] = None
    withdrawn_at: Optional[datetime] = None

    registered_at: datetime = field(default_factory=utcnow)

    @property
    def is_seatable(self) -> bool:
        return self.status in (RegistrationStatus.REGISTERED, RegistrationStatus.ACTIVE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registration_id": self.registration_id,
            "tournament_id": self.tournament_id,
            "player_id": self.player_id,
            "status": self.status.value,
            "chip_count": self.chip_count,
            "paid_amount": str(self.paid_amount),
            "rebuys_count": self.rebuys_count,
            "addons_count": self.addons_count,
            "eliminated_by": list(self.eliminated_by),
            "finish_position": self.finish_position,
            "busted_at": self.busted_at.isoformat() if self.busted_at else None,
            "withdrawal_reason": self.withdrawal_reason,
            "withdrawal_type": self.withdrawal_type,
            "withdrawn_at": self.withdrawn_at.isoformat() if self.withdrawn_at else None,
            "registered_at": self.registered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Registration":
        return cls(
            registration_id=data["registration_id"],
            tournament_id=data["tournament_id"],
            player_id=data["player_id"],
            status=RegistrationStatus(data["status"]),
            chip_count=data["chip_count"],
            paid_amount=Decimal(data["paid_amount"]),
            rebuys_count=data["rebuys_count"],
            addons_count=data["addons_count"],
            eliminated_by=tuple(data["eliminated_by"]),
            finish_position=data.get("finish_position"),
            busted_at=_parse_dt(data.get("busted_at")),
            withdrawal_reason=data.get("withdrawal_reason"),
            withdrawal_type=data.get("withdrawal_type"),
            withdrawn_at=_parse_dt(data.get("withdrawn_at")),
            registered_at=_parse_dt(data["registered_at"]),
        )


@dataclass(frozen=True)
class Transaction:
    """
    Ledger entry - append-only, never updated or deleted.

    transaction_id is assigned by the ledger (monotonic per tournament).
    """

    tournament_id: str
    player_id: str
    transaction_type: TransactionType
    amount: Decimal = Decimal("0")
    chips: int = 0
    reason: str = ""
    registration_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    transaction_id: int = 0
    created_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "tournament_id": self.tournament_id,
            "player_id": self.player_id,
            "registration_id": self.registration_id,
            "transaction_type": self.transaction_type.value,
            "amount": str(self.amount),
            "chips": self.chips,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            transaction_id=data["transaction_id"],
            tournament_id=data["tournament_id"],
            player_id=data["player_id"],
            registration_id=data.get("registration_id"),
            transaction_type=TransactionType(data["transaction_type"]),
            amount=Decimal(data["amount"]),
            chips=data["chips"],
            reason=data.get("reason", ""),
            actor_user_id=data.get("actor_user_id"),
            created_at=_parse_dt(data["created_at"]),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class TournamentState:
    """
    Complete live tournament state - immutable aggregate root.

    This is the single source of truth for one tournament.
    All mutations return new state instances; version is bumped
    by the store on every successful save.
    """

    tournament_id: str
    config: TournamentConfig = field(default_factory=TournamentConfig)
    clock: ClockState = field(default_factory=ClockState)

    # table_id -> Table (broken tables are kept for history)
    tables: Dict[str, Table] = field(default_factory=dict)

    # registration_id -> Registration
    registrations: Dict[str, Registration] = field(default_factory=dict)

    transactions: Tuple[Transaction, ...] = ()
    next_transaction_id: int = 1

    version: int = 0
    created_at: datetime = field(default_factory=utcnow)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def ordered_tables(self, status: Optional[TableStatus] = None) -> List[Table]:
        """Tables in creation order, optionally filtered by status."""
        tables = sorted(self.tables.values(), key=lambda t: t.table_number)
        if status is not None:
            tables = [t for t in tables if t.status == status]
        return tables

    @property
    def active_tables(self) -> List[Table]:
        return self.ordered_tables(TableStatus.ACTIVE)

    def find_registration(self, player_id: str) -> Optional[Registration]:
        for reg in self.registrations.values():
            if reg.player_id == player_id:
                return reg
        return None

    def seat_of(self, registration_id: str) -> Optional[Tuple[str, int]]:
        """(table_id, seat_number) for a seated registration."""
        for table in self.active_tables:
            seat = table.seat_of(registration_id)
            if seat is not None:
                return table.table_id, seat
        return None

    def count_by_status(self, *statuses: RegistrationStatus) -> int:
        return sum(1 for r in self.registrations.values() if r.status in statuses)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def with_clock(self, clock: ClockState) -> "TournamentState":
        return replace(self, clock=clock)

    def with_table(self, table: Table) -> "TournamentState":
        new_tables = dict(self.tables)
        new_tables[table.table_id] = table
        return replace(self, tables=new_tables)

    def with_registration(self, registration: Registration) -> "TournamentState":
        new_regs = dict(self.registrations)
        new_regs[registration.registration_id] = registration
        return replace(self, registrations=new_regs)

    def with_version(self, version: int) -> "TournamentState":
        return replace(self, version=version)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "config": self.config.to_dict(),
            "clock": self.clock.to_dict(),
            "tables": [t.to_dict() for t in self.ordered_tables()],
            "registrations": [r.to_dict() for r in self.registrations.values()],
            "transactions": [t.to_dict() for t in self.transactions],
            "next_transaction_id": self.next_transaction_id,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TournamentState":
        tables = [Table.from_dict(t) for t in data.get("tables", [])]
        regs = [Registration.from_dict(r) for r in data.get("registrations", [])]
        return cls(
            tournament_id=data["tournament_id"],
            config=TournamentConfig.from_dict(data["config"]),
            clock=ClockState.from_dict(data["clock"]),
            tables={t.table_id: t for t in tables},
            registrations={r.registration_id: r for r in regs},
            transactions=tuple(
                Transaction.from_dict(t) for t in data.get("transactions", [])
            ),
            next_transaction_id=data.get("next_transaction_id", 1),
            version=data.get("version", 0),
            created_at=_parse_dt(data["created_at"]),
        )
