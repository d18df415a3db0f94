"""Snapshot schemas returned by the live tournament engine."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .ledger import TransactionLedger
from .models import BlindLevel, RegistrationStatus, Table, TournamentState


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class BlindLevelResponse(BaseSchema):
    level: int
    small_blind: int = Field(..., alias="smallBlind")
    big_blind: int = Field(..., alias="bigBlind")
    ante: int = 0
    duration_minutes: int = Field(..., alias="durationMinutes")
    break_minutes: int = Field(default=0, alias="breakMinutes")

    @classmethod
    def from_level(cls, level: Optional[BlindLevel]) -> Optional["BlindLevelResponse"]:
        if level is None:
            return None
        return cls.model_validate(level)


class ClockResponse(BaseSchema):
    status: str
    current_level: int = Field(..., alias="currentLevel")
    time_remaining: float = Field(..., alias="timeRemaining", description="Seconds left in the level or break")
    level_expired: bool = Field(
        default=False,
        alias="levelExpired",
        description="Running level reached zero and awaits a manual advance",
    )
    current_blind: Optional[BlindLevelResponse] = Field(None, alias="currentBlind")
    next_blind: Optional[BlindLevelResponse] = Field(None, alias="nextBlind")


class SeatResponse(BaseSchema):
    seat_number: int = Field(..., alias="seatNumber")
    registration_id: Optional[str] = Field(None, alias="registrationId")
    player_id: Optional[str] = Field(None, alias="playerId")


class TableResponse(BaseSchema):
    table_id: str = Field(..., alias="tableId")
    table_number: int = Field(..., alias="tableNumber")
    max_seats: int = Field(..., alias="maxSeats")
    status: str
    player_count: int = Field(..., alias="playerCount")
    seats: list[SeatResponse] = Field(default_factory=list)

    @classmethod
    def from_table(cls, table: Table, state: TournamentState) -> "TableResponse":
        seats = []
        for number, rid in enumerate(table.seats, start=1):
            reg = state.registrations.get(rid) if rid else None
            seats.append(
                SeatResponse(
                    seat_number=number,
                    registration_id=rid,
                    player_id=reg.player_id if reg else None,
                )
            )
        return cls(
            table_id=table.table_id,
            table_number=table.table_number,
            max_seats=table.max_seats,
            status=table.status.value,
            player_count=table.player_count,
            seats=seats,
        )


class TournamentSnapshot(BaseSchema):
    """Read model of one tournament after the latest tick."""

    tournament_id: str = Field(..., alias="tournamentId")
    name: str
    version: int
    clock: ClockResponse
    tables: list[TableResponse] = Field(default_factory=list)
    seated_players: int = Field(..., alias="seatedPlayers")
    remaining_players: int = Field(..., alias="remainingPlayers")
    registered_players: int = Field(..., alias="registeredPlayers")
    busted_players: int = Field(..., alias="bustedPlayers")
    prize_pool: Decimal = Field(..., alias="prizePool")
    winner_player_id: Optional[str] = Field(default=None, alias="winnerPlayerId")

    @classmethod
    def from_state(cls, state: TournamentState) -> "TournamentSnapshot":
        clock = state.clock
        config = state.config
        active = state.active_tables

        return cls(
            tournament_id=state.tournament_id,
            name=config.name,
            version=state.version,
            clock=ClockResponse(
                status=clock.status.value,
                current_level=clock.current_level,
                time_remaining=clock.time_remaining,
                level_expired=clock.level_expired,
                current_blind=BlindLevelResponse.from_level(
                    config.get_blind_level(clock.current_level)
                ),
                next_blind=BlindLevelResponse.from_level(
                    config.get_blind_level(clock.current_level + 1)
                ),
            ),
            tables=[TableResponse.from_table(t, state) for t in active],
            seated_players=sum(t.player_count for t in active),
            remaining_players=state.count_by_status(RegistrationStatus.ACTIVE),
            registered_players=len(state.registrations),
            busted_players=state.count_by_status(
                RegistrationStatus.BUSTED, RegistrationStatus.WITHDRAWN
            ),
            prize_pool=TransactionLedger().prize_pool(state),
            winner_player_id=next(
                (
                    r.player_id
                    for r in state.registrations.values()
                    if r.status == RegistrationStatus.ACTIVE and r.finish_position == 1
                ),
                None,
            ),
        )
