"""
Player Operations - Registration Mutation + Ledger Append as One Unit.

모든 작업은 하나의 논리 단위:
1. 레지스트레이션 변경
2. 레저에 정확히 하나의 트랜잭션 추가
3. 둘 다 반영되거나 둘 다 반영되지 않음 (불변 상태 전이)

예외: 등록(register_player)과 기권(process_withdrawal)은 금전 트랜잭션 없음.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tdcore.logging_config import get_logger
from tdcore.utils.errors import (
    AddonNotAllowedError,
    DuplicateRegistrationError,
    ErrorCode,
    InvalidAmountError,
    MissingReasonError,
    RebuyNotAllowedError,
    TournamentError,
)
from .ledger import TransactionLedger
from .models import (
    ClockStatus,
    Registration,
    RegistrationStatus,
    TournamentState,
    Transaction,
    TransactionType,
    utcnow,
)
from .registration import get_player_registration, require_status
from .seats import SeatAssignment, SeatManager

logger = get_logger(__name__)

WITHDRAWAL_TYPES = ("declined_reentry", "voluntary", "disqualified")


@dataclass(frozen=True)
class OperationResult:
    """Updated registration and the transaction appended with it."""

    registration: Registration
    transaction: Optional[Transaction]
    message: str = ""
    seat: Optional[SeatAssignment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registration": self.registration.to_dict(),
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "message": self.message,
            "seat": self.seat.to_dict() if self.seat else None,
        }


@dataclass(frozen=True)
class WithdrawalStatistics:
    """Withdrawn players broken down by withdrawal type."""

    total: int = 0
    voluntary: int = 0
    declined_reentry: int = 0
    disqualified: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "voluntary": self.voluntary,
            "declined_reentry": self.declined_reentry,
            "disqualified": self.disqualified,
        }


class PlayerOperations:
    """
    Ledgered player operations over a tournament aggregate.

    Each method takes the current state and returns (new_state, result).
    Validation happens before any transition, so a raised error leaves
    the caller's state untouched.
    """

    def __init__(
        self,
        ledger: Optional[TransactionLedger] = None,
        seat_manager: Optional[SeatManager] = None,
    ):
        self.ledger = ledger or TransactionLedger()
        self.seats = seat_manager or SeatManager()

    # =========================================================================
    # Registration & buy-in
    # =========================================================================

    def register_player(
        self,
        state: TournamentState,
        player_id: str,
    ) -> Tuple[TournamentState, OperationResult]:
        """Create an unpaid registration. No ledger entry."""
        existing = state.find_registration(player_id)
        if existing is not None:
            raise DuplicateRegistrationError(player_id, existing.registration_id)

        reg = Registration(player_id=player_id, tournament_id=state.tournament_id)
        logger.info(
            "player_registered",
            tournament_id=state.tournament_id,
            player_id=player_id,
            registration_id=reg.registration_id,
        )
        return state.with_registration(reg), OperationResult(reg, None, "Player registered")

    def process_buyin(
        self,
        state: TournamentState,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """Pay the entry: registered → active with starting chips."""
        amount = _to_amount(amount)
        chips = state.config.starting_chips if chips is None else chips
        _check_chips(chips)

        reg = state.find_registration(player_id)
        if reg is None:
            state, created = self.register_player(state, player_id)
            reg = created.registration
        require_status(reg, (RegistrationStatus.REGISTERED,), "buy in")

        updated = replace(
            reg,
            status=RegistrationStatus.ACTIVE,
            chip_count=chips,
            paid_amount=reg.paid_amount + amount,
        )
        return self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=player_id,
                registration_id=reg.registration_id,
                transaction_type=TransactionType.BUYIN,
                amount=amount,
                chips=chips,
                actor_user_id=actor_user_id,
            ),
            f"Buy-in of {amount} processed",
        )

    # =========================================================================
    # Bust-out
    # =========================================================================

    def process_bustout(
        self,
        state: TournamentState,
        player_id: str,
        eliminated_by: Iterable[str] = (),
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """
        Eliminate an active player.

        Zero to many eliminators may be recorded (multi-hitman pots).
        Finish position = remaining active players + 1. The player is
        unseated as part of the same transition.
        """
        reg = get_player_registration(state, player_id)
        require_status(reg, (RegistrationStatus.ACTIVE,), "bust out")

        hitmen = tuple(dict.fromkeys(eliminated_by))
        if player_id in hitmen:
            raise TournamentError(
                ErrorCode.INVALID_REQUEST,
                "A player cannot eliminate themselves",
                details={"playerId": player_id},
            )
        for hitman in hitmen:
            get_player_registration(state, hitman)

        still_active = state.count_by_status(RegistrationStatus.ACTIVE) - 1
        finish_position = still_active + 1

        updated = replace(
            reg,
            status=RegistrationStatus.BUSTED,
            chip_count=0,
            eliminated_by=hitmen,
            finish_position=finish_position,
            busted_at=utcnow(),
        )
        state, result = self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=player_id,
                registration_id=reg.registration_id,
                transaction_type=TransactionType.BUSTOUT,
                amount=Decimal("0"),
                chips=-reg.chip_count,
                reason=f"Busted out in position {finish_position}",
                actor_user_id=actor_user_id,
                metadata={
                    "finish_position": finish_position,
                    "eliminated_by": list(hitmen),
                },
            ),
            f"Player busted out in position {finish_position}",
        )

        state, seat = self.seats.unseat_player(state, reg.registration_id)
        return state, replace(result, seat=seat)

    # =========================================================================
    # Rebuy / add-on
    # =========================================================================

    def process_rebuy(
        self,
        state: TournamentState,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """Rebuy for an active or busted player; busted players come back active."""
        amount = _to_amount(amount)
        chips = state.config.rebuy_chips if chips is None else chips
        _check_chips(chips)

        reg = get_player_registration(state, player_id)
        require_status(
            reg,
            (RegistrationStatus.ACTIVE, RegistrationStatus.BUSTED),
            "rebuy",
        )
        self._check_rebuy_policy(state, reg)

        updated = replace(
            reg,
            status=RegistrationStatus.ACTIVE,
            chip_count=reg.chip_count + chips,
            paid_amount=reg.paid_amount + amount,
            rebuys_count=reg.rebuys_count + 1,
            eliminated_by=(),
            finish_position=None,
            busted_at=None,
        )
        return self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=player_id,
                registration_id=reg.registration_id,
                transaction_type=TransactionType.REBUY,
                amount=amount,
                chips=chips,
                actor_user_id=actor_user_id,
                metadata={"rebuy_number": updated.rebuys_count},
            ),
            f"Rebuy #{updated.rebuys_count} processed",
        )

    def process_addon(
        self,
        state: TournamentState,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        amount = _to_amount(amount)
        chips = state.config.addon_chips if chips is None else chips
        _check_chips(chips)

        reg = get_player_registration(state, player_id)
        require_status(reg, (RegistrationStatus.ACTIVE,), "add on")

        config = state.config
        if not config.allow_addon:
            raise AddonNotAllowedError("add-ons are disabled for this tournament")
        if reg.addons_count >= config.max_addons:
            raise AddonNotAllowedError(
                "add-on limit reached",
                details={"addonsCount": reg.addons_count, "maxAddons": config.max_addons},
            )

        updated = replace(
            reg,
            chip_count=reg.chip_count + chips,
            paid_amount=reg.paid_amount + amount,
            addons_count=reg.addons_count + 1,
        )
        return self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=player_id,
                registration_id=reg.registration_id,
                transaction_type=TransactionType.ADDON,
                amount=amount,
                chips=chips,
                actor_user_id=actor_user_id,
            ),
            "Add-on processed",
        )

    # =========================================================================
    # Chip adjustment
    # =========================================================================

    def process_chip_adjustment(
        self,
        state: TournamentState,
        player_id: str,
        delta: int,
        reason: str,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """Manual chip correction; the reason is mandatory for the audit trail."""
        if not reason or not reason.strip():
            raise MissingReasonError("chip adjustment")

        reg = get_player_registration(state, player_id)
        require_status(
            reg,
            (RegistrationStatus.REGISTERED, RegistrationStatus.ACTIVE),
            "adjust chips",
        )

        new_count = max(0, reg.chip_count + delta)
        updated = replace(reg, chip_count=new_count)
        return self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=player_id,
                registration_id=reg.registration_id,
                transaction_type=TransactionType.CHIP_ADJUSTMENT,
                amount=Decimal("0"),
                chips=delta,
                reason=reason.strip(),
                actor_user_id=actor_user_id,
                metadata={"previous_chips": reg.chip_count, "new_chips": new_count},
            ),
            f"Chips adjusted by {delta:+d}",
        )

    # =========================================================================
    # Withdrawal (declined re-entry)
    # =========================================================================

    def process_withdrawal(
        self,
        state: TournamentState,
        player_id: str,
        reason: str = "",
        withdrawal_type: str = "declined_reentry",
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """
        Busted player declines re-entry: busted → withdrawn (terminal).

        No monetary transaction; the reason is kept on the registration
        and written to the audit log.
        """
        if withdrawal_type not in WITHDRAWAL_TYPES:
            raise TournamentError(
                ErrorCode.INVALID_REQUEST,
                f"Unknown withdrawal type: {withdrawal_type}",
                details={"withdrawalType": withdrawal_type, "allowed": list(WITHDRAWAL_TYPES)},
            )
        reg = get_player_registration(state, player_id)
        require_status(reg, (RegistrationStatus.BUSTED,), "withdraw")

        updated = replace(
            reg,
            status=RegistrationStatus.WITHDRAWN,
            withdrawal_reason=reason or None,
            withdrawal_type=withdrawal_type,
            withdrawn_at=utcnow(),
        )
        logger.info(
            "player_withdrawn",
            tournament_id=state.tournament_id,
            player_id=player_id,
            registration_id=reg.registration_id,
            withdrawal_type=withdrawal_type,
            reason=reason,
            finish_position=reg.finish_position,
            actor_user_id=actor_user_id,
        )
        return state.with_registration(updated), OperationResult(
            updated, None, "Player withdrawn"
        )

    # =========================================================================
    # Tournament completion
    # =========================================================================

    def get_tournament_winner(self, state: TournamentState) -> Optional[Registration]:
        """
        The last active player once everyone else has been eliminated.

        None while more than one player is active, or when nobody has
        busted yet (a lone entrant has not won anything).
        """
        active = [
            r for r in state.registrations.values() if r.status == RegistrationStatus.ACTIVE
        ]
        if len(active) != 1:
            return None
        eliminated = state.count_by_status(RegistrationStatus.BUSTED, RegistrationStatus.WITHDRAWN)
        if eliminated == 0:
            return None
        return active[0]

    def process_tournament_completion(
        self,
        state: TournamentState,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[TournamentState, OperationResult]:
        """
        Record the winner: finish position 1 plus a WINNER ledger entry.

        The clock is left alone; finishing it stays a director action.
        """
        winner = self.get_tournament_winner(state)
        if winner is None:
            raise TournamentError(
                ErrorCode.INVALID_TOURNAMENT_STATE,
                "Tournament has no single remaining player",
                details={"remainingPlayers": self.get_remaining_players(state)},
            )
        if winner.finish_position == 1:
            raise TournamentError(
                ErrorCode.INVALID_TOURNAMENT_STATE,
                "Tournament winner already recorded",
                details={"playerId": winner.player_id},
            )

        updated = replace(winner, finish_position=1)
        state, result = self._commit(
            state,
            updated,
            Transaction(
                tournament_id=state.tournament_id,
                player_id=winner.player_id,
                registration_id=winner.registration_id,
                transaction_type=TransactionType.WINNER,
                amount=Decimal("0"),
                chips=0,
                reason="Tournament winner (position 1)",
                actor_user_id=actor_user_id,
                metadata={"finish_position": 1, "winner_chips": winner.chip_count},
            ),
            "Tournament completed",
        )
        logger.info(
            "tournament_completed",
            tournament_id=state.tournament_id,
            player_id=winner.player_id,
            registration_id=winner.registration_id,
            chips=winner.chip_count,
        )
        return state, result

    # =========================================================================
    # Reads
    # =========================================================================

    def get_bustout_order(self, state: TournamentState) -> List[Registration]:
        """Busted and withdrawn players, earliest elimination first."""
        out = [r for r in state.registrations.values() if r.busted_at is not None]
        return sorted(out, key=lambda r: r.busted_at)

    def get_remaining_players(self, state: TournamentState) -> int:
        return state.count_by_status(RegistrationStatus.ACTIVE)

    def get_withdrawn_players(self, state: TournamentState) -> List[Registration]:
        """Withdrawn players, most recent withdrawal first."""
        out = [r for r in state.registrations.values() if r.status == RegistrationStatus.WITHDRAWN]
        return sorted(out, key=lambda r: r.withdrawn_at or r.registered_at, reverse=True)

    def get_withdrawal_statistics(self, state: TournamentState) -> WithdrawalStatistics:
        types = [r.withdrawal_type for r in self.get_withdrawn_players(state)]
        return WithdrawalStatistics(
            total=len(types),
            voluntary=types.count("voluntary"),
            declined_reentry=types.count("declined_reentry"),
            disqualified=types.count("disqualified"),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _commit(
        self,
        state: TournamentState,
        registration: Registration,
        transaction: Transaction,
        message: str,
    ) -> Tuple[TournamentState, OperationResult]:
        state = state.with_registration(registration)
        state, stored = self.ledger.append(state, transaction)
        return state, OperationResult(registration, stored, message)

    @staticmethod
    def _check_rebuy_policy(state: TournamentState, reg: Registration) -> None:
        config = state.config
        if not config.allow_rebuy:
            raise RebuyNotAllowedError("rebuys are disabled for this tournament")
        if state.clock.status == ClockStatus.FINISHED:
            raise RebuyNotAllowedError("tournament is finished")
        if state.clock.current_level > config.rebuy_period_levels:
            raise RebuyNotAllowedError(
                "rebuy period has ended",
                details={
                    "currentLevel": state.clock.current_level,
                    "rebuyPeriodLevels": config.rebuy_period_levels,
                },
            )
        if reg.rebuys_count >= config.max_rebuys:
            raise RebuyNotAllowedError(
                "rebuy limit reached",
                details={"rebuysCount": reg.rebuys_count, "maxRebuys": config.max_rebuys},
            )


def _to_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(value, "not a number")
    if not amount.is_finite():
        raise InvalidAmountError(value, "not a number")
    if amount < 0:
        raise InvalidAmountError(value)
    return amount


def _check_chips(chips: int) -> None:
    if chips < 0:
        raise InvalidAmountError(chips, "chips must not be negative")
