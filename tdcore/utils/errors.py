"""Custom exception classes for live tournament errors.

Provides structured error handling with error codes and operator-friendly messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for tournament errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Clock / tournament errors
    INVALID_TOURNAMENT_STATE = "INVALID_TOURNAMENT_STATE"
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"

    # Table errors
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    TABLE_NOT_EMPTY = "TABLE_NOT_EMPTY"
    TABLE_FULL = "TABLE_FULL"

    # Seat errors
    SEAT_OCCUPIED = "SEAT_OCCUPIED"
    INVALID_SEAT_NUMBER = "INVALID_SEAT_NUMBER"

    # Registration errors
    PLAYER_NOT_ACTIVE = "PLAYER_NOT_ACTIVE"
    REGISTRATION_NOT_FOUND = "REGISTRATION_NOT_FOUND"
    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"

    # Ledger errors
    REBUY_NOT_ALLOWED = "REBUY_NOT_ALLOWED"
    ADDON_NOT_ALLOWED = "ADDON_NOT_ALLOWED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    MISSING_REASON = "MISSING_REASON"

    # Balancing
    PARTIAL_BALANCE_FAILURE = "PARTIAL_BALANCE_FAILURE"
    STALE_MOVE = "STALE_MOVE"

    # Concurrency
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    LOCK_UNAVAILABLE = "LOCK_UNAVAILABLE"


class TournamentError(Exception):
    """Base exception for live tournament errors.

    Attributes:
        code: Error code for programmatic handling
        message: Operator-friendly error message
        details: Additional error details
        recoverable: Whether the caller can retry after re-reading state
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Clock / Tournament Errors
# =============================================================================


class InvalidTournamentStateError(TournamentError):
    """Raised when an operation is illegal for the current clock status."""

    def __init__(self, operation: str, status: str, allowed: list[str] | None = None):
        message = f"Cannot {operation} while clock is {status}"
        super().__init__(
            code=ErrorCode.INVALID_TOURNAMENT_STATE,
            message=message,
            details={
                "operation": operation,
                "status": status,
                "allowedStatuses": allowed or [],
            },
            recoverable=True,
        )


class TournamentNotFoundError(TournamentError):
    """Raised when a tournament has never been initialized."""

    def __init__(self, tournament_id: str):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_FOUND,
            message=f"Tournament not found: {tournament_id}",
            details={"tournamentId": tournament_id},
            recoverable=False,
        )


# =============================================================================
# Table / Seat Errors
# =============================================================================


class TableNotFoundError(TournamentError):
    """Raised when a table is unknown or no longer active."""

    def __init__(self, table_id: str):
        super().__init__(
            code=ErrorCode.TABLE_NOT_FOUND,
            message=f"Table not found: {table_id}",
            details={"tableId": table_id},
            recoverable=False,
        )


class TableNotEmptyError(TournamentError):
    """Raised when removing a table that still has seated players."""

    def __init__(self, table_id: str, occupied: int, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.TABLE_NOT_EMPTY,
            message=f"Table {table_id} still has {occupied} seated player(s)",
            details={"tableId": table_id, "occupied": occupied, **(details or {})},
            recoverable=True,
        )


class TableFullError(TournamentError):
    """Raised when a table has no empty seat."""

    def __init__(self, table_id: str, max_seats: int):
        super().__init__(
            code=ErrorCode.TABLE_FULL,
            message=f"Table {table_id} is full ({max_seats} seats)",
            details={"tableId": table_id, "maxSeats": max_seats},
            recoverable=True,
        )


class SeatOccupiedError(TournamentError):
    """Raised when the target seat already holds a registration."""

    def __init__(self, table_id: str, seat_number: int, occupant: str):
        super().__init__(
            code=ErrorCode.SEAT_OCCUPIED,
            message=f"Seat {seat_number} at table {table_id} is occupied",
            details={
                "tableId": table_id,
                "seatNumber": seat_number,
                "occupant": occupant,
            },
            recoverable=True,
        )


class InvalidSeatNumberError(TournamentError):
    """Raised when a seat number is outside 1..max_seats."""

    def __init__(self, table_id: str, seat_number: int, max_seats: int):
        super().__init__(
            code=ErrorCode.INVALID_SEAT_NUMBER,
            message=f"Invalid seat number {seat_number} (table has {max_seats} seats)",
            details={
                "tableId": table_id,
                "seatNumber": seat_number,
                "maxSeats": max_seats,
            },
            recoverable=True,
        )


# =============================================================================
# Registration Errors
# =============================================================================


class PlayerNotActiveError(TournamentError):
    """Raised when a registration's status does not permit the operation."""

    def __init__(self, registration_id: str, status: str, operation: str = ""):
        message = f"Registration {registration_id} is {status}"
        if operation:
            message += f"; cannot {operation}"
        super().__init__(
            code=ErrorCode.PLAYER_NOT_ACTIVE,
            message=message,
            details={
                "registrationId": registration_id,
                "status": status,
                "operation": operation,
            },
            recoverable=True,
        )


class RegistrationNotFoundError(TournamentError):
    """Raised when no registration matches the given id."""

    def __init__(self, identifier: str, tournament_id: str | None = None):
        super().__init__(
            code=ErrorCode.REGISTRATION_NOT_FOUND,
            message=f"Registration not found: {identifier}",
            details={"identifier": identifier, "tournamentId": tournament_id},
            recoverable=False,
        )


class DuplicateRegistrationError(TournamentError):
    """Raised when a player is registered twice in the same tournament."""

    def __init__(self, player_id: str, registration_id: str):
        super().__init__(
            code=ErrorCode.DUPLICATE_REGISTRATION,
            message=f"Player {player_id} is already registered",
            details={"playerId": player_id, "registrationId": registration_id},
            recoverable=False,
        )


# =============================================================================
# Ledger Errors
# =============================================================================


class RebuyNotAllowedError(TournamentError):
    """Raised when the tournament's rebuy policy rejects a rebuy."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.REBUY_NOT_ALLOWED,
            message=f"Rebuy not allowed: {reason}",
            details=details,
            recoverable=False,
        )


class AddonNotAllowedError(TournamentError):
    """Raised when the tournament's add-on policy rejects an add-on."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.ADDON_NOT_ALLOWED,
            message=f"Add-on not allowed: {reason}",
            details=details,
            recoverable=False,
        )


class InvalidAmountError(TournamentError):
    """Raised when a monetary amount or chip count is invalid."""

    def __init__(self, amount: Any, reason: str = "must not be negative"):
        super().__init__(
            code=ErrorCode.INVALID_AMOUNT,
            message=f"Invalid amount {amount}: {reason}",
            details={"amount": str(amount), "reason": reason},
            recoverable=True,
        )


class MissingReasonError(TournamentError):
    """Raised when an audited operation is submitted without a reason."""

    def __init__(self, operation: str):
        super().__init__(
            code=ErrorCode.MISSING_REASON,
            message=f"A reason is required for {operation}",
            details={"operation": operation},
            recoverable=True,
        )


# =============================================================================
# Balancing Errors
# =============================================================================


class PartialBalanceFailureError(TournamentError):
    """Raised (on request) when a balance plan applied with skipped moves."""

    def __init__(self, succeeded: int, failed: list[dict[str, Any]]):
        super().__init__(
            code=ErrorCode.PARTIAL_BALANCE_FAILURE,
            message=f"{len(failed)} move(s) failed, {succeeded} applied",
            details={"succeeded": succeeded, "failed": failed},
            recoverable=True,
        )


class StaleMoveError(TournamentError):
    """Raised when a planned move's origin no longer matches the live seating."""

    def __init__(self, registration_id: str, expected: tuple, actual: tuple | None):
        super().__init__(
            code=ErrorCode.STALE_MOVE,
            message=f"Registration {registration_id} is no longer at the planned origin seat",
            details={
                "registrationId": registration_id,
                "expected": list(expected),
                "actual": list(actual) if actual else None,
            },
            recoverable=True,
        )


# =============================================================================
# Concurrency Errors
# =============================================================================


class ConcurrentModificationError(TournamentError):
    """Raised when a compare-and-swap save sees an unexpected version."""

    def __init__(self, tournament_id: str, expected_version: int):
        super().__init__(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message=f"Tournament {tournament_id} was modified concurrently",
            details={
                "tournamentId": tournament_id,
                "expectedVersion": expected_version,
            },
            recoverable=True,
        )


class LockUnavailableError(TournamentError):
    """Raised when the per-tournament lock cannot be acquired in time."""

    def __init__(self, lock_key: str, timeout_ms: int):
        super().__init__(
            code=ErrorCode.LOCK_UNAVAILABLE,
            message=f"Failed to acquire lock {lock_key} within {timeout_ms}ms",
            details={"lockKey": lock_key, "timeoutMs": timeout_ms},
            recoverable=True,
        )
