"""
Live Poker Tournament Core.

This module provides:
- Poll-driven tournament clock (levels, breaks, pause/resume)
- Table lifecycle, seat assignment and table balancing
- Ledgered player operations (buy-in, bust-out, rebuy, add-on, adjustments)
- Per-tournament serialization with local or Redis locks and versioned saves
"""

from .balancer import BalanceResult, PlayerMove, TableBalancer
from .clock import TournamentClock
from .distributed_lock import DistributedLockManager, LocalLockManager
from .engine import ActionResult, LiveTournamentEngine, create_engine
from .ledger import TransactionLedger
from .models import (
    BlindLevel,
    ClockState,
    ClockStatus,
    Registration,
    RegistrationStatus,
    Table,
    TableStatus,
    TournamentConfig,
    TournamentState,
    Transaction,
    TransactionType,
)
from .operations import OperationResult, PlayerOperations, WithdrawalStatistics
from .schemas import TournamentSnapshot
from .seats import SeatManager
from .store import InMemoryTournamentStore, RedisTournamentStore, TournamentStore
from .tables import TableManager

__all__ = [
    "LiveTournamentEngine",
    "ActionResult",
    "create_engine",
    "TournamentClock",
    "TransactionLedger",
    "TableManager",
    "SeatManager",
    "TableBalancer",
    "BalanceResult",
    "PlayerMove",
    "PlayerOperations",
    "OperationResult",
    "WithdrawalStatistics",
    "TournamentStore",
    "InMemoryTournamentStore",
    "RedisTournamentStore",
    "LocalLockManager",
    "DistributedLockManager",
    "TournamentSnapshot",
    "BlindLevel",
    "ClockState",
    "ClockStatus",
    "Registration",
    "RegistrationStatus",
    "Table",
    "TableStatus",
    "TournamentConfig",
    "TournamentState",
    "Transaction",
    "TransactionType",
]
