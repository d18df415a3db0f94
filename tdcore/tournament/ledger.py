"""
Transaction Ledger - Append-Only Financial/Chip Event Log.

레저가 금액/칩 합계의 유일한 원천.
상금 풀, 리바이/애드온 합계 등은 저장하지 않고 항상 레저에서 재계산.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from tdcore.logging_config import get_logger
from .models import MONETARY_TYPES, TournamentState, Transaction, TransactionType

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransactionSummary:
    """Per-type ledger aggregate."""

    transaction_type: TransactionType
    count: int = 0
    total_amount: Decimal = Decimal("0")
    total_chips: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_type": self.transaction_type.value,
            "count": self.count,
            "total_amount": str(self.total_amount),
            "total_chips": self.total_chips,
        }


class TransactionLedger:
    """
    Append-only ledger over a tournament aggregate.

    append() is the only write path; existing entries are never
    mutated. Reads filter, order and paginate the stored tuple.
    """

    def append(
        self,
        state: TournamentState,
        transaction: Transaction,
    ) -> Tuple[TournamentState, Transaction]:
        """
        Append a transaction and assign its monotonic id.

        Returns the new state and the stored transaction.
        """
        if transaction.tournament_id != state.tournament_id:
            raise ValueError(
                f"Transaction for {transaction.tournament_id} "
                f"cannot be appended to {state.tournament_id}"
            )

        stored = replace(transaction, transaction_id=state.next_transaction_id)
        new_state = replace(
            state,
            transactions=state.transactions + (stored,),
            next_transaction_id=state.next_transaction_id + 1,
        )

        logger.info(
            "transaction_logged",
            tournament_id=state.tournament_id,
            transaction_id=stored.transaction_id,
            transaction_type=stored.transaction_type.value,
            player_id=stored.player_id,
            amount=str(stored.amount),
            chips=stored.chips,
            actor_user_id=stored.actor_user_id,
        )
        return new_state, stored

    # =========================================================================
    # Reads
    # =========================================================================

    def get_tournament_transactions(
        self,
        state: TournamentState,
        transaction_type: Optional[TransactionType] = None,
        player_id: Optional[str] = None,
        order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Transaction]:
        """
        Paginated ledger read.

        Args:
            transaction_type: Only entries of this type
            player_id: Only entries for this player
            order: "asc" (oldest first) or "desc" (newest first)
            limit: Page size (None = all)
            offset: Entries to skip after ordering
        """
        if order not in ("asc", "desc"):
            raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")
        if offset < 0 or (limit is not None and limit < 0):
            raise ValueError("limit and offset must not be negative")

        rows = [
            t
            for t in state.transactions
            if (transaction_type is None or t.transaction_type == transaction_type)
            and (player_id is None or t.player_id == player_id)
        ]
        if order == "desc":
            rows.reverse()

        end = None if limit is None else offset + limit
        return rows[offset:end]

    def get_transaction_count(
        self,
        state: TournamentState,
        transaction_type: Optional[TransactionType] = None,
    ) -> int:
        if transaction_type is None:
            return len(state.transactions)
        return sum(1 for t in state.transactions if t.transaction_type == transaction_type)

    # =========================================================================
    # Aggregates (always derived)
    # =========================================================================

    def total_amount(
        self,
        state: TournamentState,
        transaction_type: TransactionType,
    ) -> Decimal:
        return sum(
            (t.amount for t in state.transactions if t.transaction_type == transaction_type),
            Decimal("0"),
        )

    def buyin_total(self, state: TournamentState) -> Decimal:
        return self.total_amount(state, TransactionType.BUYIN)

    def rebuy_total(self, state: TournamentState) -> Decimal:
        return self.total_amount(state, TransactionType.REBUY)

    def addon_total(self, state: TournamentState) -> Decimal:
        return self.total_amount(state, TransactionType.ADDON)

    def prize_pool(self, state: TournamentState) -> Decimal:
        """Buy-ins + rebuys + add-ons."""
        return sum(
            (t.amount for t in state.transactions if t.transaction_type in MONETARY_TYPES),
            Decimal("0"),
        )

    def paid_amount_for(self, state: TournamentState, player_id: str) -> Decimal:
        """What a registration's paid_amount must equal."""
        return sum(
            (
                t.amount
                for t in state.transactions
                if t.player_id == player_id and t.transaction_type in MONETARY_TYPES
            ),
            Decimal("0"),
        )

    def get_transaction_summary(self, state: TournamentState) -> List[TransactionSummary]:
        """Count, amount and chip totals per transaction type (types with entries only)."""
        totals: Dict[TransactionType, TransactionSummary] = {}
        for t in state.transactions:
            row = totals.get(t.transaction_type) or TransactionSummary(t.transaction_type)
            totals[t.transaction_type] = TransactionSummary(
                transaction_type=t.transaction_type,
                count=row.count + 1,
                total_amount=row.total_amount + t.amount,
                total_chips=row.total_chips + t.chips,
            )
        return [totals[tt] for tt in TransactionType if tt in totals]
