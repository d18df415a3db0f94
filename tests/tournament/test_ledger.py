"""Transaction ledger tests."""

from decimal import Decimal

import pytest

from tdcore.tournament.ledger import TransactionLedger
from tdcore.tournament.models import TournamentState, Transaction, TransactionType


def _txn(player_id: str, ttype: TransactionType, amount: str = "0", chips: int = 0) -> Transaction:
    return Transaction(
        tournament_id="t1",
        player_id=player_id,
        transaction_type=ttype,
        amount=Decimal(amount),
        chips=chips,
    )


@pytest.fixture
def ledger():
    return TransactionLedger()


@pytest.fixture
def filled(ledger):
    state = TournamentState(tournament_id="t1")
    for txn in (
        _txn("alice", TransactionType.BUYIN, "100", 10000),
        _txn("bob", TransactionType.BUYIN, "100", 10000),
        _txn("alice", TransactionType.REBUY, "50", 5000),
        _txn("bob", TransactionType.BUSTOUT, "0", -10000),
        _txn("alice", TransactionType.ADDON, "25.50", 3000),
        _txn("carol", TransactionType.CHIP_ADJUSTMENT, "0", -200),
    ):
        state, _ = ledger.append(state, txn)
    return state


class TestAppend:
    def test_assigns_monotonic_ids(self, ledger):
        state = TournamentState(tournament_id="t1")

        state, first = ledger.append(state, _txn("a", TransactionType.BUYIN, "10"))
        state, second = ledger.append(state, _txn("b", TransactionType.BUYIN, "10"))

        assert (first.transaction_id, second.transaction_id) == (1, 2)
        assert state.next_transaction_id == 3
        assert len(state.transactions) == 2

    def test_original_state_is_untouched(self, ledger):
        state = TournamentState(tournament_id="t1")
        ledger.append(state, _txn("a", TransactionType.BUYIN, "10"))
        assert state.transactions == ()

    def test_rejects_foreign_tournament(self, ledger):
        state = TournamentState(tournament_id="other")
        with pytest.raises(ValueError):
            ledger.append(state, _txn("a", TransactionType.BUYIN, "10"))


class TestReads:
    def test_default_order_is_newest_first(self, ledger, filled):
        rows = ledger.get_tournament_transactions(filled)
        assert [t.transaction_id for t in rows] == [6, 5, 4, 3, 2, 1]

    def test_filters_and_pagination(self, ledger, filled):
        rows = ledger.get_tournament_transactions(filled, player_id="alice", order="asc")
        assert [t.transaction_type for t in rows] == [
            TransactionType.BUYIN,
            TransactionType.REBUY,
            TransactionType.ADDON,
        ]

        page = ledger.get_tournament_transactions(filled, order="asc", limit=2, offset=1)
        assert [t.transaction_id for t in page] == [2, 3]

        buyins = ledger.get_tournament_transactions(filled, transaction_type=TransactionType.BUYIN)
        assert {t.player_id for t in buyins} == {"alice", "bob"}

    def test_invalid_order(self, ledger, filled):
        with pytest.raises(ValueError):
            ledger.get_tournament_transactions(filled, order="sideways")

    def test_counts(self, ledger, filled):
        assert ledger.get_transaction_count(filled) == 6
        assert ledger.get_transaction_count(filled, TransactionType.BUYIN) == 2


class TestAggregates:
    def test_totals_are_recomputed_from_entries(self, ledger, filled):
        assert ledger.buyin_total(filled) == Decimal("200")
        assert ledger.rebuy_total(filled) == Decimal("50")
        assert ledger.addon_total(filled) == Decimal("25.50")
        assert ledger.prize_pool(filled) == Decimal("275.50")

    def test_paid_amount_for_player(self, ledger, filled):
        assert ledger.paid_amount_for(filled, "alice") == Decimal("175.50")
        assert ledger.paid_amount_for(filled, "bob") == Decimal("100")
        assert ledger.paid_amount_for(filled, "nobody") == Decimal("0")

    def test_summary_per_type(self, ledger, filled):
        summary = {s.transaction_type: s for s in ledger.get_transaction_summary(filled)}

        assert summary[TransactionType.BUYIN].count == 2
        assert summary[TransactionType.BUYIN].total_chips == 20000
        assert summary[TransactionType.BUSTOUT].total_chips == -10000
        assert summary[TransactionType.CHIP_ADJUSTMENT].total_amount == Decimal("0")
        assert summary[TransactionType.ADDON].to_dict()["total_amount"] == "25.50"

    def test_empty_ledger(self, ledger):
        state = TournamentState(tournament_id="t1")
        assert ledger.prize_pool(state) == Decimal("0")
        assert ledger.get_transaction_summary(state) == []
