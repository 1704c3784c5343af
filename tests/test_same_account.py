"""Tests for same-account reversal matching."""

import datetime as dt
from decimal import Decimal

from tests.factories import TransactionFactory
from transfer_recon.models.transaction import TransactionType
from transfer_recon.schemas.matching import MatchTypeEnum
from transfer_recon.schemas.transaction import render_match_note
from transfer_recon.services.same_account import (
    auto_match_same_account_transactions,
    find_same_account_matches,
    indicates_cancellation,
)

JAN_1 = dt.date(2025, 1, 1)


def _tx(tx_id, amount, description, days=0, account="Credit Card", tx_type=TransactionType.EXPENSE):
    return TransactionFactory.build(
        id=tx_id,
        amount=Decimal(amount),
        description=description,
        account=account,
        date=JAN_1 + dt.timedelta(days=days),
        type=tx_type,
        category="Shopping",
    )


class TestCancellationHeuristic:
    def test_keyword(self):
        assert indicates_cancellation("Online order", "REFUND online order")

    def test_word_overlap(self):
        assert indicates_cancellation("Grocery Store Purchase", "Grocery Store Purchase")

    def test_unrelated(self):
        assert not indicates_cancellation("Coffee", "Bakery")
        assert not indicates_cancellation("", "Bakery")


class TestSameAccountMatching:
    def test_charge_and_refund_linked(self):
        """
        GIVEN a charge and its refund on the same card the same day
        WHEN auto-matching same-account reversals
        THEN both are linked to each other
        """
        transactions = [
            _tx("charge", "-50.00", "Amazon order"),
            _tx("refund", "50.00", "Amazon order refund", tx_type=TransactionType.INCOME),
        ]

        result = {tx.id: tx for tx in auto_match_same_account_transactions(transactions)}

        assert result["charge"].reimbursement_id == "refund"
        assert result["refund"].reimbursement_id == "charge"
        assert result["charge"].match_provenance.match_id == "same-account-match-charge-refund"
        assert render_match_note(result["charge"].match_provenance) == "[Matched Transaction: 0.99 confidence]"

    def test_exact_match_type(self):
        transactions = [
            _tx("charge", "-50.00", "Amazon order"),
            _tx("refund", "50.00", "Amazon order refund"),
        ]
        response = find_same_account_matches(transactions)
        assert response.matches[0].match_type == MatchTypeEnum.EXACT
        assert response.matches[0].confidence == 0.99

    def test_different_accounts_not_matched(self):
        transactions = [
            _tx("charge", "-50.00", "Amazon order"),
            _tx("refund", "50.00", "Amazon order refund", account="Checking"),
        ]
        assert find_same_account_matches(transactions).matches == []

    def test_transfers_excluded(self):
        transactions = [
            _tx("out", "-50.00", "Move", tx_type=TransactionType.TRANSFER),
            _tx("in", "50.00", "Move", tx_type=TransactionType.TRANSFER),
        ]
        assert find_same_account_matches(transactions).matches == []

    def test_two_day_gap_not_matched(self):
        transactions = [
            _tx("charge", "-50.00", "Amazon order"),
            _tx("refund", "50.00", "Amazon order refund", days=2),
        ]
        assert find_same_account_matches(transactions).matches == []

    def test_low_confidence_found_but_not_applied(self):
        """
        GIVEN opposite amounts a day apart with unrelated descriptions
        WHEN auto-matching
        THEN the pair is found but below the 0.7 threshold, so nothing is linked
        """
        transactions = [
            _tx("a", "-50.00", "Coffee"),
            _tx("b", "49.80", "Bakery", days=1),
        ]

        found = find_same_account_matches(transactions)
        result = auto_match_same_account_transactions(transactions)

        assert len(found.matches) == 1
        assert found.matches[0].confidence < 0.7
        assert all(tx.reimbursement_id is None for tx in result)
