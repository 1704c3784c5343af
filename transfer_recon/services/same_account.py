"""Reversal matching within a single account.

A charge followed by its cancellation or refund in the same account shows up
as two opposite-sign, non-transfer transactions a day or less apart. They are
linked the same way transfer legs are, so both drop out of spending totals.
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Sequence
from decimal import Decimal

from transfer_recon.logger import get_logger
from transfer_recon.models.transaction import TransactionType
from transfer_recon.schemas.matching import MatchTypeEnum, TransferMatch, TransferMatchResponse
from transfer_recon.schemas.transaction import MatchSource, Transaction
from transfer_recon.services.pair_dedup import dedupe_pairs
from transfer_recon.services.transfer_matching import (
    SAME_ACCOUNT_MATCH_PREFIX,
    apply_transfer_matches,
    average_confidence,
    claim_one_to_one,
)

logger = get_logger(__name__)

SAME_ACCOUNT_MAX_DAYS = 1
SAME_ACCOUNT_TOLERANCE = Decimal("0.01")
SAME_ACCOUNT_MIN_CONFIDENCE = 0.7

CANCELLATION_WORDS = ("cancel", "reverse", "reversal", "refund", "correction", "adjustment")
_WORD_RE = re.compile(r"\s+")


def _significant_words(description: str) -> list[str]:
    return [word for word in _WORD_RE.split(description.lower()) if len(word) > 2]


def indicates_cancellation(first: str, second: str) -> bool:
    """True for a cancellation keyword or at least 60% shared words."""
    combined = f"{first} {second}".lower()
    if any(word in combined for word in CANCELLATION_WORDS):
        return True

    words_a = _significant_words(first)
    words_b = _significant_words(second)
    if not words_a or not words_b:
        return False
    common = [word for word in words_a if word in words_b]
    return (len(common) * 2) / (len(words_a) + len(words_b)) >= 0.6


def _reversal_confidence(a: Transaction, b: Transaction, date_difference: int, amount_difference: Decimal) -> float:
    confidence = 0.5
    if date_difference == 0:
        confidence += 0.3
    elif date_difference <= 1:
        confidence += 0.1

    if amount_difference == 0:
        confidence += 0.15
    elif amount_difference <= Decimal("0.01"):
        confidence += 0.1
    else:
        confidence -= 0.1

    if indicates_cancellation(a.description, b.description):
        confidence += 0.2
    else:
        confidence -= 0.05

    return round(min(max(confidence, 0.0), 0.99), 4)


def find_same_account_matches(
    transactions: Sequence[Transaction],
    *,
    max_days_difference: int = SAME_ACCOUNT_MAX_DAYS,
    tolerance_percentage: Decimal | float = SAME_ACCOUNT_TOLERANCE,
    date_from: dt.date | None = None,
    date_to: dt.date | None = None,
) -> TransferMatchResponse:
    """Pair charges with their reversals, one-to-one, best first."""
    tolerance = Decimal(str(tolerance_percentage))
    candidates = [
        tx
        for tx in transactions
        if tx.type != TransactionType.TRANSFER
        and not tx.reimbursement_id
        and (date_from is None or tx.date >= date_from)
        and (date_to is None or tx.date <= date_to)
    ]

    proposals: list[TransferMatch] = []
    for a in candidates:
        for b in candidates:
            if a.id == b.id or a.account != b.account:
                continue
            if a.amount == 0 or b.amount == 0 or (a.amount > 0) == (b.amount > 0):
                continue
            magnitude_a, magnitude_b = abs(a.amount), abs(b.amount)
            amount_difference = abs(magnitude_a - magnitude_b)
            if amount_difference / ((magnitude_a + magnitude_b) / 2) > tolerance:
                continue
            date_difference = abs((a.date - b.date).days)
            if date_difference > max_days_difference:
                continue

            source, target = (a, b) if a.amount < 0 else (b, a)
            exact = date_difference == 0 and amount_difference == 0
            proposals.append(
                TransferMatch(
                    id=f"{SAME_ACCOUNT_MATCH_PREFIX}{source.id}-{target.id}",
                    source_transaction_id=source.id,
                    target_transaction_id=target.id,
                    confidence=_reversal_confidence(source, target, date_difference, amount_difference),
                    match_type=MatchTypeEnum.EXACT if exact else MatchTypeEnum.APPROXIMATE,
                    date_difference=date_difference,
                    amount_difference=amount_difference,
                    reasoning=(
                        f"Same account matched transaction: {source.account}, {date_difference} days apart, "
                        f"amounts: {source.amount} / {target.amount}"
                    ),
                )
            )

    matches = claim_one_to_one(dedupe_pairs(proposals))
    claimed = {m.source_transaction_id for m in matches} | {m.target_transaction_id for m in matches}
    unmatched = [tx for tx in candidates if tx.id not in claimed]
    return TransferMatchResponse(matches=matches, unmatched=unmatched, confidence=average_confidence(matches))


def plan_same_account_matches(
    transactions: Sequence[Transaction],
    min_confidence: float = SAME_ACCOUNT_MIN_CONFIDENCE,
) -> list[TransferMatch]:
    result = find_same_account_matches(transactions)
    accepted = [match for match in result.matches if match.confidence >= min_confidence]
    if result.matches and not accepted:
        logger.info(
            "Same-account matches below confidence threshold",
            found=len(result.matches),
            min_confidence=min_confidence,
        )
    return accepted


def auto_match_same_account_transactions(
    transactions: Sequence[Transaction],
    min_confidence: float = SAME_ACCOUNT_MIN_CONFIDENCE,
) -> list[Transaction]:
    accepted = plan_same_account_matches(transactions, min_confidence)
    if not accepted:
        return list(transactions)

    logger.info("Auto-matching same-account pairs", match_count=len(accepted))
    return apply_transfer_matches(transactions, accepted, MatchSource.AUTOMATIC)
