"""Duplicate detection for import batches.

Every incoming transaction is compared with the transactions currently
persisted. Deleted rows are simply absent from that set, so re-importing a
file after deleting its previous import finds nothing.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from difflib import SequenceMatcher

from transfer_recon.config import settings
from transfer_recon.logger import get_logger
from transfer_recon.schemas.duplicates import (
    DuplicateDetectionConfig,
    DuplicateDetectionResult,
    DuplicateMatch,
    DuplicateMatchTypeEnum,
)
from transfer_recon.schemas.transaction import NewTransaction, Transaction
from transfer_recon.services.fx import normalize_currency

logger = get_logger(__name__)

DATE_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.2
ACCOUNT_WEIGHT = 0.1

NEAR_DESCRIPTION_THRESHOLD = 0.8
MIN_SIMILARITY = 0.6


def normalize_text(value: str) -> str:
    """Normalize text for similarity comparison."""
    cleaned = re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()
    return re.sub(r"\s+", " ", cleaned)


def description_similarity(a: str | None, b: str | None) -> float:
    """Score description similarity (0-1)."""
    if not a or not b:
        return 0.0
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    ratio = SequenceMatcher(None, norm_a, norm_b).ratio()
    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    token_score = len(tokens_a & tokens_b) / len(tokens_a | tokens_b) if tokens_a | tokens_b else 0
    return round(0.6 * ratio + 0.4 * token_score, 4)


def _same_description(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class DuplicateDetector:
    """Compare import batches against persisted transactions."""

    def __init__(self, config: DuplicateDetectionConfig | None = None, base_currency: str | None = None) -> None:
        self.config = config or DuplicateDetectionConfig()
        self.base_currency = normalize_currency(base_currency or settings.base_currency)

    def _currency(self, transaction: NewTransaction | Transaction) -> str:
        if transaction.original_currency:
            return normalize_currency(transaction.original_currency)
        return self.base_currency

    def compare(self, incoming: NewTransaction, existing: Transaction) -> DuplicateMatch | None:
        """Return a DuplicateMatch when every required dimension holds."""
        config = self.config

        # Signed comparison: a refund is never a duplicate of the charge.
        if (incoming.amount < 0) != (existing.amount < 0):
            return None
        if self._currency(incoming) != self._currency(existing):
            return None

        days = abs((incoming.date - existing.date).days)
        if days > config.date_tolerance:
            return None
        date_score = 1.0 if days == 0 else 1.0 - 0.5 * days / config.date_tolerance

        amount_difference = abs(incoming.amount - existing.amount)
        allowed = max(config.fixed_amount_tolerance, abs(existing.amount) * config.amount_tolerance)
        if amount_difference > allowed:
            return None
        amount_score = 1.0 if amount_difference == 0 else 1.0 - 0.5 * float(amount_difference / allowed)

        fields: list[str] = []
        if days == 0:
            fields.append("date")
        if amount_difference == 0:
            fields.append("amount")

        if _same_description(incoming.description, existing.description):
            description_score = 1.0
            fields.append("description")
        elif config.require_exact_description:
            return None
        else:
            description_score = description_similarity(incoming.description, existing.description)
            if description_score < NEAR_DESCRIPTION_THRESHOLD:
                return None

        if incoming.account == existing.account:
            account_score = 1.0
            fields.append("account")
        elif config.require_same_account:
            return None
        else:
            account_score = 0.0

        similarity = (
            DATE_WEIGHT * date_score
            + AMOUNT_WEIGHT * amount_score
            + DESCRIPTION_WEIGHT * description_score
            + ACCOUNT_WEIGHT * account_score
        )
        if similarity < MIN_SIMILARITY:
            return None

        return DuplicateMatch(
            new_transaction=incoming,
            existing_transaction=existing,
            similarity=round(similarity, 4),
            match_type=DuplicateMatchTypeEnum.EXACT if len(fields) == 4 else DuplicateMatchTypeEnum.TOLERANCE,
            match_fields=fields,
            amount_difference=amount_difference,
            days_difference=days,
        )

    def detect(
        self,
        incoming: Sequence[NewTransaction],
        existing: Sequence[Transaction],
    ) -> DuplicateDetectionResult:
        duplicates: list[DuplicateMatch] = []
        unique: list[NewTransaction] = []

        for candidate in incoming:
            best: DuplicateMatch | None = None
            for persisted in existing:
                match = self.compare(candidate, persisted)
                if match is not None and (best is None or match.similarity > best.similarity):
                    best = match
            if best is None:
                unique.append(candidate)
            else:
                duplicates.append(best)

        logger.info(
            "Duplicate detection completed",
            incoming_count=len(incoming),
            existing_count=len(existing),
            duplicate_count=len(duplicates),
            unique_count=len(unique),
        )
        return DuplicateDetectionResult(duplicates=duplicates, unique_transactions=unique, config=self.config)


def detect_duplicates(
    incoming: Sequence[NewTransaction],
    existing: Sequence[Transaction],
    config: DuplicateDetectionConfig | None = None,
    base_currency: str | None = None,
) -> DuplicateDetectionResult:
    return DuplicateDetector(config, base_currency).detect(incoming, existing)
