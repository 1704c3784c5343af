"""Confidence scoring for candidate transfer pairs."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from transfer_recon.config import settings
from transfer_recon.schemas.matching import MatchTypeEnum
from transfer_recon.schemas.transaction import Transaction
from transfer_recon.services.tolerance import RateStatus, TolerancePolicy, ToleranceResolver

CENT = Decimal("0.01")

# Automatic confidence: base plus date and amount closeness, capped below
# certainty unless both amount and date agree exactly.
AUTO_BASE_CONFIDENCE = 0.5
AUTO_DATE_WEIGHT = 0.25
AUTO_AMOUNT_WEIGHT = 0.24
AUTO_CONFIDENCE_CAP = 0.99

MANUAL_BASE_CONFIDENCE = 0.4
MANUAL_DATE_WEIGHT = 0.2
MANUAL_AMOUNT_WEIGHT = 0.3
MANUAL_SAME_CURRENCY_BONUS = 0.1
MANUAL_CROSS_CURRENCY_PENALTY = 0.05


class MatchMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True)
class CandidateScore:
    is_match: bool
    confidence: float
    match_type: MatchTypeEnum
    date_difference: int
    amount_difference: Decimal
    reasoning: str
    same_currency: bool = True


def _percent(fraction: Decimal) -> str:
    return f"{float(fraction) * 100:g}%"


def _closeness(value: Decimal | int, limit: Decimal | int) -> float:
    """1.0 at zero deviation, falling linearly to 0.0 at the limit."""
    if limit <= 0:
        return 1.0
    return max(0.0, 1.0 - float(value) / float(limit))


def is_transfer_candidate(a: Transaction, b: Transaction) -> bool:
    """Opposite-sign legs held in different accounts."""
    if a.id == b.id or a.account == b.account:
        return False
    if a.amount == 0 or b.amount == 0:
        return False
    return (a.amount > 0) != (b.amount > 0)


class CandidateScorer:
    """Score how likely two transactions are the two legs of one transfer."""

    def __init__(self, resolver: ToleranceResolver | None = None, manual_confidence_cap: float | None = None) -> None:
        self.resolver = resolver or ToleranceResolver()
        self.manual_confidence_cap = (
            settings.manual_match_confidence_cap if manual_confidence_cap is None else manual_confidence_cap
        )

    def _reject(self, reasoning: str, date_difference: int = 0, amount_difference: Decimal = Decimal("0")) -> CandidateScore:
        return CandidateScore(
            is_match=False,
            confidence=0.0,
            match_type=MatchTypeEnum.APPROXIMATE,
            date_difference=date_difference,
            amount_difference=amount_difference,
            reasoning=reasoning,
        )

    def score(
        self,
        a: Transaction,
        b: Transaction,
        policy: TolerancePolicy,
        mode: MatchMode = MatchMode.AUTOMATIC,
    ) -> CandidateScore:
        if a.id == b.id:
            return self._reject("Cannot match a transaction with itself")
        if a.account == b.account:
            return self._reject(f"Same account: {a.account}")
        if not is_transfer_candidate(a, b):
            return self._reject("Amounts must have opposite signs")

        tolerances = self.resolver.resolve(a, b, policy)
        amount_a, amount_b, rate_status = self.resolver.comparable_amounts(a, b)
        amount_difference = abs(amount_a - amount_b).quantize(CENT)
        mean_amount = (amount_a + amount_b) / 2
        relative = abs(amount_a - amount_b) / mean_amount if mean_amount > 0 else Decimal("1")
        date_difference = abs((a.date - b.date).days)

        if date_difference > tolerances.max_date_days:
            return self._reject(
                f"{date_difference} days apart exceeds window of {tolerances.max_date_days} days",
                date_difference,
                amount_difference,
            )
        if relative > tolerances.max_amount_fraction:
            return self._reject(
                f"Amount difference {_percent(relative.quantize(Decimal('0.0001')))} exceeds "
                f"tolerance {_percent(tolerances.max_amount_fraction)}",
                date_difference,
                amount_difference,
            )

        exact_amount = tolerances.same_currency and amount_difference == 0
        date_factor = _closeness(date_difference, tolerances.max_date_days)
        amount_factor = _closeness(relative, tolerances.max_amount_fraction)
        route = f"{a.account} ↔ {b.account}, {date_difference} days apart"

        if mode == MatchMode.MANUAL:
            confidence = (
                MANUAL_BASE_CONFIDENCE
                + MANUAL_DATE_WEIGHT * date_factor
                + MANUAL_AMOUNT_WEIGHT * amount_factor
                + (MANUAL_SAME_CURRENCY_BONUS if tolerances.same_currency else -MANUAL_CROSS_CURRENCY_PENALTY)
            )
            confidence = min(self.manual_confidence_cap, max(0.0, confidence))
            match_type = MatchTypeEnum.APPROXIMATE
            if tolerances.same_currency:
                reasoning = f"Possible manual match: {route}"
            else:
                reasoning = (
                    f"Possible match with exchange rate tolerance: {route} "
                    f"(≤{_percent(tolerances.max_amount_fraction)} amount difference)"
                )
        else:
            if exact_amount and date_difference == 0:
                confidence = 1.0
                match_type = MatchTypeEnum.EXACT
            else:
                confidence = min(
                    AUTO_CONFIDENCE_CAP,
                    AUTO_BASE_CONFIDENCE + AUTO_DATE_WEIGHT * date_factor + AUTO_AMOUNT_WEIGHT * amount_factor,
                )
                match_type = MatchTypeEnum.APPROXIMATE
            if exact_amount:
                reasoning = f"Exact amount match: {route}"
            elif tolerances.same_currency:
                reasoning = f"Transfer match: {route}"
            else:
                reasoning = f"Transfer match within exchange rate tolerance: {route}"

        if rate_status == RateStatus.STALE:
            reasoning += " [stale exchange rate]"
        elif rate_status == RateStatus.UNAVAILABLE:
            reasoning += " [exchange rate unavailable]"

        return CandidateScore(
            is_match=True,
            confidence=round(confidence, 4),
            match_type=match_type,
            date_difference=date_difference,
            amount_difference=amount_difference,
            reasoning=reasoning,
            same_currency=tolerances.same_currency,
        )
