"""Tolerance resolution for transfer leg comparison.

Two legs in the same currency represent the literal movement of money, so
their amounts should agree exactly (automatic mode) or nearly so. Legs in
different currencies differ by exchange rate movement and spread, so they get
the wider cross-currency band.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from transfer_recon.config import settings
from transfer_recon.schemas.transaction import Transaction
from transfer_recon.services.fx import RateTable, normalize_currency


class ToleranceConfigError(ValueError):
    """Raised for negative day windows or fractions outside [0, 1]."""

    pass


class RateStatus(str, Enum):
    """How the amounts of a pair were made comparable."""

    NOT_NEEDED = "not_needed"
    FRESH = "fresh"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


def _as_fraction(value: Decimal | float | str, name: str) -> Decimal:
    fraction = value if isinstance(value, Decimal) else Decimal(str(value))
    if fraction < 0 or fraction > 1:
        raise ToleranceConfigError(f"{name} must be between 0 and 1, got {fraction}")
    return fraction


@dataclass(frozen=True)
class TolerancePolicy:
    """Allowed deviation for one matching mode."""

    max_date_days: int
    same_currency_fraction: Decimal
    cross_currency_fraction: Decimal

    def __post_init__(self) -> None:
        if self.max_date_days < 0:
            raise ToleranceConfigError(f"max_date_days must be >= 0, got {self.max_date_days}")
        object.__setattr__(
            self,
            "same_currency_fraction",
            _as_fraction(self.same_currency_fraction, "same_currency_fraction"),
        )
        object.__setattr__(
            self,
            "cross_currency_fraction",
            _as_fraction(self.cross_currency_fraction, "cross_currency_fraction"),
        )

    @classmethod
    def automatic(
        cls,
        max_days: int | None = None,
        tolerance: Decimal | float | None = None,
    ) -> TolerancePolicy:
        """Same-currency legs must be equal; tolerance applies across currencies."""
        return cls(
            max_date_days=settings.auto_match_max_days if max_days is None else max_days,
            same_currency_fraction=Decimal("0"),
            cross_currency_fraction=_as_fraction(
                settings.auto_match_tolerance if tolerance is None else tolerance,
                "tolerance",
            ),
        )

    @classmethod
    def manual(
        cls,
        max_days: int | None = None,
        tolerance: Decimal | float | None = None,
    ) -> TolerancePolicy:
        """Relaxed policy for suggestions reviewed by a person."""
        fraction = _as_fraction(
            settings.manual_match_tolerance if tolerance is None else tolerance,
            "tolerance",
        )
        return cls(
            max_date_days=settings.manual_match_max_days if max_days is None else max_days,
            same_currency_fraction=fraction,
            cross_currency_fraction=fraction,
        )


AUTOMATIC_POLICY = TolerancePolicy.automatic()
MANUAL_POLICY = TolerancePolicy.manual()


@dataclass(frozen=True)
class Tolerances:
    max_date_days: int
    max_amount_fraction: Decimal
    same_currency: bool


class ToleranceResolver:
    """Decide currency mode and allowed deviation for a pair of transactions."""

    def __init__(self, base_currency: str | None = None, rates: RateTable | None = None) -> None:
        self.base_currency = normalize_currency(base_currency or settings.base_currency)
        self.rates = rates if rates is not None else RateTable()

    def currency_of(self, transaction: Transaction) -> str:
        if transaction.original_currency:
            return normalize_currency(transaction.original_currency)
        return self.base_currency

    def is_same_currency(self, a: Transaction, b: Transaction) -> bool:
        return self.currency_of(a) == self.currency_of(b)

    def resolve(self, a: Transaction, b: Transaction, policy: TolerancePolicy) -> Tolerances:
        same_currency = self.is_same_currency(a, b)
        return Tolerances(
            max_date_days=policy.max_date_days,
            max_amount_fraction=(
                policy.same_currency_fraction if same_currency else policy.cross_currency_fraction
            ),
            same_currency=same_currency,
        )

    def _to_base(self, transaction: Transaction) -> tuple[Decimal, RateStatus]:
        magnitude = abs(transaction.amount)
        currency = self.currency_of(transaction)
        if currency == self.base_currency:
            return magnitude, RateStatus.NOT_NEEDED

        quote = self.rates.get(currency, self.base_currency)
        if quote is not None:
            return magnitude * quote.rate, RateStatus.STALE if quote.is_stale else RateStatus.FRESH
        if transaction.exchange_rate:
            # Rate recorded at import time: historical, so treated as stale.
            return magnitude * transaction.exchange_rate, RateStatus.STALE
        return magnitude, RateStatus.UNAVAILABLE

    def comparable_amounts(self, a: Transaction, b: Transaction) -> tuple[Decimal, Decimal, RateStatus]:
        """Absolute amounts of both legs, converted to the base currency when possible.

        When any needed rate is unavailable both legs are compared as recorded,
        relying on the cross-currency band alone.
        """
        if self.is_same_currency(a, b):
            return abs(a.amount), abs(b.amount), RateStatus.NOT_NEEDED

        amount_a, status_a = self._to_base(a)
        amount_b, status_b = self._to_base(b)
        statuses = {status_a, status_b}
        if RateStatus.UNAVAILABLE in statuses:
            return abs(a.amount), abs(b.amount), RateStatus.UNAVAILABLE
        if RateStatus.STALE in statuses:
            return amount_a, amount_b, RateStatus.STALE
        return amount_a, amount_b, RateStatus.FRESH
