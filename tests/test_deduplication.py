"""Tests for duplicate detection during import."""

import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from tests.factories import NewTransactionFactory, TransactionFactory
from transfer_recon.models.transaction import TransactionType
from transfer_recon.schemas.duplicates import DuplicateDetectionConfig, DuplicateMatchTypeEnum
from transfer_recon.services.deduplication import (
    DuplicateDetector,
    description_similarity,
    detect_duplicates,
    normalize_text,
)


def _persisted(**overrides):
    values = {
        "date": dt.date(2025, 1, 1),
        "amount": Decimal("-42.50"),
        "description": "Coffee Shop",
        "category": "Dining",
        "account": "Checking",
        "type": TransactionType.EXPENSE,
    }
    values.update(overrides)
    return TransactionFactory.build(**values)


class TestDescriptionSimilarity:
    def test_normalize_text(self):
        assert normalize_text("  AMAZON Mktplace*PMTS. ") == "amazon mktplace pmts"

    def test_identical_after_normalization(self):
        assert description_similarity("AMAZON MKTPLACE PMTS", "Amazon Mktplace Pmts.") == 1.0

    def test_empty_descriptions(self):
        assert description_similarity("", "Coffee") == 0.0
        assert description_similarity(None, None) == 0.0


class TestStrictDefaults:
    def test_exact_duplicate_detected(self):
        """
        GIVEN an incoming row identical to a persisted one
        WHEN detecting with the default config
        THEN it is an exact duplicate on all four fields
        """
        incoming = NewTransactionFactory.build()
        existing = _persisted()

        result = detect_duplicates([incoming], [existing])

        assert result.unique_transactions == []
        assert len(result.duplicates) == 1
        duplicate = result.duplicates[0]
        assert duplicate.match_type == DuplicateMatchTypeEnum.EXACT
        assert duplicate.similarity == 1.0
        assert duplicate.existing_transaction.id == existing.id
        assert set(duplicate.match_fields) == {"date", "amount", "description", "account"}

    def test_reimport_after_delete_finds_nothing(self):
        """
        GIVEN a batch whose previous import was deleted
        WHEN the same batch is checked against the remaining (empty) set
        THEN no duplicates are reported and every row passes through unchanged
        """
        batch = [
            NewTransactionFactory.build(),
            NewTransactionFactory.build(amount=Decimal("1500.00"), description="Salary", type=TransactionType.INCOME),
            NewTransactionFactory.build(amount=Decimal("-0.99"), description="App Store"),
        ]

        result = detect_duplicates(batch, [])

        assert result.duplicates == []
        assert result.unique_transactions == batch
        assert [tx.amount for tx in result.unique_transactions] == [
            Decimal("-42.50"),
            Decimal("1500.00"),
            Decimal("-0.99"),
        ]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"date": dt.date(2025, 1, 2)},
            {"amount": Decimal("-42.51")},
            {"description": "Coffee Shop #2"},
            {"account": "Credit Card"},
            {"amount": Decimal("42.50")},
            {"original_currency": "EUR"},
        ],
    )
    def test_any_difference_is_unique_by_default(self, overrides):
        incoming = NewTransactionFactory.build()
        result = detect_duplicates([incoming], [_persisted(**overrides)])

        assert result.duplicates == []
        assert result.unique_transactions == [incoming]

    def test_description_case_and_whitespace_ignored(self):
        incoming = NewTransactionFactory.build(description="  coffee shop ")
        assert len(detect_duplicates([incoming], [_persisted()]).duplicates) == 1

    def test_unset_currency_means_base_currency(self):
        """
        GIVEN a persisted row without a currency and an identical incoming row tagged USD
        WHEN detecting with USD as the base currency
        THEN the incoming row is an exact duplicate
        """
        incoming = NewTransactionFactory.build(original_currency="usd")

        result = detect_duplicates([incoming], [_persisted()], base_currency="USD")

        assert len(result.duplicates) == 1
        assert result.duplicates[0].match_type == DuplicateMatchTypeEnum.EXACT

    def test_unset_currency_differs_from_foreign_currency(self):
        incoming = NewTransactionFactory.build(original_currency="EUR")
        detector = DuplicateDetector(base_currency="USD")

        assert detector.compare(incoming, _persisted()) is None
        assert detector.compare(incoming, _persisted(original_currency="eur")) is not None

    def test_result_echoes_default_config(self):
        result = detect_duplicates([], [])
        assert result.config == DuplicateDetectionConfig()


class TestConfiguredTolerances:
    def test_date_tolerance(self):
        """
        GIVEN a 2-day date tolerance
        WHEN a row is one day off
        THEN it is a tolerance duplicate with reduced similarity
        """
        config = DuplicateDetectionConfig(date_tolerance=2)
        incoming = NewTransactionFactory.build(date=dt.date(2025, 1, 2))

        result = detect_duplicates([incoming], [_persisted()], config)

        duplicate = result.duplicates[0]
        assert duplicate.match_type == DuplicateMatchTypeEnum.TOLERANCE
        assert duplicate.days_difference == 1
        assert duplicate.similarity == pytest.approx(0.925)
        assert "date" not in duplicate.match_fields
        assert result.config is config

    def test_fixed_amount_tolerance(self):
        config = DuplicateDetectionConfig(fixed_amount_tolerance=Decimal("1.00"))
        incoming = NewTransactionFactory.build(amount=Decimal("-42.00"))

        duplicate = detect_duplicates([incoming], [_persisted()], config).duplicates[0]

        assert duplicate.amount_difference == Decimal("0.50")
        assert duplicate.similarity == pytest.approx(0.9)

    def test_fractional_amount_tolerance(self):
        config = DuplicateDetectionConfig(amount_tolerance=Decimal("0.05"))
        existing = _persisted(amount=Decimal("-100.00"))

        near = NewTransactionFactory.build(amount=Decimal("-104.00"))
        far = NewTransactionFactory.build(amount=Decimal("-106.00"))
        result = detect_duplicates([near, far], [existing], config)

        assert [d.new_transaction for d in result.duplicates] == [near]
        assert result.unique_transactions == [far]

    def test_near_description_when_not_exact(self):
        existing = _persisted(description="AMAZON MKTPLACE PMTS")
        incoming = NewTransactionFactory.build(description="Amazon Mktplace Pmts.")

        strict = detect_duplicates([incoming], [existing])
        relaxed = detect_duplicates(
            [incoming], [existing], DuplicateDetectionConfig(require_exact_description=False)
        )

        assert strict.duplicates == []
        assert len(relaxed.duplicates) == 1
        assert relaxed.duplicates[0].match_type == DuplicateMatchTypeEnum.TOLERANCE

    def test_other_account_allowed_when_not_required(self):
        config = DuplicateDetectionConfig(require_same_account=False)
        incoming = NewTransactionFactory.build(account="Credit Card")

        duplicate = detect_duplicates([incoming], [_persisted()], config).duplicates[0]

        assert duplicate.similarity == pytest.approx(0.9)
        assert "account" not in duplicate.match_fields

    def test_best_existing_match_chosen(self):
        config = DuplicateDetectionConfig(date_tolerance=3)
        near = _persisted(date=dt.date(2025, 1, 3))
        exact = _persisted()

        result = DuplicateDetector(config).detect([NewTransactionFactory.build()], [near, exact])

        assert len(result.duplicates) == 1
        assert result.duplicates[0].existing_transaction.id == exact.id

    @pytest.mark.parametrize(
        "kwargs",
        [{"amount_tolerance": Decimal("1.5")}, {"date_tolerance": -1}, {"fixed_amount_tolerance": Decimal("-1")}],
    )
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            DuplicateDetectionConfig(**kwargs)
