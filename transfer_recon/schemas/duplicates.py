"""Pydantic schemas for duplicate detection during import."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from transfer_recon.schemas.matching import TransferMatch
from transfer_recon.schemas.transaction import NewTransaction, Transaction


class DuplicateMatchTypeEnum(str, Enum):
    EXACT = "exact"
    TOLERANCE = "tolerance"


class DuplicateDetectionConfig(BaseModel):
    """Thresholds for duplicate detection.

    The defaults make a strict check: only an identical date, amount,
    description and account is reported as a duplicate.
    """

    amount_tolerance: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    fixed_amount_tolerance: Decimal = Field(default=Decimal("0"), ge=0)
    date_tolerance: int = Field(default=0, ge=0)
    require_exact_description: bool = True
    require_same_account: bool = True


class DuplicateMatch(BaseModel):
    """An incoming transaction that resembles a persisted one."""

    new_transaction: NewTransaction
    existing_transaction: Transaction
    similarity: float = Field(ge=0, le=1)
    match_type: DuplicateMatchTypeEnum
    match_fields: list[str]
    amount_difference: Decimal = Decimal("0")
    days_difference: int = 0


class DuplicateDetectionResult(BaseModel):
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    unique_transactions: list[NewTransaction] = Field(default_factory=list)
    config: DuplicateDetectionConfig


class DuplicateDetectionRequest(BaseModel):
    """Request body for checking an import batch."""

    transactions: list[NewTransaction]
    config: DuplicateDetectionConfig | None = None


class ImportResult(BaseModel):
    """Outcome of importing a batch: stored rows, skipped duplicates, new links."""

    added: list[Transaction] = Field(default_factory=list)
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    applied_matches: list[TransferMatch] = Field(default_factory=list)
