"""Pydantic schemas for transfer matching."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from transfer_recon.schemas.transaction import Transaction


class MatchTypeEnum(str, Enum):
    """How closely a candidate pair lines up."""

    EXACT = "exact"
    APPROXIMATE = "approximate"
    MANUAL = "manual"


class TransferMatch(BaseModel):
    """A candidate or applied pairing of two transaction legs."""

    id: str
    source_transaction_id: str
    target_transaction_id: str
    confidence: float = Field(ge=0, le=1)
    match_type: MatchTypeEnum
    date_difference: int = Field(ge=0)
    amount_difference: Decimal = Field(ge=0)
    reasoning: str
    is_verified: bool = False


class TransferMatchResponse(BaseModel):
    """Result of a matching query."""

    matches: list[TransferMatch] = Field(default_factory=list)
    unmatched: list[Transaction] = Field(default_factory=list)
    confidence: float = 0.0


class AutoMatchResponse(BaseModel):
    """Result of committing automatic matches."""

    applied: list[TransferMatch] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)


class ManualMatchRequest(BaseModel):
    """Request body to link two transactions by hand."""

    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
