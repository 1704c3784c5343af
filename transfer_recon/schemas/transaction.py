"""Pydantic schemas for transactions and match provenance."""

import datetime as dt
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from transfer_recon.models.transaction import TransactionType


class MatchSource(str, Enum):
    """Who committed a transfer link."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class MatchProvenance(BaseModel):
    """Structured record of how a transfer link was created."""

    source: MatchSource
    confidence: float = Field(ge=0, le=1)
    match_id: str
    matched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Transaction(BaseModel):
    """A financial event as seen by the matching services.

    amount is signed (negative = outflow) and expressed in original_currency,
    or in the household base currency when original_currency is unset.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    date: dt.date
    amount: Decimal
    description: str = ""
    category: str = ""
    account: str
    type: TransactionType
    original_currency: str | None = None
    exchange_rate: Decimal | None = None
    reimbursement_id: str | None = None
    notes: str | None = None
    is_verified: bool = False
    match_provenance: MatchProvenance | None = None


class NewTransaction(BaseModel):
    """An incoming, not-yet-persisted transaction (no id assigned yet)."""

    model_config = ConfigDict(from_attributes=True)

    date: dt.date
    amount: Decimal
    description: str = ""
    category: str = ""
    account: str
    type: TransactionType
    original_currency: str | None = None
    exchange_rate: Decimal | None = None
    notes: str | None = None


def render_match_note(provenance: MatchProvenance | None) -> str | None:
    """Human-readable annotation for a linked transaction, for display only."""
    if provenance is None:
        return None
    if provenance.source == MatchSource.MANUAL:
        return "[Manual Transfer Match]"
    if provenance.match_id.startswith("same-account-match-"):
        return f"[Matched Transaction: {provenance.confidence:.2f} confidence]"
    return f"[Matched Transfer: {provenance.confidence:.2f} confidence]"
