"""Pydantic schemas for transfer link diagnostics."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field


class OrphanedReference(BaseModel):
    """A reimbursement_id pointing at a transaction that no longer exists."""

    transaction_id: str
    reimbursement_id: str
    description: str
    amount: Decimal
    date: dt.date


class BidirectionalIssue(BaseModel):
    """A link whose target does not point back."""

    transaction_id: str
    reimbursement_id: str
    issue: str


class DiagnosticReport(BaseModel):
    total_transactions: int
    transfer_transactions: int
    matched_transfer_transactions: int
    actual_matches: int
    orphaned_reimbursement_ids: list[OrphanedReference] = Field(default_factory=list)
    bidirectional_match_issues: list[BidirectionalIssue] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expected_matched_count(self) -> int:
        return self.actual_matches * 2

    @computed_field  # type: ignore[prop-decorator]
    @property
    def discrepancy(self) -> int:
        return self.matched_transfer_transactions - self.expected_matched_count
