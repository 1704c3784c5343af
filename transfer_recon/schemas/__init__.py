"""Pydantic schemas."""

from transfer_recon.schemas.diagnostics import BidirectionalIssue, DiagnosticReport, OrphanedReference
from transfer_recon.schemas.duplicates import (
    DuplicateDetectionConfig,
    DuplicateDetectionRequest,
    DuplicateDetectionResult,
    DuplicateMatch,
    DuplicateMatchTypeEnum,
    ImportResult,
)
from transfer_recon.schemas.matching import (
    AutoMatchResponse,
    ManualMatchRequest,
    MatchTypeEnum,
    TransferMatch,
    TransferMatchResponse,
)
from transfer_recon.schemas.transaction import (
    MatchProvenance,
    MatchSource,
    NewTransaction,
    Transaction,
    render_match_note,
)

__all__ = [
    "AutoMatchResponse",
    "BidirectionalIssue",
    "DiagnosticReport",
    "DuplicateDetectionConfig",
    "DuplicateDetectionRequest",
    "DuplicateDetectionResult",
    "DuplicateMatch",
    "DuplicateMatchTypeEnum",
    "ImportResult",
    "ManualMatchRequest",
    "MatchProvenance",
    "MatchSource",
    "MatchTypeEnum",
    "NewTransaction",
    "OrphanedReference",
    "Transaction",
    "TransferMatch",
    "TransferMatchResponse",
    "render_match_note",
]
