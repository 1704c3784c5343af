"""Services package."""

from transfer_recon.services.consistency_checks import diagnose_transfer_matching
from transfer_recon.services.deduplication import DuplicateDetector, detect_duplicates
from transfer_recon.services.fx import (
    CurrencyConverter,
    ExchangeRateClient,
    FxRateError,
    RateCache,
    RateTable,
    prefetch_rates,
)
from transfer_recon.services.pair_dedup import dedupe_pairs, pair_key
from transfer_recon.services.same_account import (
    auto_match_same_account_transactions,
    find_same_account_matches,
)
from transfer_recon.services.scoring import CandidateScore, CandidateScorer, MatchMode
from transfer_recon.services.storage import PersistenceError, StorageError, TransactionStore
from transfer_recon.services.tolerance import (
    AUTOMATIC_POLICY,
    MANUAL_POLICY,
    ToleranceConfigError,
    TolerancePolicy,
    ToleranceResolver,
)
from transfer_recon.services.transfer_matching import (
    InvalidMatchError,
    TransactionNotFoundError,
    TransferMatchError,
    auto_match_transfers,
    find_manual_transfer_matches,
    find_transfer_matches,
    manually_match_transfers,
    unmatch_transfers,
)
from transfer_recon.services.transfer_service import TransferMatchingService

__all__ = [
    "AUTOMATIC_POLICY",
    "MANUAL_POLICY",
    "CandidateScore",
    "CandidateScorer",
    "CurrencyConverter",
    "DuplicateDetector",
    "ExchangeRateClient",
    "FxRateError",
    "InvalidMatchError",
    "MatchMode",
    "PersistenceError",
    "RateCache",
    "RateTable",
    "StorageError",
    "ToleranceConfigError",
    "TolerancePolicy",
    "ToleranceResolver",
    "TransactionNotFoundError",
    "TransactionStore",
    "TransferMatchError",
    "TransferMatchingService",
    "auto_match_same_account_transactions",
    "auto_match_transfers",
    "dedupe_pairs",
    "detect_duplicates",
    "diagnose_transfer_matching",
    "find_manual_transfer_matches",
    "find_transfer_matches",
    "manually_match_transfers",
    "pair_key",
    "prefetch_rates",
    "unmatch_transfers",
]
