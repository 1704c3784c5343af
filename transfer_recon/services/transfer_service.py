"""Transfer matching operations over the transaction store.

Each operation loads a snapshot, resolves the exchange rates it needs, runs
the pure matching functions and writes any link changes back in one atomic
bulk update.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from transfer_recon.config import settings
from transfer_recon.logger import get_logger, log_exception, log_timing
from transfer_recon.schemas.diagnostics import DiagnosticReport
from transfer_recon.schemas.duplicates import DuplicateDetectionConfig, DuplicateDetectionResult, ImportResult
from transfer_recon.schemas.matching import AutoMatchResponse, TransferMatch, TransferMatchResponse
from transfer_recon.schemas.transaction import NewTransaction, Transaction
from transfer_recon.services import same_account, transfer_matching
from transfer_recon.services.consistency_checks import diagnose_transfer_matching
from transfer_recon.services.deduplication import detect_duplicates
from transfer_recon.services.fx import CurrencyConverter, ExchangeRateClient, RateTable, normalize_currency, prefetch_rates
from transfer_recon.services.storage import PersistenceError, TransactionStore

logger = get_logger(__name__)


def link_changes(before: Sequence[Transaction], after: Sequence[Transaction]) -> dict[str, dict[str, Any]]:
    """Link fields that differ between two snapshots, keyed by transaction id."""
    previous = {tx.id: tx for tx in before}
    changes: dict[str, dict[str, Any]] = {}
    for tx in after:
        old = previous.get(tx.id)
        if old is None:
            continue
        if old.reimbursement_id != tx.reimbursement_id or old.match_provenance != tx.match_provenance:
            changes[tx.id] = {
                "reimbursement_id": tx.reimbursement_id,
                "match_provenance": tx.match_provenance,
            }
    return changes


class TransferMatchingService:
    """Application facade for transfer reconciliation and duplicate checks."""

    def __init__(
        self,
        store: TransactionStore,
        converter: CurrencyConverter | None = None,
        base_currency: str | None = None,
    ) -> None:
        self.store = store
        self.converter = converter or CurrencyConverter(ExchangeRateClient())
        self.base_currency = normalize_currency(base_currency or settings.base_currency)

    async def _rates(self, transactions: Sequence[Transaction]) -> RateTable:
        return await prefetch_rates(self.converter, transactions, self.base_currency)

    async def _commit(self, before: Sequence[Transaction], after: Sequence[Transaction]) -> list[Transaction]:
        """Persist link changes atomically and return the changed transactions."""
        changes = link_changes(before, after)
        if not changes:
            return []
        try:
            await self.store.bulk_update(changes)
        except PersistenceError as exc:
            log_exception(logger, exc, "Failed to persist transfer links", change_count=len(changes))
            raise
        return [tx for tx in after if tx.id in changes]

    async def find_transfer_matches(
        self,
        *,
        max_days_difference: int | None = None,
        tolerance_percentage: float | None = None,
        date_from: dt.date | None = None,
        date_to: dt.date | None = None,
    ) -> TransferMatchResponse:
        transactions = await self.store.get_all_transactions()
        rates = await self._rates(transactions)
        return transfer_matching.find_transfer_matches(
            transactions,
            max_days_difference=max_days_difference,
            tolerance_percentage=tolerance_percentage,
            date_from=date_from,
            date_to=date_to,
            rates=rates,
            base_currency=self.base_currency,
        )

    async def auto_match_transfers(self) -> AutoMatchResponse:
        transactions = await self.store.get_all_transactions()
        rates = await self._rates(transactions)

        with log_timing("auto_match_transfers", logger=logger) as timing:
            accepted = transfer_matching.plan_automatic_matches(
                transactions, rates=rates, base_currency=self.base_currency
            )
            updated = transfer_matching.apply_transfer_matches(transactions, accepted)
            timing["match_count"] = len(accepted)

        changed = await self._commit(transactions, updated)
        return AutoMatchResponse(applied=accepted, transactions=changed)

    async def find_manual_transfer_matches(
        self,
        *,
        max_days_difference: int | None = None,
        tolerance_percentage: float | None = None,
        date_from: dt.date | None = None,
        date_to: dt.date | None = None,
    ) -> TransferMatchResponse:
        transactions = await self.store.get_all_transactions()
        rates = await self._rates(transactions)
        return transfer_matching.find_manual_transfer_matches(
            transactions,
            max_days_difference=max_days_difference,
            tolerance_percentage=tolerance_percentage,
            date_from=date_from,
            date_to=date_to,
            rates=rates,
            base_currency=self.base_currency,
        )

    async def manually_match_transfers(self, source_id: str, target_id: str) -> list[Transaction]:
        transactions = await self.store.get_all_transactions()
        updated = transfer_matching.manually_match_transfers(transactions, source_id, target_id)
        await self._commit(transactions, updated)
        return [tx for tx in updated if tx.id in (source_id, target_id)]

    async def unmatch_transfers(self, match_id: str) -> list[Transaction]:
        transactions = await self.store.get_all_transactions()
        updated = transfer_matching.unmatch_transfers(transactions, match_id)
        return await self._commit(transactions, updated)

    async def auto_match_same_account_transactions(self) -> AutoMatchResponse:
        transactions = await self.store.get_all_transactions()
        accepted = same_account.plan_same_account_matches(transactions)
        updated = transfer_matching.apply_transfer_matches(transactions, accepted)
        changed = await self._commit(transactions, updated)
        return AutoMatchResponse(applied=accepted, transactions=changed)

    async def get_matched_transfers(self) -> list[TransferMatch]:
        return transfer_matching.get_matched_transfers(await self.store.get_all_transactions())

    async def get_unmatched_transfers(self) -> list[Transaction]:
        return transfer_matching.get_unmatched_transfers(await self.store.get_all_transactions())

    async def detect_duplicates(
        self,
        incoming: Sequence[NewTransaction],
        config: DuplicateDetectionConfig | None = None,
    ) -> DuplicateDetectionResult:
        existing = await self.store.get_all_transactions()
        return detect_duplicates(incoming, existing, config, self.base_currency)

    async def import_transactions(
        self,
        incoming: Sequence[NewTransaction],
        config: DuplicateDetectionConfig | None = None,
        *,
        auto_match: bool = True,
    ) -> ImportResult:
        """Store the non-duplicate part of a batch together with its transfer links.

        Matches are planned over the stored rows plus the new ones, and the
        insert and every link write commit as one unit of work. A
        PersistenceError therefore leaves the store as it was, and a retry
        of the same batch starts from scratch.
        """
        existing = await self.store.get_all_transactions()
        detection = detect_duplicates(incoming, existing, config, self.base_currency)
        new_rows = [Transaction(id=str(uuid4()), **tx.model_dump()) for tx in detection.unique_transactions]

        applied: list[TransferMatch] = []
        changes: dict[str, dict[str, Any]] = {}
        if auto_match and new_rows:
            snapshot = [*existing, *new_rows]
            rates = await self._rates(snapshot)
            with log_timing("import_auto_match", logger=logger) as timing:
                applied = transfer_matching.plan_automatic_matches(
                    snapshot, rates=rates, base_currency=self.base_currency
                )
                updated = {tx.id: tx for tx in transfer_matching.apply_transfer_matches(snapshot, applied)}
                timing["match_count"] = len(applied)
            new_rows = [updated[tx.id] for tx in new_rows]
            changes = link_changes(existing, list(updated.values()))

        try:
            added = await self.store.add_and_link(new_rows, changes)
        except PersistenceError as exc:
            log_exception(logger, exc, "Import rolled back", row_count=len(new_rows), change_count=len(changes))
            raise

        logger.info(
            "Import completed",
            incoming_count=len(incoming),
            added_count=len(added),
            duplicate_count=len(detection.duplicates),
            match_count=len(applied),
        )
        return ImportResult(added=added, duplicates=detection.duplicates, applied_matches=applied)

    async def diagnose_transfer_matching_inconsistencies(self) -> DiagnosticReport:
        return diagnose_transfer_matching(await self.store.get_all_transactions())
