"""Referential integrity audit of transfer links.

Read-only: findings are reported, never repaired and never raised.
"""

from __future__ import annotations

from collections.abc import Sequence

from transfer_recon.logger import get_logger
from transfer_recon.models.transaction import TransactionType
from transfer_recon.schemas.diagnostics import BidirectionalIssue, DiagnosticReport, OrphanedReference
from transfer_recon.schemas.transaction import Transaction
from transfer_recon.services.pair_dedup import pair_key

logger = get_logger(__name__)


def diagnose_transfer_matching(transactions: Sequence[Transaction]) -> DiagnosticReport:
    """Report dangling and one-directional reimbursement links.

    matched_transfer_transactions counts every transaction carrying a link;
    actual_matches counts reciprocal pairs once. When deletions or partial
    writes leave stale links the two disagree, and the orphaned and
    bidirectional lists say why.
    """
    by_id = {tx.id: tx for tx in transactions}
    orphans: list[OrphanedReference] = []
    issues: list[BidirectionalIssue] = []
    reciprocal: set[tuple[str, str]] = set()
    linked_count = 0

    for tx in transactions:
        if not tx.reimbursement_id:
            continue
        linked_count += 1

        target = by_id.get(tx.reimbursement_id)
        if target is None:
            orphans.append(
                OrphanedReference(
                    transaction_id=tx.id,
                    reimbursement_id=tx.reimbursement_id,
                    description=tx.description,
                    amount=tx.amount,
                    date=tx.date,
                )
            )
            continue

        if target.id == tx.id:
            issues.append(
                BidirectionalIssue(
                    transaction_id=tx.id,
                    reimbursement_id=tx.reimbursement_id,
                    issue="Transaction is linked to itself",
                )
            )
        elif target.reimbursement_id == tx.id:
            reciprocal.add(pair_key(tx.id, target.id))
        else:
            points_to = target.reimbursement_id or "nothing"
            issues.append(
                BidirectionalIssue(
                    transaction_id=tx.id,
                    reimbursement_id=tx.reimbursement_id,
                    issue=f"Target {target.id} points to {points_to} instead of {tx.id}",
                )
            )

    report = DiagnosticReport(
        total_transactions=len(transactions),
        transfer_transactions=sum(1 for tx in transactions if tx.type == TransactionType.TRANSFER),
        matched_transfer_transactions=linked_count,
        actual_matches=len(reciprocal),
        orphaned_reimbursement_ids=orphans,
        bidirectional_match_issues=issues,
    )
    if orphans or issues:
        logger.warning(
            "Transfer link inconsistencies found",
            orphaned_count=len(orphans),
            bidirectional_issue_count=len(issues),
            discrepancy=report.discrepancy,
        )
    return report
