"""Transfer matching across accounts.

Automatic matching commits one-to-one links greedily, best candidates first.
Manual matching only suggests: every plausible pair is offered once and a
transaction may appear in several suggestions. Committed links are written
on both legs (reimbursement_id plus structured match provenance).
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence

from transfer_recon.config import settings
from transfer_recon.logger import get_logger
from transfer_recon.models.transaction import TransactionType
from transfer_recon.schemas.matching import MatchTypeEnum, TransferMatch, TransferMatchResponse
from transfer_recon.schemas.transaction import MatchProvenance, MatchSource, Transaction
from transfer_recon.services.fx import RateTable
from transfer_recon.services.pair_dedup import dedupe_pairs, pair_key
from transfer_recon.services.scoring import CandidateScorer, MatchMode
from transfer_recon.services.tolerance import TolerancePolicy, ToleranceResolver

logger = get_logger(__name__)

AUTO_MATCH_PREFIX = "transfer-match-"
MANUAL_MATCH_PREFIX = "manual-transfer-match-"
SAME_ACCOUNT_MATCH_PREFIX = "same-account-match-"


class TransferMatchError(Exception):
    """Base error for transfer matching operations."""

    pass


class InvalidMatchError(TransferMatchError):
    """Raised when a requested link or unlink is not allowed."""

    pass


class TransactionNotFoundError(TransferMatchError):
    """Raised when a referenced transaction id is not in the set."""

    pass


def _in_range(tx: Transaction, date_from: dt.date | None, date_to: dt.date | None) -> bool:
    if date_from and tx.date < date_from:
        return False
    if date_to and tx.date > date_to:
        return False
    return True


def _orient(a: Transaction, b: Transaction) -> tuple[Transaction, Transaction]:
    """Return (source, target) with the outflow leg as source."""
    return (a, b) if a.amount < 0 else (b, a)


def average_confidence(matches: Sequence[TransferMatch]) -> float:
    if not matches:
        return 0.0
    return round(sum(m.confidence for m in matches) / len(matches), 4)


def ranking_key(match: TransferMatch) -> tuple[float, int, tuple[str, str]]:
    return (
        -match.confidence,
        match.date_difference,
        pair_key(match.source_transaction_id, match.target_transaction_id),
    )


def claim_one_to_one(proposals: Iterable[TransferMatch]) -> list[TransferMatch]:
    """Greedily accept the best-ranked proposals whose legs are both still free."""
    claimed: set[str] = set()
    matches: list[TransferMatch] = []
    for proposal in sorted(proposals, key=ranking_key):
        if proposal.source_transaction_id in claimed or proposal.target_transaction_id in claimed:
            continue
        claimed.update((proposal.source_transaction_id, proposal.target_transaction_id))
        matches.append(proposal)
    return matches


def _scan_pairs(
    candidates: Sequence[Transaction],
    scorer: CandidateScorer,
    policy: TolerancePolicy,
    mode: MatchMode,
    prefix: str,
) -> list[TransferMatch]:
    proposals: list[TransferMatch] = []
    for a in candidates:
        for b in candidates:
            if a.id == b.id:
                continue
            score = scorer.score(a, b, policy, mode)
            if not score.is_match:
                continue
            source, target = _orient(a, b)
            proposals.append(
                TransferMatch(
                    id=f"{prefix}{source.id}-{target.id}",
                    source_transaction_id=source.id,
                    target_transaction_id=target.id,
                    confidence=score.confidence,
                    match_type=score.match_type,
                    date_difference=score.date_difference,
                    amount_difference=score.amount_difference,
                    reasoning=score.reasoning,
                )
            )
    return dedupe_pairs(proposals)


def find_transfer_matches(
    transactions: Sequence[Transaction],
    *,
    max_days_difference: int | None = None,
    tolerance_percentage: float | None = None,
    date_from: dt.date | None = None,
    date_to: dt.date | None = None,
    rates: RateTable | None = None,
    base_currency: str | None = None,
) -> TransferMatchResponse:
    """Preview one-to-one automatic matches without changing anything.

    Same-currency legs must have equal amounts; tolerance_percentage only
    widens the band for legs in different currencies.
    """
    policy = TolerancePolicy.automatic(
        max_days=max_days_difference,
        tolerance=settings.preview_match_tolerance if tolerance_percentage is None else tolerance_percentage,
    )
    scorer = CandidateScorer(ToleranceResolver(base_currency, rates))

    candidates = [
        tx
        for tx in transactions
        if tx.type == TransactionType.TRANSFER and not tx.reimbursement_id and _in_range(tx, date_from, date_to)
    ]
    proposals = _scan_pairs(candidates, scorer, policy, MatchMode.AUTOMATIC, AUTO_MATCH_PREFIX)

    matches = claim_one_to_one(proposals)
    claimed = {m.source_transaction_id for m in matches} | {m.target_transaction_id for m in matches}
    unmatched = [tx for tx in candidates if tx.id not in claimed]
    logger.info(
        "Transfer matches found",
        candidate_count=len(candidates),
        proposal_count=len(proposals),
        match_count=len(matches),
        unmatched_count=len(unmatched),
    )
    return TransferMatchResponse(matches=matches, unmatched=unmatched, confidence=average_confidence(matches))


def plan_automatic_matches(
    transactions: Sequence[Transaction],
    *,
    rates: RateTable | None = None,
    base_currency: str | None = None,
    min_confidence: float | None = None,
) -> list[TransferMatch]:
    """Matches auto_match_transfers would commit."""
    threshold = settings.auto_match_min_confidence if min_confidence is None else min_confidence
    result = find_transfer_matches(
        transactions,
        max_days_difference=settings.auto_match_max_days,
        tolerance_percentage=settings.auto_match_tolerance,
        rates=rates,
        base_currency=base_currency,
    )
    return [match for match in result.matches if match.confidence >= threshold]


def _link(tx: Transaction, counterpart_id: str, provenance: MatchProvenance) -> Transaction:
    return tx.model_copy(update={"reimbursement_id": counterpart_id, "match_provenance": provenance})


def _unlink(tx: Transaction) -> Transaction:
    return tx.model_copy(update={"reimbursement_id": None, "match_provenance": None})


def apply_transfer_matches(
    transactions: Sequence[Transaction],
    matches: Iterable[TransferMatch],
    source: MatchSource = MatchSource.AUTOMATIC,
) -> list[Transaction]:
    """Return a copy of transactions with each match linked on both legs."""
    updated = list(transactions)
    index = {tx.id: i for i, tx in enumerate(updated)}

    for match in matches:
        source_index = index.get(match.source_transaction_id)
        target_index = index.get(match.target_transaction_id)
        if source_index is None or target_index is None:
            logger.warning(
                "Skipping match with unknown transaction",
                match_id=match.id,
                source_id=match.source_transaction_id,
                target_id=match.target_transaction_id,
            )
            continue

        provenance = MatchProvenance(source=source, confidence=match.confidence, match_id=match.id)
        updated[source_index] = _link(updated[source_index], match.target_transaction_id, provenance)
        updated[target_index] = _link(updated[target_index], match.source_transaction_id, provenance)

    return updated


def auto_match_transfers(
    transactions: Sequence[Transaction],
    *,
    rates: RateTable | None = None,
    base_currency: str | None = None,
    min_confidence: float | None = None,
) -> list[Transaction]:
    """Find and link automatic transfer matches.

    Already linked transactions (manual or automatic) are never candidates,
    so existing links are preserved.
    """
    accepted = plan_automatic_matches(
        transactions, rates=rates, base_currency=base_currency, min_confidence=min_confidence
    )
    if not accepted:
        return list(transactions)

    logger.info("Auto-matching transfer pairs", match_count=len(accepted))
    return apply_transfer_matches(transactions, accepted, MatchSource.AUTOMATIC)


def find_manual_transfer_matches(
    transactions: Sequence[Transaction],
    *,
    max_days_difference: int | None = None,
    tolerance_percentage: float | None = None,
    date_from: dt.date | None = None,
    date_to: dt.date | None = None,
    rates: RateTable | None = None,
    base_currency: str | None = None,
) -> TransferMatchResponse:
    """Suggest every plausible pair for review, with relaxed tolerances.

    Unlinked income/expense transactions in a foreign currency are included
    too, since cross-currency legs are often categorised as spending.
    """
    policy = TolerancePolicy.manual(max_days=max_days_difference, tolerance=tolerance_percentage)
    resolver = ToleranceResolver(base_currency, rates)
    scorer = CandidateScorer(resolver)

    candidates = [
        tx
        for tx in transactions
        if not tx.reimbursement_id
        and _in_range(tx, date_from, date_to)
        and (
            tx.type == TransactionType.TRANSFER
            or resolver.currency_of(tx) != resolver.base_currency
        )
    ]
    matches = sorted(
        _scan_pairs(candidates, scorer, policy, MatchMode.MANUAL, MANUAL_MATCH_PREFIX),
        key=ranking_key,
    )

    suggested = {m.source_transaction_id for m in matches} | {m.target_transaction_id for m in matches}
    unmatched = [tx for tx in candidates if tx.id not in suggested]
    logger.info(
        "Manual transfer suggestions found",
        candidate_count=len(candidates),
        match_count=len(matches),
        max_days=policy.max_date_days,
        tolerance=str(policy.cross_currency_fraction),
    )
    return TransferMatchResponse(matches=matches, unmatched=unmatched, confidence=average_confidence(matches))


def _lookup(transactions: Sequence[Transaction], transaction_id: str) -> tuple[int, Transaction]:
    for i, tx in enumerate(transactions):
        if tx.id == transaction_id:
            return i, tx
    raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")


def manually_match_transfers(
    transactions: Sequence[Transaction],
    source_id: str,
    target_id: str,
) -> list[Transaction]:
    """Link exactly one pair chosen by a person.

    Raises:
        InvalidMatchError: self-match, same account, or either side already
            linked to a different transaction.
        TransactionNotFoundError: either id is unknown.
    """
    if source_id == target_id:
        raise InvalidMatchError("Cannot match a transaction with itself")

    source_index, source = _lookup(transactions, source_id)
    target_index, target = _lookup(transactions, target_id)

    if source.account == target.account:
        raise InvalidMatchError("Cannot match transfers within the same account")

    if source.reimbursement_id == target_id and target.reimbursement_id == source_id:
        return list(transactions)

    for tx, other in ((source, target), (target, source)):
        if tx.reimbursement_id and tx.reimbursement_id != other.id:
            raise InvalidMatchError(
                f"Transaction {tx.id} is already linked to {tx.reimbursement_id}; unmatch it first"
            )

    match_id = f"{MANUAL_MATCH_PREFIX}{source_id}-{target_id}"
    provenance = MatchProvenance(source=MatchSource.MANUAL, confidence=1.0, match_id=match_id)

    updated = list(transactions)
    updated[source_index] = _link(source, target_id, provenance)
    updated[target_index] = _link(target, source_id, provenance)
    logger.info("Manual transfer match applied", source_id=source_id, target_id=target_id)
    return updated


def resolve_match_id(match_id: str, known_ids: Iterable[str]) -> tuple[str, str | None]:
    """Split a match id into (source_id, target_id).

    Transaction ids may contain hyphens, so the split point is the one where
    both halves are known ids. A bare transaction id resolves to (id, None).
    """
    known = set(known_ids)
    if match_id in known:
        return match_id, None

    for prefix in (MANUAL_MATCH_PREFIX, SAME_ACCOUNT_MATCH_PREFIX, AUTO_MATCH_PREFIX):
        if not match_id.startswith(prefix):
            continue
        body = match_id[len(prefix) :]
        for position, char in enumerate(body):
            if char != "-":
                continue
            left, right = body[:position], body[position + 1 :]
            if left in known and right in known:
                return left, right

    raise InvalidMatchError(f"Unrecognised match id: {match_id}")


def unmatch_transfers(transactions: Sequence[Transaction], match_id: str) -> list[Transaction]:
    """Clear a committed link on both legs.

    A side is only cleared when it actually points at the other, so a
    one-directional link elsewhere is left for diagnostics to report.
    """
    updated = list(transactions)
    index = {tx.id: i for i, tx in enumerate(updated)}
    first_id, second_id = resolve_match_id(match_id, index)

    first = updated[index[first_id]]
    if second_id is None:
        second_id = first.reimbursement_id
    if second_id is None:
        logger.info("Transaction is not linked; nothing to unmatch", transaction_id=first_id)
        return updated

    if first.reimbursement_id == second_id:
        updated[index[first_id]] = _unlink(first)
    second_index = index.get(second_id)
    if second_index is not None and updated[second_index].reimbursement_id == first_id:
        updated[second_index] = _unlink(updated[second_index])

    logger.info("Transfer match removed", match_id=match_id, source_id=first_id, target_id=second_id)
    return updated


def get_matched_transfers(transactions: Sequence[Transaction]) -> list[TransferMatch]:
    """Existing reciprocal links, reported once per pair."""
    by_id = {tx.id: tx for tx in transactions}
    matches: list[TransferMatch] = []
    seen: set[tuple[str, str]] = set()

    for tx in transactions:
        counterpart = by_id.get(tx.reimbursement_id) if tx.reimbursement_id else None
        if counterpart is None or counterpart.reimbursement_id != tx.id:
            continue
        key = pair_key(tx.id, counterpart.id)
        if key in seen:
            continue
        seen.add(key)

        source, target = _orient(tx, counterpart)
        provenance = source.match_provenance or target.match_provenance
        matches.append(
            TransferMatch(
                id=provenance.match_id if provenance else f"{AUTO_MATCH_PREFIX}{source.id}-{target.id}",
                source_transaction_id=source.id,
                target_transaction_id=target.id,
                confidence=provenance.confidence if provenance else 1.0,
                match_type=MatchTypeEnum.MANUAL,
                date_difference=abs((source.date - target.date).days),
                amount_difference=abs(abs(source.amount) - abs(target.amount)),
                reasoning=f"Existing match: {source.account} ↔ {target.account}",
                is_verified=True,
            )
        )
    return matches


def get_unmatched_transfers(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [tx for tx in transactions if tx.type == TransactionType.TRANSFER and not tx.reimbursement_id]


def count_unmatched_transfers(transactions: Iterable[Transaction]) -> int:
    return len(get_unmatched_transfers(transactions))


def filter_non_transfers(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Hide matched transfers; unmatched ones stay visible for review."""
    return [tx for tx in transactions if tx.type != TransactionType.TRANSFER or not tx.reimbursement_id]
