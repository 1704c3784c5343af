"""Reduce symmetric candidate lists to one entry per unordered pair.

Scanning every ordered pair of transactions proposes both (A, B) and (B, A).
Only the first proposal of each unordered pair is kept; a transaction may
still appear in several surviving matches with different counterparts.
"""

from collections.abc import Iterable

from transfer_recon.schemas.matching import TransferMatch


def pair_key(first_id: str, second_id: str) -> tuple[str, str]:
    """Canonical, order-independent key for two transaction ids."""
    return (first_id, second_id) if first_id <= second_id else (second_id, first_id)


def dedupe_pairs(matches: Iterable[TransferMatch]) -> list[TransferMatch]:
    seen: set[tuple[str, str]] = set()
    unique: list[TransferMatch] = []
    for match in matches:
        key = pair_key(match.source_transaction_id, match.target_transaction_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(match)
    return unique
