"""Transaction storage backed by SQLAlchemy.

Every write runs in a single unit of work: either all rows change or none
do. The matching services route link writes through bulk_update so one leg
of a pair is never linked without the other.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transfer_recon.database import get_session_maker
from transfer_recon.logger import get_logger
from transfer_recon.models.transaction import TransactionRecord
from transfer_recon.schemas.transaction import MatchProvenance, NewTransaction, Transaction

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "date",
        "amount",
        "description",
        "category",
        "account",
        "type",
        "original_currency",
        "exchange_rate",
        "reimbursement_id",
        "notes",
        "is_verified",
        "match_provenance",
    }
)


class StorageError(Exception):
    """Base exception for storage errors."""


class RecordNotFoundError(StorageError):
    """Transaction not found."""


class PersistenceError(StorageError):
    """An atomic write failed and was rolled back."""


def _column_values(fields: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    provenance = values.get("match_provenance")
    if isinstance(provenance, MatchProvenance):
        values["match_provenance"] = provenance.model_dump(mode="json")
    return values


def _record_from(transaction: NewTransaction | Transaction) -> TransactionRecord:
    values = transaction.model_dump(exclude={"match_provenance"})
    if isinstance(transaction, Transaction) and transaction.match_provenance is not None:
        values["match_provenance"] = transaction.match_provenance.model_dump(mode="json")
    return TransactionRecord(**values)


def _check_fields(changes: Mapping[str, Mapping[str, Any]]) -> None:
    for transaction_id, fields in changes.items():
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update {sorted(unknown)} on transaction {transaction_id}")


async def _apply_changes(session: AsyncSession, changes: Mapping[str, Mapping[str, Any]]) -> None:
    """Set fields on existing rows inside the caller's unit of work."""
    if not changes:
        return
    result = await session.execute(select(TransactionRecord).where(TransactionRecord.id.in_(list(changes))))
    records = {record.id: record for record in result.scalars().all()}
    missing = sorted(set(changes) - set(records))
    if missing:
        raise PersistenceError(f"Unknown transaction ids: {', '.join(missing)}; no changes applied")

    for transaction_id, fields in changes.items():
        for field, value in _column_values(fields).items():
            setattr(records[transaction_id], field, value)


class TransactionStore:
    """Async repository for transactions."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker or get_session_maker()

    async def get_all_transactions(self) -> list[Transaction]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(TransactionRecord).order_by(TransactionRecord.date, TransactionRecord.id)
            )
            return [Transaction.model_validate(record) for record in result.scalars().all()]

    async def get_transaction(self, transaction_id: str) -> Transaction:
        async with self._session_maker() as session:
            record = await session.get(TransactionRecord, transaction_id)
            if record is None:
                raise RecordNotFoundError(f"Transaction {transaction_id} not found")
            return Transaction.model_validate(record)

    async def add_transactions(self, transactions: Sequence[NewTransaction | Transaction]) -> list[Transaction]:
        """Insert a batch atomically and return the stored rows."""
        if not transactions:
            return []

        records = [_record_from(tx) for tx in transactions]
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    session.add_all(records)
            except SQLAlchemyError as exc:
                logger.error("Transaction insert rolled back", count=len(records), error=str(exc))
                raise PersistenceError(f"Failed to add {len(records)} transactions; nothing was saved") from exc

        logger.info("Transactions added", count=len(records))
        return [Transaction.model_validate(record) for record in records]

    async def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> None:
        await self.bulk_update({transaction_id: fields})

    async def bulk_update(self, changes: Mapping[str, Mapping[str, Any]]) -> int:
        """Apply per-transaction field updates as one all-or-nothing write.

        Raises:
            PersistenceError: a referenced id is missing or the database
                rejected the write. No change is kept in either case.
        """
        if not changes:
            return 0

        _check_fields(changes)
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    await _apply_changes(session, changes)
            except SQLAlchemyError as exc:
                logger.error("Bulk update rolled back", count=len(changes), error=str(exc))
                raise PersistenceError("Bulk update failed; no changes applied") from exc

        logger.info("Transactions updated", count=len(changes))
        return len(changes)

    async def add_and_link(
        self,
        transactions: Sequence[Transaction],
        changes: Mapping[str, Mapping[str, Any]],
    ) -> list[Transaction]:
        """Insert a batch and update links on existing rows as one unit of work.

        Used by imports so new transfer legs are never stored without the
        links planned for them.
        """
        if not transactions and not changes:
            return []

        _check_fields(changes)
        records = [_record_from(tx) for tx in transactions]
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    session.add_all(records)
                    await _apply_changes(session, changes)
            except SQLAlchemyError as exc:
                logger.error(
                    "Import write rolled back", count=len(records), update_count=len(changes), error=str(exc)
                )
                raise PersistenceError(
                    f"Failed to import {len(records)} transactions; nothing was saved"
                ) from exc

        logger.info("Transactions imported", count=len(records), update_count=len(changes))
        return [Transaction.model_validate(record) for record in records]

    async def delete_transactions(self, transaction_ids: Iterable[str], *, clear_counterparts: bool = True) -> int:
        """Delete transactions, clearing links that pointed at them.

        With clear_counterparts=False the counterparts keep their now
        dangling reimbursement_id, which the consistency checks report.
        """
        ids = list(transaction_ids)
        if not ids:
            return 0

        async with self._session_maker() as session:
            try:
                async with session.begin():
                    if clear_counterparts:
                        await session.execute(
                            update(TransactionRecord)
                            .where(TransactionRecord.reimbursement_id.in_(ids))
                            .where(TransactionRecord.id.not_in(ids))
                            .values(reimbursement_id=None, match_provenance=None)
                        )
                    result = await session.execute(delete(TransactionRecord).where(TransactionRecord.id.in_(ids)))
                    deleted = result.rowcount or 0
            except SQLAlchemyError as exc:
                logger.error("Delete rolled back", count=len(ids), error=str(exc))
                raise PersistenceError(f"Failed to delete {len(ids)} transactions") from exc

        logger.info("Transactions deleted", requested=len(ids), deleted=deleted)
        return deleted
