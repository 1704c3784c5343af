"""Transaction storage model."""

import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Date, Enum as SQLEnum, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from transfer_recon.database import Base
from transfer_recon.models.base import TimestampMixin


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionRecord(Base, TimestampMixin):
    """A persisted financial event.

    reimbursement_id links the two legs of a transfer. Links are written in
    pairs by the matching services. Stale links left by deletes or partial
    writes elsewhere are reported by the consistency checks.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    account: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type_enum"),
        nullable=False,
    )
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    reimbursement_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_provenance: Mapped[dict | None] = mapped_column(JSON, nullable=True)
