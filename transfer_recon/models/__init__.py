"""SQLAlchemy models."""

from transfer_recon.models.transaction import TransactionRecord, TransactionType

__all__ = ["TransactionRecord", "TransactionType"]
