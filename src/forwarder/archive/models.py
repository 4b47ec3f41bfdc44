"""SQLAlchemy models for the notification archive."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Numeric, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TransactionRecord(Base):
    """Archived notification for a settled or slipped payment session.

    Rows are only ever inserted; the forwarder never updates or deletes them.
    Amounts are stored in lamports.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(nullable=False)
    desired_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_received: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_signature: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    percent_of_desired: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    slippage_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<TransactionRecord(session={self.session_id}, signature={self.transaction_signature})>"
