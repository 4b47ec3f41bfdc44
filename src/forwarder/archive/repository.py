"""Repository for the append-only notification archive."""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forwarder.archive.models import TransactionRecord
from forwarder.services.results import NotificationResult


class ArchiveRepository:
    """Insert and read archived notifications. There is no update or delete."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, result: NotificationResult) -> TransactionRecord:
        """Archive a notification result."""
        record = TransactionRecord(
            session_id=result.session_id,
            success=result.success,
            desired_amount=result.desired_amount,
            amount_received=result.amount_received,
            transaction_signature=result.transaction_signature,
            address=result.address,
            percent_of_desired=result.percent_of_desired,
            slippage_error=result.slippage_error,
            timestamp=result.timestamp,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_session(self, session_id: str) -> list[TransactionRecord]:
        stmt = (
            select(TransactionRecord)
            .where(TransactionRecord.session_id == session_id)
            .order_by(TransactionRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_signature(self, signature: str) -> Optional[TransactionRecord]:
        stmt = select(TransactionRecord).where(
            TransactionRecord.transaction_signature == signature
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_recent(self, limit: int = 50) -> list[TransactionRecord]:
        stmt = select(TransactionRecord).order_by(TransactionRecord.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(TransactionRecord.id)))
        return result.scalar_one()
