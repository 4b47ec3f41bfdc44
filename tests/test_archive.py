"""Tests for the notification archive."""

from decimal import Decimal

import pytest

from forwarder.archive.database import ArchiveDatabase, normalize_url
from forwarder.archive.repository import ArchiveRepository
from forwarder.services.results import NotificationResult, utcnow


def make_result(session_id: str = "s-1", signature: str = "sig-1", **overrides) -> NotificationResult:
    fields = dict(
        session_id=session_id,
        success=True,
        desired_amount=10_000_000_000,
        amount_received=9_400_000_000,
        transaction_signature=signature,
        address="Addr1111",
        timestamp=utcnow(),
        percent_of_desired=Decimal("94"),
        slippage_error="Transaction has slipped threshold, user has not sent enough funds.",
    )
    fields.update(overrides)
    return NotificationResult(**fields)


class TestArchiveRepository:
    """Tests for archiving notification results."""

    @pytest.mark.asyncio
    async def test_record_and_read(self, archive):
        async with archive.session() as db:
            await ArchiveRepository(db).record(make_result())

        async with archive.session() as db:
            repo = ArchiveRepository(db)
            records = await repo.get_by_session("s-1")
            assert len(records) == 1
            record = records[0]
            assert record.amount_received == 9_400_000_000
            assert record.percent_of_desired == Decimal("94")
            assert record.slippage_error.startswith("Transaction has slipped")
            assert record.archived_at is not None

            assert (await repo.get_by_signature("sig-1")).session_id == "s-1"
            assert await repo.get_by_signature("missing") is None

    @pytest.mark.asyncio
    async def test_list_recent_and_count(self, archive):
        async with archive.session() as db:
            repo = ArchiveRepository(db)
            for i in range(3):
                await repo.record(make_result(session_id=f"s-{i}", signature=f"sig-{i}"))

        async with archive.session() as db:
            repo = ArchiveRepository(db)
            assert await repo.count() == 3
            recent = await repo.list_recent(limit=2)
            assert [r.session_id for r in recent] == ["s-2", "s-1"]

    @pytest.mark.asyncio
    async def test_failed_session_rolls_back(self, archive):
        with pytest.raises(RuntimeError):
            async with archive.session() as db:
                await ArchiveRepository(db).record(make_result())
                raise RuntimeError("abort")

        async with archive.session() as db:
            assert await ArchiveRepository(db).count() == 0


class TestArchiveDatabase:
    """Tests for engine setup."""

    def test_normalize_url(self):
        assert normalize_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
        assert normalize_url("sqlite+aiosqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"

    @pytest.mark.asyncio
    async def test_init_creates_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "archive.db"
        db = ArchiveDatabase(f"sqlite:///{path}")

        await db.init()
        await db.close()

        assert path.exists()


class TestNotificationResult:
    """Tests for the callback payload."""

    def test_payload(self):
        result = make_result()
        payload = result.to_payload()

        assert payload["desired_amount"] == "10.000000000"
        assert payload["amount_sent"] == "9.400000000"
        assert payload["percent_of_desired"] == "94"
        assert payload["time_sent"] == int(result.timestamp.timestamp())
        assert result.slipped
