"""Tests for the session processor, monitor registry and reaper."""

import asyncio
from datetime import timedelta

import pytest

from forwarder.errors import InvalidAmountError, KeyPersistError, SessionNotFoundError
from forwarder.gateway.base import LAMPORTS_PER_SIGNATURE
from forwarder.keystore.store import FileKeyStore
from forwarder.services.models import SessionStatus
from forwarder.services.reaper import WalletReaper
from forwarder.services.results import utcnow
from forwarder.services.sessions import MonitorRegistry, PaymentProcessor, payment_uri
from forwarder.units import MAX_LAMPORTS, sol_to_lamports

from conftest import CALLBACK_URI, TREASURY, wait_until_watching


class TestPaymentProcessor:
    """Tests for starting and tracking sessions."""

    @pytest.mark.asyncio
    async def test_start_session(self, processor, keystore, ledger):
        session = await processor.start(sol_to_lamports("1.5"), CALLBACK_URI)

        assert session.status == SessionStatus.PENDING
        assert session.desired_amount == 1_500_000_000
        assert keystore.exists(session.address)
        assert session.id in processor.registry
        assert session.expires_at - session.created_at == timedelta(minutes=30)
        assert processor.get(session.id) is session

        await wait_until_watching(ledger, session.address)

    @pytest.mark.asyncio
    async def test_addresses_are_unique(self, processor):
        sessions = [await processor.start(sol_to_lamports("1"), CALLBACK_URI) for _ in range(10)]

        assert len({s.address for s in sessions}) == 10
        assert len({s.id for s in sessions}) == 10

    @pytest.mark.asyncio
    async def test_known_address_is_regenerated(self, processor, keystore, monkeypatch):
        taken = keystore.create()
        keystore.persist(taken)
        fresh = keystore.create()
        candidates = iter([taken, fresh])
        monkeypatch.setattr(keystore, "create", lambda: next(candidates))

        session = await processor.start(sol_to_lamports("1"), CALLBACK_URI)

        assert session.address == fresh.public_address

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, sol_to_lamports("0.009"), MAX_LAMPORTS + 1])
    async def test_invalid_amount(self, processor, keystore, amount):
        with pytest.raises(InvalidAmountError):
            await processor.start(amount, CALLBACK_URI)

        assert keystore.stored_addresses() == []
        assert len(processor.registry) == 0

    @pytest.mark.asyncio
    async def test_persist_failure_aborts(self, settings, ledger, builder, notifier, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("file")
        keystore = FileKeyStore(blocker, gateway=ledger)
        processor = PaymentProcessor(settings, ledger, keystore, builder, notifier)

        with pytest.raises(KeyPersistError):
            await processor.start(sol_to_lamports("1"), CALLBACK_URI)
        assert processor.sessions() == []

    def test_invalid_forward_address(self, settings, ledger, keystore, builder, notifier):
        bad = settings.model_copy(update={"forward_address": "not-an-address"})
        with pytest.raises(ValueError):
            PaymentProcessor(bad, ledger, keystore, builder, notifier)

    @pytest.mark.asyncio
    async def test_unknown_session(self, processor):
        with pytest.raises(SessionNotFoundError):
            processor.get("missing")

    @pytest.mark.asyncio
    async def test_end_to_end(self, processor, ledger, webhooks):
        session = await processor.start(sol_to_lamports("2"), CALLBACK_URI)
        await wait_until_watching(ledger, session.address)

        ledger.add_transfer(session.address, sol_to_lamports("2"))
        await processor.registry.wait(session.id)

        assert session.status == SessionStatus.SETTLED
        assert session.disposed
        assert session.id not in processor.registry
        assert len(webhooks) == 1
        assert processor.stats()["by_status"] == {"settled": 1}

    @pytest.mark.asyncio
    async def test_shutdown_expires_pending(self, processor, ledger):
        session = await processor.start(sol_to_lamports("1"), CALLBACK_URI)
        await wait_until_watching(ledger, session.address)

        await processor.shutdown()

        assert session.status == SessionStatus.EXPIRED
        assert len(processor.registry) == 0
        assert ledger.open_subscriptions == 0

    def test_payment_uri(self):
        assert payment_uri("Addr", 1_500_000_000) == "solana:Addr?amount=1.5"
        assert payment_uri("Addr", 10 * 10**9) == "solana:Addr?amount=10"
        assert payment_uri("Addr", 1) == "solana:Addr?amount=0.000000001"


class TestMonitorRegistry:
    """Tests for the supervised monitor set."""

    @pytest.mark.asyncio
    async def test_spawn_and_finish(self):
        registry = MonitorRegistry()
        done = asyncio.Event()

        async def monitor():
            await done.wait()

        await registry.spawn("a", monitor())
        assert "a" in registry
        assert registry.active_ids() == ["a"]

        done.set()
        await registry.wait("a")
        assert "a" not in registry
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_spawn(self):
        registry = MonitorRegistry()
        await registry.spawn("a", asyncio.sleep(10))

        with pytest.raises(ValueError):
            await registry.spawn("a", asyncio.sleep(10))

        await registry.cancel_all()

    @pytest.mark.asyncio
    async def test_cancel(self):
        registry = MonitorRegistry()
        task = await registry.spawn("a", asyncio.sleep(10))

        assert await registry.cancel("a") is True
        assert task.cancelled()
        assert await registry.cancel("a") is False

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        registry = MonitorRegistry()
        for name in ("a", "b", "c"):
            await registry.spawn(name, asyncio.sleep(10))

        assert await registry.cancel_all() == 3
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_crashed_monitor_is_removed(self):
        registry = MonitorRegistry()

        async def crash():
            raise RuntimeError("boom")

        await registry.spawn("a", crash())
        await registry.wait("a")
        assert "a" not in registry


class TestWalletReaper:
    """Tests for late payments to expired sessions."""

    @pytest.fixture
    def reaper(self, processor, ledger, builder, keystore, settings):
        return WalletReaper(processor, ledger, builder, keystore, settings)

    async def expire(self, processor, ledger, amount="1"):
        session = await processor.start(sol_to_lamports(amount), CALLBACK_URI)
        await wait_until_watching(ledger, session.address)
        await processor.registry.cancel(session.id)
        return session

    @pytest.mark.asyncio
    async def test_late_payment_is_forwarded(self, reaper, processor, ledger, keystore):
        session = await self.expire(processor, ledger)
        ledger.add_transfer(session.address, sol_to_lamports("1"))

        signatures = await reaper.reap_once()

        assert signatures == [session.sweep_signature]
        assert session.status == SessionStatus.EXPIRED
        assert session.swept and session.disposed
        assert ledger.balances[TREASURY] == sol_to_lamports("1") - LAMPORTS_PER_SIGNATURE
        assert not keystore.exists(session.address)
        assert processor.expired_sessions() == []

    @pytest.mark.asyncio
    async def test_empty_wallet_discarded_after_grace(self, reaper, processor, ledger, keystore):
        session = await self.expire(processor, ledger)
        session.expires_at = utcnow() - timedelta(seconds=1)

        assert await reaper.reap_once() == []

        assert session.disposed
        assert not keystore.exists(session.address)
        with pytest.raises(SessionNotFoundError):
            processor.get(session.id)

    @pytest.mark.asyncio
    async def test_empty_wallet_kept_during_grace(self, processor, ledger, builder, keystore, settings):
        reaper = WalletReaper(
            processor, ledger, builder, keystore, settings.model_copy(update={"reaper_grace_minutes": 60})
        )
        session = await self.expire(processor, ledger)

        await reaper.reap_once()

        assert not session.disposed
        assert keystore.exists(session.address)

    @pytest.mark.asyncio
    async def test_dust_is_left(self, reaper, processor, ledger, keystore):
        session = await self.expire(processor, ledger)
        ledger.set_balance(session.address, LAMPORTS_PER_SIGNATURE)

        assert await reaper.reap_once() == []
        assert keystore.exists(session.address)
        assert not session.disposed

    @pytest.mark.asyncio
    async def test_finished_sessions_are_forgotten(self, processor, ledger, builder, keystore, settings):
        reaper = WalletReaper(
            processor, ledger, builder, keystore, settings.model_copy(update={"session_retention_minutes": 0})
        )
        sessions = []
        for _ in range(3):
            session = await processor.start(sol_to_lamports("1"), CALLBACK_URI)
            await wait_until_watching(ledger, session.address)
            ledger.add_transfer(session.address, sol_to_lamports("1"))
            await processor.registry.wait(session.id)
            sessions.append(session)
        assert processor.stats()["sessions"] == 3

        # Still inside the payment window
        await reaper.reap_once()
        assert processor.stats()["sessions"] == 3

        for session in sessions:
            session.expires_at = utcnow() - timedelta(seconds=1)
        await reaper.reap_once()

        assert processor.stats()["sessions"] == 0
        with pytest.raises(SessionNotFoundError):
            processor.get(sessions[0].id)

    @pytest.mark.asyncio
    async def test_undisposed_session_is_kept(self, processor, ledger):
        session = await processor.start(sol_to_lamports("1"), CALLBACK_URI)
        await wait_until_watching(ledger, session.address)
        await processor.registry.cancel(session.id)
        session.expires_at = utcnow() - timedelta(hours=2)

        assert processor.prune(timedelta(0)) == 0
        assert processor.get(session.id) is session
