"""Pytest configuration and fixtures."""

import asyncio
import os
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from solders.pubkey import Pubkey

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DRY_RUN"] = "true"
os.environ["DEBUG"] = "false"

from forwarder.archive.database import ArchiveDatabase
from forwarder.config import Settings
from forwarder.gateway.base import SimulatedLedger
from forwarder.keystore.store import FileKeyStore
from forwarder.notifications.webhook import WebhookNotifier
from forwarder.services.models import PaymentSession
from forwarder.services.monitor import PaymentMonitor
from forwarder.services.results import utcnow
from forwarder.services.sessions import PaymentProcessor
from forwarder.transactions.builder import TransactionBuilder
from forwarder.units import sol_to_lamports

TREASURY = str(Pubkey.new_unique())
CALLBACK_URI = "https://merchant.example.com/hook"


async def wait_until_watching(ledger: SimulatedLedger, address: str, timeout: float = 2.0) -> None:
    """Wait until a monitor has subscribed to an address."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not ledger.watching(address):
        if loop.time() > deadline:
            raise AssertionError(f"Nobody subscribed to {address}")
        await asyncio.sleep(0.001)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and .env."""
    return Settings(
        _env_file=None,
        environment="test",
        debug=False,
        dry_run=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'archive.db'}",
        wallet_dir=str(tmp_path / "wal"),
        forward_address=TREASURY,
        min_forward=Decimal("0.01"),
        slippage_tolerance=Decimal("0.05"),
        ignore_threshold=Decimal("0.02"),
        reaper_enabled=False,
        reaper_grace_minutes=0,
    )


@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger()


@pytest.fixture
def keystore(settings, ledger) -> FileKeyStore:
    return FileKeyStore.from_settings(settings, gateway=ledger)


@pytest.fixture
def builder(ledger) -> TransactionBuilder:
    return TransactionBuilder(ledger)


@pytest.fixture
def webhooks() -> list[httpx.Request]:
    """Requests received by the fake callback endpoint."""
    return []


@pytest_asyncio.fixture
async def notifier(webhooks):
    def handler(request: httpx.Request) -> httpx.Response:
        webhooks.append(request)
        return httpx.Response(200, json={"ok": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier(client=client, timeout=5.0)
    yield notifier
    await notifier.close()


@pytest_asyncio.fixture
async def archive(settings):
    """File-backed SQLite archive with tables created."""
    db = ArchiveDatabase(settings.database_url)
    await db.init()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def processor(settings, ledger, keystore, builder, notifier, archive):
    processor = PaymentProcessor(settings, ledger, keystore, builder, notifier, archive=archive)
    yield processor
    await processor.shutdown()


@pytest.fixture
def make_session(keystore):
    """Factory for persisted pending sessions."""

    def _make(desired: str = "10", seconds: float = 30.0, session_id: str = "session-1") -> PaymentSession:
        pair = keystore.create()
        keystore.persist(pair)
        now = utcnow()
        return PaymentSession(
            id=session_id,
            desired_amount=sol_to_lamports(desired),
            callback_uri=CALLBACK_URI,
            keypair=pair,
            created_at=now,
            expires_at=now + timedelta(seconds=seconds),
        )

    return _make


@pytest.fixture
def make_monitor(settings, ledger, builder, keystore, notifier, archive):
    """Factory for monitors wired to the simulated ledger."""

    def _make(session: PaymentSession, **overrides) -> PaymentMonitor:
        monitor_settings = settings.model_copy(update=overrides) if overrides else settings
        return PaymentMonitor(
            session, monitor_settings, ledger, builder, keystore, notifier, archive=archive
        )

    return _make
