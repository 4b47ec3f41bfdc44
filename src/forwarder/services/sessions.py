"""Payment session orchestration.

The processor validates a payment request, mints a disposable wallet for
it and hands the session to a supervised payment monitor. Sessions live
in memory; settled and slipped outcomes are archived by the monitor.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Coroutine, Optional

from solders.pubkey import Pubkey

from forwarder.archive.database import ArchiveDatabase
from forwarder.config import Settings
from forwarder.errors import InvalidAmountError, KeyStoreError, SessionNotFoundError
from forwarder.gateway.base import LedgerGateway
from forwarder.keystore.base import KeyPair
from forwarder.keystore.store import FileKeyStore
from forwarder.notifications.webhook import WebhookNotifier
from forwarder.services.models import PaymentSession, SessionStatus
from forwarder.services.monitor import PaymentMonitor
from forwarder.services.results import utcnow
from forwarder.transactions.builder import TransactionBuilder
from forwarder.units import MAX_LAMPORTS, format_sol, lamports_to_sol

logger = logging.getLogger(__name__)

__all__ = [
    "MonitorRegistry",
    "PaymentProcessor",
    "PaymentSession",
    "SessionStatus",
    "payment_uri",
]

# Regeneration attempts before giving up on a fresh address
MAX_KEY_ATTEMPTS = 5


def payment_uri(address: str, lamports: int) -> str:
    """Solana Pay transfer URI, used as the QR code payload."""
    amount = lamports_to_sol(lamports).normalize()
    return f"solana:{address}?amount={amount:f}"


class MonitorRegistry:
    """Supervised set of running payment monitors, keyed by session id."""

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def spawn(self, session_id: str, coro: Coroutine) -> asyncio.Task:
        """Run a monitor coroutine as a task owned by the registry.

        Raises:
            ValueError: If a monitor for the session is already running
        """
        async with self._lock:
            if session_id in self._tasks:
                coro.close()
                raise ValueError(f"Monitor for session {session_id} already running")
            task = asyncio.create_task(coro, name=f"monitor-{session_id}")
            self._tasks[session_id] = task
        task.add_done_callback(lambda t: self._finished(session_id, t))
        return task

    def _finished(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Monitor for session {session_id} crashed: {exc!r}")

    async def cancel(self, session_id: str) -> bool:
        """Cancel one monitor and wait for it to unwind."""
        async with self._lock:
            task = self._tasks.get(session_id)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def cancel_all(self) -> int:
        """Cancel every running monitor (shutdown)."""
        async with self._lock:
            tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} payment monitors")
        return len(tasks)

    async def wait(self, session_id: str) -> None:
        """Wait for a monitor to finish, if it is still running."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def active_ids(self) -> list[str]:
        return list(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._tasks


class PaymentProcessor:
    """Starts payment sessions and keeps track of them."""

    def __init__(
        self,
        settings: Settings,
        gateway: LedgerGateway,
        keystore: FileKeyStore,
        builder: TransactionBuilder,
        notifier: WebhookNotifier,
        archive: Optional[ArchiveDatabase] = None,
        registry: Optional[MonitorRegistry] = None,
    ):
        """Initialize processor.

        Raises:
            ValueError: If the configured forward address is not a valid address
        """
        try:
            Pubkey.from_string(settings.forward_address)
        except ValueError as e:
            raise ValueError(f"Invalid forward address {settings.forward_address!r}: {e}") from e

        self.settings = settings
        self.gateway = gateway
        self.keystore = keystore
        self.builder = builder
        self.notifier = notifier
        self.archive = archive
        self.registry = registry or MonitorRegistry()
        self._sessions: dict[str, PaymentSession] = {}
        self._addresses: set[str] = set()

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.settings.payment_window_minutes)

    def validate_amount(self, amount: int) -> None:
        """Raises InvalidAmountError for non-positive, sub-minimum or oversized amounts."""
        if amount <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {amount} lamports")
        if amount > MAX_LAMPORTS:
            raise InvalidAmountError(f"Amount {amount} lamports exceeds ledger maximum {MAX_LAMPORTS}")
        minimum = self.settings.min_forward_lamports
        if amount < minimum:
            raise InvalidAmountError(
                f"Amount {format_sol(amount)} is below minimum {format_sol(minimum)}"
            )

    def _fresh_keypair(self) -> KeyPair:
        for _ in range(MAX_KEY_ATTEMPTS):
            pair = self.keystore.create()
            address = pair.public_address
            if address in self._addresses or self.keystore.exists(address):
                logger.warning(f"Generated address {address} already in use, regenerating")
                continue
            return pair
        raise KeyStoreError("Could not generate an unused address")

    async def start(self, amount: int, callback_uri: str) -> PaymentSession:
        """Open a payment session and start monitoring its address.

        Args:
            amount: Desired amount in lamports
            callback_uri: Normalized callback URI

        Returns:
            The pending session (monitoring continues in the background)

        Raises:
            InvalidAmountError: If the amount is not acceptable
            KeyPersistError: If the wallet key could not be stored
        """
        self.validate_amount(amount)

        pair = self._fresh_keypair()
        self.keystore.persist(pair)
        self._addresses.add(pair.public_address)

        now = utcnow()
        session = PaymentSession(
            id=str(uuid.uuid4()),
            desired_amount=amount,
            callback_uri=callback_uri,
            keypair=pair,
            created_at=now,
            expires_at=now + self.window,
        )
        self._sessions[session.id] = session

        monitor = PaymentMonitor(
            session,
            self.settings,
            self.gateway,
            self.builder,
            self.keystore,
            self.notifier,
            archive=self.archive,
        )
        await self.registry.spawn(session.id, monitor.run())

        logger.info(
            f"Started session {session.id}: {format_sol(amount)} to {session.address}, "
            f"expires {session.expires_at.isoformat()}"
        )
        return session

    def get(self, session_id: str) -> PaymentSession:
        """Raises SessionNotFoundError for unknown ids."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def sessions(self) -> list[PaymentSession]:
        return list(self._sessions.values())

    def expired_sessions(self) -> list[PaymentSession]:
        """Sessions that ended without payment and still hold a key."""
        return [
            s
            for s in self._sessions.values()
            if s.status in (SessionStatus.EXPIRED, SessionStatus.FAILED) and not s.disposed
        ]

    def forget(self, session_id: str) -> None:
        """Drop a finished session from memory. Its address stays reserved."""
        session = self._sessions.get(session_id)
        if session is not None and session.is_terminal:
            del self._sessions[session_id]

    def prune(self, retention: timedelta) -> int:
        """Forget disposed sessions whose window closed more than ``retention`` ago.

        Sessions whose wallet still holds a key are kept so the reaper or an
        operator can find them.

        Returns:
            Number of sessions forgotten
        """
        cutoff = utcnow() - retention
        stale = [
            s.id
            for s in self._sessions.values()
            if s.is_terminal
            and s.disposed
            and s.id not in self.registry
            and s.expires_at <= cutoff
        ]
        for session_id in stale:
            del self._sessions[session_id]
        return len(stale)

    def stats(self) -> dict:
        counts: dict[str, int] = {}
        for s in self._sessions.values():
            counts[s.status.value] = counts.get(s.status.value, 0) + 1
        return {
            "sessions": len(self._sessions),
            "active_monitors": len(self.registry),
            "by_status": counts,
        }

    async def shutdown(self) -> None:
        await self.registry.cancel_all()
