"""Per-session payment monitor.

A monitor watches one disposable address until the first qualifying
incoming transfer or until the session deadline. The watch runs under
the deadline; settlement (notification, archival, sweep and disposal)
runs after it and is never cut short by expiry.
"""

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from forwarder.archive.database import ArchiveDatabase
from forwarder.archive.repository import ArchiveRepository
from forwarder.config import Settings
from forwarder.errors import (
    KeyStoreError,
    LedgerError,
    TransactionSlippedError,
    TransportError,
    get_proper_error,
)
from forwarder.gateway.base import CONFIRMED, LedgerEvent, LedgerGateway
from forwarder.keystore.store import FileKeyStore
from forwarder.notifications.webhook import WebhookNotifier
from forwarder.services.models import PaymentSession, SessionStatus
from forwarder.services.results import NotificationResult, utcnow
from forwarder.transactions.builder import TransactionBuilder
from forwarder.units import format_sol

logger = logging.getLogger(__name__)

_PERCENT_PLACES = Decimal("0.0001")


def is_noise(received: int, desired: int, ignore_threshold: Decimal) -> bool:
    """True if a transfer is too small to count as a payment attempt."""
    return Decimal(received) < Decimal(desired) * ignore_threshold


def percent_of_desired(received: int, desired: int) -> Decimal:
    return (Decimal(received) / Decimal(desired) * 100).quantize(_PERCENT_PLACES)


def classify_receipt(received: int, desired: int, slippage_tolerance: Decimal) -> SessionStatus:
    """Settled if within tolerance of the desired amount, slipped otherwise."""
    if Decimal(received) >= Decimal(desired) * (1 - slippage_tolerance):
        return SessionStatus.SETTLED
    return SessionStatus.SLIPPED


class PaymentMonitor:
    """Watches a session's address and settles the first qualifying payment."""

    def __init__(
        self,
        session: PaymentSession,
        settings: Settings,
        gateway: LedgerGateway,
        builder: TransactionBuilder,
        keystore: FileKeyStore,
        notifier: WebhookNotifier,
        archive: Optional[ArchiveDatabase] = None,
    ):
        self.session = session
        self.settings = settings
        self.gateway = gateway
        self.builder = builder
        self.keystore = keystore
        self.notifier = notifier
        self.archive = archive

    async def run(self) -> SessionStatus:
        """Watch until matched, expired or failed, then settle a match.

        Returns:
            Final session status
        """
        session = self.session
        logger.info(
            f"Monitoring {session.address} for session {session.id} "
            f"({format_sol(session.desired_amount)}, {session.remaining_seconds:.0f}s)"
        )

        try:
            event = await asyncio.wait_for(self._watch(), timeout=session.remaining_seconds)
        except asyncio.TimeoutError:
            session.transition(SessionStatus.EXPIRED)
            logger.info(f"Session {session.id} expired without payment")
            return session.status
        except TransportError as e:
            session.transition(SessionStatus.FAILED, reason=str(e))
            logger.error(f"Session {session.id} failed while watching {session.address}: {e}")
            return session.status
        except asyncio.CancelledError:
            if session.status == SessionStatus.PENDING:
                session.transition(SessionStatus.EXPIRED)
                logger.info(f"Session {session.id} cancelled while watching")
            raise
        except Exception as e:
            session.transition(SessionStatus.FAILED, reason=str(e) or type(e).__name__)
            logger.error(f"Session {session.id} failed unexpectedly while watching {session.address}: {e!r}")
            return session.status

        await self.settle(event)
        return session.status

    async def _watch(self) -> LedgerEvent:
        address = self.session.address
        async with self.gateway.subscribe_logs(address, CONFIRMED) as events:
            async for event in events:
                matched = await self._evaluate(event)
                if matched is not None:
                    return matched
        raise TransportError(f"Log subscription for {address} ended")

    async def _evaluate(self, event: LedgerEvent) -> Optional[LedgerEvent]:
        """Resolve a log event to a qualifying payment, or None to keep watching."""
        session = self.session
        if event.error is not None:
            logger.debug(f"Skipping failed transaction {event.signature}: {event.error}")
            return None

        tx = await self.gateway.fetch_transaction(event.signature)
        if tx is None:
            logger.debug(f"Transaction {event.signature} not found")
            return None
        if tx.error is not None:
            logger.debug(f"Skipping failed transaction {event.signature}: {tx.error}")
            return None

        received = tx.amount_to(session.address)
        if received <= 0:
            return None

        if is_noise(received, session.desired_amount, self.settings.ignore_threshold):
            logger.info(
                f"Ignoring {format_sol(received)} to {session.address} "
                f"(below noise threshold for session {session.id})"
            )
            return None

        return replace(event, amount=received, sender=tx.sender_to(session.address))

    async def settle(self, event: LedgerEvent) -> NotificationResult:
        """Evaluate a matched payment, notify, archive and forward the funds."""
        session = self.session
        received = event.amount or 0

        status = classify_receipt(received, session.desired_amount, self.settings.slippage_tolerance)
        error = None
        if status == SessionStatus.SLIPPED:
            error = get_proper_error(TransactionSlippedError())
        session.transition(status)

        result = NotificationResult(
            session_id=session.id,
            success=True,
            desired_amount=session.desired_amount,
            amount_received=received,
            transaction_signature=event.signature,
            address=session.address,
            timestamp=utcnow(),
            percent_of_desired=percent_of_desired(received, session.desired_amount),
            slippage_error=error,
        )
        session.result = result
        logger.info(
            f"Session {session.id} {status.value}: received {format_sol(received)} "
            f"of {format_sol(session.desired_amount)} ({result.percent_of_desired}%) "
            f"in {event.signature}"
        )

        delivery = asyncio.gather(self._archive(result), self._notify(result))
        try:
            await self._forward()
        except asyncio.CancelledError:
            delivery.cancel()
            raise
        await delivery
        return result

    async def _forward(self) -> None:
        session = self.session
        pair = session.keypair
        try:
            signature = await self.builder.sweep_all(
                pair,
                self.settings.forward_address,
                simulate=self.settings.simulate_sweeps,
            )
        except LedgerError as e:
            logger.error(
                f"Sweep failed for session {session.id}, funds left in {session.address}: {e}"
            )
            return

        session.swept = True
        session.sweep_signature = signature

        try:
            await self.gateway.confirm_transaction(signature)
            await self.keystore.dispose(pair)
        except (LedgerError, KeyStoreError) as e:
            logger.warning(f"Wallet {session.address} kept after sweep {signature}: {e}")
            return

        session.disposed = True

    async def _archive(self, result: NotificationResult) -> None:
        if self.archive is None:
            return
        try:
            async with self.archive.session() as db:
                await ArchiveRepository(db).record(result)
        except Exception as e:
            logger.error(f"Failed to archive session {result.session_id}: {e}")

    async def _notify(self, result: NotificationResult) -> None:
        try:
            await self.notifier.send(self.session.callback_uri, result.to_payload())
        except Exception as e:
            logger.error(f"Failed to notify {self.session.callback_uri} for session {result.session_id}: {e}")
