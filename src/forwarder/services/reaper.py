"""Wallet reaper for sessions that ended without settlement.

A payer may still send funds after a session expired or its watch
failed. The reaper periodically re-checks those wallets: funds found are
forwarded to the treasury, and wallets that stay empty past the grace
period are discarded. Finished sessions are forgotten once their
retention window has passed.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from forwarder.config import Settings
from forwarder.errors import InsufficientFundsError, KeyStoreError, LedgerError
from forwarder.gateway.base import LedgerGateway
from forwarder.keystore.store import FileKeyStore
from forwarder.services.models import PaymentSession
from forwarder.services.results import utcnow
from forwarder.services.sessions import PaymentProcessor
from forwarder.transactions.builder import TransactionBuilder
from forwarder.units import format_sol

logger = logging.getLogger(__name__)


class WalletReaper:
    """Sweeps and disposes wallets of expired and failed sessions."""

    def __init__(
        self,
        processor: PaymentProcessor,
        gateway: LedgerGateway,
        builder: TransactionBuilder,
        keystore: FileKeyStore,
        settings: Settings,
    ):
        self.processor = processor
        self.gateway = gateway
        self.builder = builder
        self.keystore = keystore
        self.settings = settings

    @property
    def grace(self) -> timedelta:
        return timedelta(minutes=self.settings.reaper_grace_minutes)

    async def reap_session(self, session: PaymentSession) -> Optional[str]:
        """Forward any late funds, then dispose the wallet once it is empty.

        Returns:
            Sweep signature if funds were forwarded
        """
        balance = await self.gateway.balance_of(session.address)

        if balance == 0:
            if utcnow() < session.expires_at + self.grace:
                return None
            await self.keystore.dispose(session.keypair)
            session.disposed = True
            self.processor.forget(session.id)
            logger.info(f"Discarded empty wallet {session.address} of session {session.id}")
            return None

        logger.info(
            f"Found {format_sol(balance)} in {session.address} after session {session.id} "
            f"ended ({session.status.value})"
        )
        signature = await self.builder.sweep_all(
            session.keypair,
            self.settings.forward_address,
            simulate=self.settings.simulate_sweeps,
            balance=balance,
        )
        session.swept = True
        session.sweep_signature = signature

        await self.gateway.confirm_transaction(signature)
        await self.keystore.dispose(session.keypair)
        session.disposed = True
        return signature

    async def reap_once(self) -> list[str]:
        """Check every expired or failed session once, then forget stale ones.

        Returns:
            Signatures of sweeps made in this pass
        """
        signatures = []
        for session in self.processor.expired_sessions():
            try:
                signature = await self.reap_session(session)
            except InsufficientFundsError as e:
                logger.debug(f"Leaving dust in {session.address}: {e}")
                continue
            except (LedgerError, KeyStoreError) as e:
                logger.error(f"Reaper failed for session {session.id} ({session.address}): {e}")
                continue
            if signature:
                signatures.append(signature)

        pruned = self.processor.prune(timedelta(minutes=self.settings.session_retention_minutes))
        if pruned:
            logger.info(f"Forgot {pruned} finished session(s)")
        return signatures

    async def run(self, interval_seconds: Optional[int] = None) -> None:
        """Run the reaper in a loop until cancelled."""
        interval = interval_seconds or self.settings.reaper_interval_seconds
        logger.info(f"Starting wallet reaper (interval: {interval}s)")

        while True:
            try:
                swept = await self.reap_once()
                if swept:
                    logger.info(f"Reaper forwarded {len(swept)} late payment(s)")
            except Exception as e:
                logger.error(f"Reaper error: {e}")

            await asyncio.sleep(interval)
