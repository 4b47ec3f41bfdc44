"""Factory for the ledger gateway.

Dry-run mode uses the in-process simulated ledger; otherwise a Solana RPC
gateway is built from settings.
"""

import logging

from forwarder.config import Settings
from forwarder.gateway.base import LedgerGateway, SimulatedLedger

logger = logging.getLogger(__name__)


def get_gateway(settings: Settings) -> LedgerGateway:
    """Create the ledger gateway for the configured mode.

    Args:
        settings: Application settings

    Returns:
        LedgerGateway instance shared by every payment monitor
    """
    if settings.dry_run:
        logger.warning("Dry-run mode: using simulated ledger, no real transactions")
        return SimulatedLedger()

    from forwarder.gateway.solana import SolanaGateway

    return SolanaGateway.from_settings(settings)
