#!/usr/bin/env python3
"""Stranded Wallet Recovery Script.

Sweeps every wallet left in the key directory to the treasury and
removes the slots of wallets that end up empty. Useful after a crash or
when a sweep failed and the session was left unswept.

Slots written within the last payment window may belong to sessions a
running service is still watching; they are skipped unless --force is
given. Stop the service before forcing.

Usage:
    python scripts/recover_wallets.py [--address ADDR] [--dry-run] [--force]

Options:
    --address  Only recover a specific wallet (default: all slots)
    --to       Destination address (default: FORWARD_ADDRESS)
    --dry-run  Show balances without sweeping or deleting anything
    --force    Include slots younger than the payment window
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from forwarder.config import get_settings
from forwarder.errors import InsufficientFundsError, KeyStoreError, LedgerError
from forwarder.gateway.factory import get_gateway
from forwarder.keystore.store import FileKeyStore
from forwarder.transactions.builder import TransactionBuilder
from forwarder.units import format_sol

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def recover_wallet(
    address: str,
    keystore: FileKeyStore,
    builder: TransactionBuilder,
    to_address: str,
    dry_run: bool = False,
) -> dict:
    """Sweep one stored wallet and dispose it if it ends up empty."""
    result = {"address": address, "balance": 0, "signature": None, "disposed": False, "error": None}

    try:
        pair = keystore.load_address(address)
    except KeyStoreError as e:
        result["error"] = str(e)
        logger.error(f"Cannot load {address}: {e}")
        return result

    gateway = builder.gateway
    try:
        balance = await gateway.balance_of(address)
        result["balance"] = balance
        logger.info(f"{address}: {format_sol(balance)}")

        if dry_run:
            return result

        if balance > 0:
            signature = await builder.sweep_all(pair, to_address, simulate=True, balance=balance)
            await gateway.confirm_transaction(signature)
            result["signature"] = signature

        await keystore.dispose(pair)
        result["disposed"] = True
    except InsufficientFundsError as e:
        result["error"] = str(e)
        logger.warning(f"Leaving dust in {address}: {e}")
    except (LedgerError, KeyStoreError) as e:
        result["error"] = str(e)
        logger.error(f"Failed to recover {address}: {e}")

    return result


def is_recent(keystore: FileKeyStore, address: str, window_minutes: int) -> bool:
    """True if the address's slot was written within the payment window."""
    try:
        modified = keystore.slot_path(address).stat().st_mtime
    except OSError:
        return False
    return time.time() - modified < window_minutes * 60


async def main():
    parser = argparse.ArgumentParser(description="Stranded Wallet Recovery")
    parser.add_argument("--address", type=str, help="Only recover a specific wallet")
    parser.add_argument("--to", type=str, help="Destination address (default: FORWARD_ADDRESS)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument(
        "--force", action="store_true", help="Include slots of possibly active sessions"
    )

    args = parser.parse_args()

    settings = get_settings()
    to_address = args.to or settings.forward_address
    if not to_address and not args.dry_run:
        logger.error("No destination: set FORWARD_ADDRESS or pass --to")
        return []

    gateway = get_gateway(settings)
    keystore = FileKeyStore.from_settings(settings, gateway=gateway)
    builder = TransactionBuilder(gateway)

    logger.info("=" * 60)
    logger.info("STRANDED WALLET RECOVERY")
    logger.info("=" * 60)

    if args.dry_run:
        logger.info("DRY RUN MODE - No changes will be made")

    addresses = [args.address] if args.address else keystore.stored_addresses()
    logger.info(f"Found {len(addresses)} wallet(s) in {keystore.wallet_dir}")

    if not args.force:
        window = settings.payment_window_minutes
        recent = [a for a in addresses if is_recent(keystore, a, window)]
        if recent:
            logger.warning(
                f"Skipping {len(recent)} wallet(s) written in the last {window} minutes "
                f"(possibly active sessions, use --force with the service stopped)"
            )
            addresses = [a for a in addresses if a not in recent]

    results = []
    try:
        for address in addresses:
            results.append(
                await recover_wallet(address, keystore, builder, to_address, dry_run=args.dry_run)
            )
    finally:
        await gateway.close()

    # Summary
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)

    total = sum(r["balance"] for r in results)
    swept = [r for r in results if r["signature"]]
    disposed = [r for r in results if r["disposed"]]
    failed = [r for r in results if r["error"]]

    logger.info(f"Total balance: {format_sol(total)}")
    logger.info(f"Swept:    {len(swept)}")
    logger.info(f"Disposed: {len(disposed)}")
    logger.info(f"Failed:   {len(failed)}")
    for r in failed:
        logger.info(f"  {r['address']}: {r['error']}")

    return results


if __name__ == "__main__":
    asyncio.run(main())
