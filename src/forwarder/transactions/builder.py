"""Transaction construction and full-balance sweeping.

Bundles are assembled into a single atomic transaction: either every
transfer lands or none does. Protocol limits are enforced before anything
is sent, and a bundle that does not fit is rejected outright rather than
truncated.
"""

import logging
from typing import Optional

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from forwarder.errors import (
    FeeUnavailableError,
    InsufficientFundsError,
    TransactionOverboardError,
)
from forwarder.gateway.base import LedgerGateway
from forwarder.keystore.base import KeyPair
from forwarder.transactions.bundle import SignedTransaction, TransactionBundle
from forwarder.units import format_sol

logger = logging.getLogger(__name__)

# Protocol ceilings
MAX_TRANSACTION_SIZE = 1232
MAX_INSTRUCTIONS = 30
MAX_SIGNERS = 18


class TransactionBuilder:
    """Builds, signs and submits transfer bundles through a ledger gateway."""

    def __init__(self, gateway: LedgerGateway):
        self.gateway = gateway

    def check_limits(self, bundle: TransactionBundle) -> None:
        """Reject bundles over the instruction or signer ceilings.

        Raises:
            ValueError: If the bundle is empty
            TransactionOverboardError: If a ceiling is exceeded
        """
        if not bundle.instructions:
            raise ValueError("Cannot build a transaction from an empty bundle")

        if len(bundle) > MAX_INSTRUCTIONS:
            raise TransactionOverboardError(
                f"Bundle has {len(bundle)} instructions, limit is {MAX_INSTRUCTIONS}"
            )

        signers = bundle.signers()
        if len(signers) > MAX_SIGNERS:
            raise TransactionOverboardError(
                f"Bundle needs {len(signers)} signers, limit is {MAX_SIGNERS}"
            )

        for ix in bundle.instructions:
            if ix.amount < 0:
                raise ValueError(f"Negative transfer amount {ix.amount}")

    def compile(self, bundle: TransactionBundle, blockhash: Hash) -> Message:
        """Compile a bundle into a message without signing it.

        Raises:
            TransactionOverboardError: If the serialized transaction is too large
        """
        instructions = [
            transfer(
                TransferParams(
                    from_pubkey=ix.from_key.pubkey,
                    to_pubkey=Pubkey.from_string(ix.to_address),
                    lamports=ix.amount,
                )
            )
            for ix in bundle.instructions
        ]
        message = Message.new_with_blockhash(instructions, bundle.payer.pubkey, blockhash)

        size = len(bytes(Transaction.new_unsigned(message)))
        if size > MAX_TRANSACTION_SIZE:
            raise TransactionOverboardError(
                f"Transaction is {size} bytes, limit is {MAX_TRANSACTION_SIZE}"
            )
        return message

    async def build(self, bundle: TransactionBundle) -> SignedTransaction:
        """Build and sign a bundle as one atomic transaction.

        Every distinct source key and the fee payer sign the transaction.

        Raises:
            TransactionOverboardError: If any protocol limit is exceeded
        """
        self.check_limits(bundle)

        blockhash = await self.gateway.latest_blockhash()
        message = self.compile(bundle, blockhash)

        signers = [pair.signer for pair in bundle.signers()]
        tx = Transaction(signers, message, blockhash)

        return SignedTransaction(
            transaction=tx,
            transfers=list(bundle.instructions),
            fee_payer=bundle.payer.public_address,
        )

    async def _verify_simulation(self, signed: SignedTransaction) -> None:
        sim = await self.gateway.simulate(signed)
        if sim.overboard:
            raise TransactionOverboardError(
                f"Simulation rejected transaction: error={sim.error}, units={sim.units_consumed}"
            )

    async def submit(self, bundle: TransactionBundle, simulate: bool = False) -> str:
        """Build, optionally simulate, and submit a bundle.

        Returns:
            Transaction signature
        """
        signed = await self.build(bundle)
        if simulate:
            await self._verify_simulation(signed)
        return await self.gateway.submit(signed)

    async def transfer(
        self, from_pair: KeyPair, to_address: str, amount: int, simulate: bool = False
    ) -> str:
        """Submit a single transfer."""
        bundle = TransactionBundle().add(from_pair, to_address, amount)
        return await self.submit(bundle, simulate=simulate)

    async def sweep_all(
        self,
        from_pair: KeyPair,
        to_address: str,
        simulate: bool = False,
        balance: Optional[int] = None,
    ) -> str:
        """Send a wallet's entire balance, minus the network fee.

        Args:
            from_pair: Wallet to empty (also pays the fee)
            to_address: Destination address
            simulate: Simulate before submitting
            balance: Known balance in lamports (fetched if omitted)

        Returns:
            Transaction signature

        Raises:
            FeeUnavailableError: If the fee cannot be determined or is not positive
            InsufficientFundsError: If the balance does not exceed the fee
            TransactionOverboardError: If simulation fails or exceeds compute limits
        """
        if balance is None:
            balance = await self.gateway.balance_of(from_pair.public_address)

        # Fee is quoted for the exact message that will be sent
        bundle = TransactionBundle().add(from_pair, to_address, balance)
        provisional = await self.build(bundle)

        fee = await self.gateway.estimate_fee(provisional.message)
        if fee is None or fee <= 0:
            raise FeeUnavailableError(f"Failed to get transaction fee for {from_pair.public_address}")

        if balance <= fee:
            raise InsufficientFundsError(
                f"Insufficient funds to cover transaction fee: balance={balance}, fee={fee}"
            )

        amount = balance - fee
        bundle = TransactionBundle().add(from_pair, to_address, amount)
        signed = await self.build(bundle)

        if simulate:
            await self._verify_simulation(signed)

        signature = await self.gateway.submit(signed)
        logger.info(
            f"Swept {format_sol(amount)} from {from_pair.public_address} to {to_address} "
            f"(fee {fee} lamports): {signature}"
        )
        return signature
