"""Atomic transfer bundles and sweeping."""

from forwarder.transactions.builder import (
    MAX_INSTRUCTIONS,
    MAX_SIGNERS,
    MAX_TRANSACTION_SIZE,
    TransactionBuilder,
)
from forwarder.transactions.bundle import (
    SignedTransaction,
    TransactionBundle,
    TransferInstruction,
)

__all__ = [
    "MAX_INSTRUCTIONS",
    "MAX_SIGNERS",
    "MAX_TRANSACTION_SIZE",
    "SignedTransaction",
    "TransactionBuilder",
    "TransactionBundle",
    "TransferInstruction",
]
