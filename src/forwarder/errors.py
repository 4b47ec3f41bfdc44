"""Forwarder error taxonomy.

Request-time errors are rendered to clients as
``{"success": false, "status": ..., "message": ...}`` using the fixed
message table below. Background errors (monitor, sweep) are only logged.
"""

from typing import Optional


class ForwarderError(Exception):
    """Base class for all forwarder errors."""

    status_code: int = 500


# ======================
# Validation
# ======================


class ValidationError(ForwarderError):
    """Request rejected before any side effect."""

    status_code = 400


class NotJSONError(ValidationError):
    """Request body is not declared as application/json."""


class MalformedRequestError(ValidationError):
    """Request body could not be parsed into a payment request."""


class InvalidAmountError(ValidationError):
    """Amount is non-positive or below the configured minimum."""


class InvalidCallbackURIError(ValidationError):
    """Callback URI is missing a host or points at a local host."""


class SessionNotFoundError(ForwarderError):
    """No payment session with the requested id."""

    status_code = 404


# ======================
# Ledger
# ======================


class LedgerError(ForwarderError):
    """Base class for errors talking to or acting on the ledger."""


class TransportError(LedgerError):
    """RPC or websocket transport failure."""

    status_code = 502


class SubmitError(LedgerError):
    """The ledger rejected a submitted transaction."""


class TransactionOverboardError(LedgerError):
    """Transaction exceeds a protocol limit or failed simulation."""


class InsufficientFundsError(LedgerError):
    """Wallet balance does not cover the network fee."""


class FeeUnavailableError(LedgerError):
    """Network fee for a message could not be determined."""


class TransactionSlippedError(LedgerError):
    """Received amount is below the slippage tolerance."""


# ======================
# Key store
# ======================


class KeyStoreError(ForwarderError):
    """Base class for key store errors."""


class InvalidKeyError(KeyStoreError):
    """Stored key material does not parse to a valid key pair."""


class NonZeroBalanceError(KeyStoreError):
    """Refusing to dispose a key whose wallet still holds funds."""

    def __init__(self, address: str, balance: int):
        super().__init__(f"Wallet {address} still holds {balance} lamports")
        self.address = address
        self.balance = balance


class KeyPersistError(KeyStoreError, OSError):
    """Key material could not be written or read."""


ERROR_MESSAGES: dict[type[Exception], str] = {
    TransactionOverboardError: "Transaction has gone overboard, retry with bonded transactions.",
    NotJSONError: "Request contains invalid JSON. Please use application/json.",
    MalformedRequestError: "Request body is malformed.",
    InvalidCallbackURIError: "Invalid callback uri.",
    InvalidAmountError: "Invalid amount to forward. Please provide a higher amount.",
    TransactionSlippedError: "Transaction has slipped threshold, user has not sent enough funds.",
    SessionNotFoundError: "No matches found.",
    InsufficientFundsError: "Insufficient funds to cover transaction fee.",
    FeeUnavailableError: "Failed to get transaction fee.",
}


def get_proper_error(error: Optional[BaseException]) -> str:
    """Get the client-facing message for an error.

    Falls back to the raw error text when the class is not in the table.
    """
    if error is None:
        return ""
    message = ERROR_MESSAGES.get(type(error))
    if message is not None:
        return message
    return str(error)
