"""Payment session model."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from forwarder.keystore.base import KeyPair
from forwarder.services.results import NotificationResult, utcnow
from forwarder.units import lamports_to_sol


class SessionStatus(str, Enum):
    """Lifecycle status of a payment session."""

    PENDING = "pending"
    SETTLED = "settled"
    SLIPPED = "slipped"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATUSES = (
    SessionStatus.SETTLED,
    SessionStatus.SLIPPED,
    SessionStatus.EXPIRED,
    SessionStatus.FAILED,
)


@dataclass
class PaymentSession:
    """One payment request and the disposable wallet that receives it.

    The key pair is bound at construction and never replaced, so the
    receiving address is fixed for the session's lifetime.
    """

    id: str
    desired_amount: int
    callback_uri: str
    keypair: KeyPair = field(repr=False)
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    swept: bool = False
    sweep_signature: Optional[str] = None
    disposed: bool = False
    failure_reason: Optional[str] = None
    result: Optional[NotificationResult] = field(default=None, repr=False)

    @property
    def address(self) -> str:
        return self.keypair.public_address

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, (self.expires_at - utcnow()).total_seconds())

    def transition(self, status: SessionStatus, reason: Optional[str] = None) -> None:
        """Move the session out of pending.

        Raises:
            RuntimeError: If the session already left pending
        """
        if self.status != SessionStatus.PENDING:
            raise RuntimeError(
                f"Session {self.id} is already {self.status.value}, cannot become {status.value}"
            )
        self.status = status
        if reason is not None:
            self.failure_reason = reason

    def to_dict(self) -> dict:
        """Public view of the session (no key material)."""
        data = {
            "id": self.id,
            "status": self.status.value,
            "amount": str(lamports_to_sol(self.desired_amount)),
            "address": self.address,
            "created": int(self.created_at.timestamp()),
            "expires": int(self.expires_at.timestamp()),
            "swept": self.swept,
            "sweep_signature": self.sweep_signature,
            "disposed": self.disposed,
            "failure_reason": self.failure_reason,
        }
        if self.result is not None:
            data["amount_received"] = str(lamports_to_sol(self.result.amount_received))
            data["transaction_signature"] = self.result.transaction_signature
            data["percent_of_desired"] = str(self.result.percent_of_desired)
            data["error"] = self.result.slippage_error
        return data
