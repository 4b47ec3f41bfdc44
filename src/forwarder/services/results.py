"""Payment notification result."""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from forwarder.units import lamports_to_sol


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of a consumed payment session.

    Sent to the caller's callback and archived. Amounts are lamports;
    ``to_payload`` converts them to SOL for the outside world.
    """

    session_id: str
    success: bool
    desired_amount: int
    amount_received: int
    transaction_signature: str
    address: str
    timestamp: datetime
    percent_of_desired: Decimal
    slippage_error: Optional[str] = None

    @property
    def slipped(self) -> bool:
        return self.slippage_error is not None

    def to_payload(self) -> dict:
        """Callback body."""
        return {
            "success": self.success,
            "id": self.session_id,
            "desired_amount": str(lamports_to_sol(self.desired_amount)),
            "amount_sent": str(lamports_to_sol(self.amount_received)),
            "transaction_signature": self.transaction_signature,
            "address": self.address,
            "time_sent": int(self.timestamp.timestamp()),
            "percent_of_desired": str(self.percent_of_desired),
            "error": self.slippage_error,
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
