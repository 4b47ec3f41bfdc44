"""Ledger gateway interface.

The forwarder core talks to the ledger only through this interface:
balances, blockhashes, fee estimates, submission, simulation, log
subscriptions and transaction lookups. Implementations must be safe for
concurrent use by many payment monitors at once.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncContextManager, AsyncIterator, Optional

from solders.hash import Hash
from solders.message import Message

from forwarder.errors import SubmitError, TransportError

if TYPE_CHECKING:
    from forwarder.transactions.bundle import SignedTransaction

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"

# Compute units a single transaction may consume
MAX_COMPUTE_UNITS = 1_400_000

LAMPORTS_PER_SIGNATURE = 5000


@dataclass
class LedgerEvent:
    """A log notification mentioning a watched address.

    ``amount`` and ``sender`` are filled in once the underlying
    transaction has been fetched.
    """

    signature: str
    error: Optional[Any] = None
    amount: Optional[int] = None
    sender: Optional[str] = None


@dataclass(frozen=True)
class Transfer:
    """A system-program transfer found in a transaction."""

    source: str
    destination: str
    lamports: int


@dataclass
class ParsedTransaction:
    """Confirmed transaction reduced to what the forwarder needs."""

    signature: str
    error: Optional[Any] = None
    fee: int = 0
    transfers: list[Transfer] = field(default_factory=list)

    def amount_to(self, address: str) -> int:
        """Total lamports transferred to an address."""
        return sum(t.lamports for t in self.transfers if t.destination == address)

    def sender_to(self, address: str) -> Optional[str]:
        """Source of the first transfer to an address."""
        for t in self.transfers:
            if t.destination == address:
                return t.source
        return None


@dataclass
class SimulationResult:
    """Outcome of a simulated transaction."""

    failed: bool
    units_consumed: Optional[int] = None
    error: Optional[Any] = None

    @property
    def overboard(self) -> bool:
        """True if the transaction failed or exceeded the compute ceiling."""
        return self.failed or (
            self.units_consumed is not None and self.units_consumed > MAX_COMPUTE_UNITS
        )


class LedgerGateway(ABC):
    """Abstract capability interface over the ledger."""

    @abstractmethod
    async def balance_of(self, address: str) -> int:
        """Balance of an address in lamports."""
        pass

    @abstractmethod
    async def latest_blockhash(self) -> Hash:
        """Blockhash anchoring a new transaction's validity window."""
        pass

    @abstractmethod
    async def estimate_fee(self, message: Message) -> Optional[int]:
        """Network fee in lamports for a compiled message, None if unavailable."""
        pass

    @abstractmethod
    async def submit(self, signed: "SignedTransaction") -> str:
        """Submit a signed transaction with preflight at confirmed commitment.

        Returns:
            Transaction signature

        Raises:
            SubmitError: If the ledger rejects the transaction
            TransportError: If the node cannot be reached
        """
        pass

    @abstractmethod
    async def simulate(self, signed: "SignedTransaction") -> SimulationResult:
        pass

    @abstractmethod
    def subscribe_logs(
        self, address: str, commitment: str = CONFIRMED
    ) -> AsyncContextManager[AsyncIterator[LedgerEvent]]:
        """Subscribe to log notifications mentioning an address.

        Used as an async context manager yielding an async iterator of
        events. Leaving the context always releases the subscription.

        Raises:
            TransportError: If subscribing or receiving fails
        """
        pass

    @abstractmethod
    async def fetch_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        """Look up a confirmed transaction, None if not found."""
        pass

    @abstractmethod
    async def confirm_transaction(self, signature: str) -> None:
        """Wait until a transaction reaches confirmed commitment."""
        pass

    async def close(self) -> None:
        """Release connections held by the gateway."""
        pass


class SimulatedLedger(LedgerGateway):
    """In-process ledger for dry-run mode and tests (no network).

    Incoming payments are injected with ``add_transfer``; every watcher of
    the destination address receives the matching log event.
    """

    def __init__(self, fee_per_signature: Optional[int] = LAMPORTS_PER_SIGNATURE):
        self.fee_per_signature = fee_per_signature
        self.balances: dict[str, int] = {}
        self.transactions: dict[str, ParsedTransaction] = {}
        self.submitted: list["SignedTransaction"] = []
        self.simulated: list["SignedTransaction"] = []
        self.simulation_units: Optional[int] = 150
        self.simulation_error: Optional[Any] = None
        self.open_subscriptions = 0
        self._watchers: dict[str, list[asyncio.Queue]] = {}
        self._counter = 0
        self.blockhash = Hash.new_unique()

    def _next_signature(self) -> str:
        self._counter += 1
        return f"simsig{self._counter:058d}"

    def set_balance(self, address: str, lamports: int) -> None:
        self.balances[address] = lamports

    def add_transfer(
        self,
        to_address: str,
        lamports: int,
        sender: str = "SimulatedSender1111111111111111111111111111",
        error: Optional[Any] = None,
    ) -> str:
        """Record an incoming transfer and notify watchers of the address.

        Returns:
            Signature of the simulated transaction
        """
        signature = self._next_signature()
        self.transactions[signature] = ParsedTransaction(
            signature=signature,
            error=error,
            fee=LAMPORTS_PER_SIGNATURE,
            transfers=[Transfer(sender, to_address, lamports)],
        )
        if error is None:
            self.balances[to_address] = self.balances.get(to_address, 0) + lamports
        self.push_event(to_address, LedgerEvent(signature=signature, error=error))
        return signature

    def push_event(self, address: str, event: LedgerEvent) -> None:
        """Deliver a raw log event to watchers of an address."""
        for queue in self._watchers.get(address, []):
            queue.put_nowait(event)

    def fail_subscription(self, address: str, error: Optional[Exception] = None) -> None:
        """Make every watcher of an address fail with a transport error."""
        exc = error or TransportError(f"Simulated subscription failure for {address}")
        for queue in self._watchers.get(address, []):
            queue.put_nowait(exc)

    def watching(self, address: str) -> bool:
        return bool(self._watchers.get(address))

    async def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    async def latest_blockhash(self) -> Hash:
        return self.blockhash

    async def estimate_fee(self, message: Message) -> Optional[int]:
        if self.fee_per_signature is None:
            return None
        return self.fee_per_signature * message.header.num_required_signatures

    async def submit(self, signed: "SignedTransaction") -> str:
        fee = await self.estimate_fee(signed.message) or 0

        # All-or-nothing: apply to a copy, commit only if every leg succeeds
        balances = dict(self.balances)
        if balances.get(signed.fee_payer, 0) < fee:
            raise SubmitError(f"Fee payer {signed.fee_payer} cannot cover fee {fee}")
        balances[signed.fee_payer] -= fee

        for ix in signed.transfers:
            source = ix.from_key.public_address
            if balances.get(source, 0) < ix.amount:
                raise SubmitError(
                    f"Insufficient funds in {source}: have {balances.get(source, 0)}, need {ix.amount}"
                )
            balances[source] -= ix.amount
            balances[ix.to_address] = balances.get(ix.to_address, 0) + ix.amount

        self.balances = balances
        self.submitted.append(signed)

        signature = signed.signature
        self.transactions[signature] = ParsedTransaction(
            signature=signature,
            fee=fee,
            transfers=[
                Transfer(ix.from_key.public_address, ix.to_address, ix.amount)
                for ix in signed.transfers
            ],
        )
        logger.info(f"[SIMULATED] Submitted {signature} ({len(signed.transfers)} transfers)")
        return signature

    async def simulate(self, signed: "SignedTransaction") -> SimulationResult:
        self.simulated.append(signed)
        return SimulationResult(
            failed=self.simulation_error is not None,
            units_consumed=self.simulation_units,
            error=self.simulation_error,
        )

    @asynccontextmanager
    async def subscribe_logs(
        self, address: str, commitment: str = CONFIRMED
    ) -> AsyncIterator[AsyncIterator[LedgerEvent]]:
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(address, []).append(queue)
        self.open_subscriptions += 1
        try:
            yield self._events(queue)
        finally:
            self._watchers[address].remove(queue)
            if not self._watchers[address]:
                del self._watchers[address]
            self.open_subscriptions -= 1

    @staticmethod
    async def _events(queue: asyncio.Queue) -> AsyncIterator[LedgerEvent]:
        while True:
            item = await queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def fetch_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        return self.transactions.get(signature)

    async def confirm_transaction(self, signature: str) -> None:
        if signature not in self.transactions:
            raise TransportError(f"Unknown transaction {signature}")
