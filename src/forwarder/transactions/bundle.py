"""Transfer bundle value types."""

from dataclasses import dataclass, field
from typing import Optional

from solders.message import Message
from solders.transaction import Transaction

from forwarder.keystore.base import KeyPair


@dataclass(frozen=True)
class TransferInstruction:
    """Move ``amount`` lamports from ``from_key`` to ``to_address``."""

    from_key: KeyPair
    to_address: str
    amount: int


@dataclass
class TransactionBundle:
    """Ordered transfers submitted as one atomic transaction.

    The fee payer defaults to the source of the first transfer.
    """

    instructions: list[TransferInstruction] = field(default_factory=list)
    fee_payer: Optional[KeyPair] = None

    def add(self, from_key: KeyPair, to_address: str, amount: int) -> "TransactionBundle":
        self.instructions.append(TransferInstruction(from_key, to_address, amount))
        return self

    @property
    def payer(self) -> KeyPair:
        if self.fee_payer is not None:
            return self.fee_payer
        if not self.instructions:
            raise ValueError("Empty bundle has no fee payer")
        return self.instructions[0].from_key

    def signers(self) -> list[KeyPair]:
        """Distinct signing keys, fee payer first."""
        seen: dict[str, KeyPair] = {}
        for pair in [self.payer] + [ix.from_key for ix in self.instructions]:
            seen.setdefault(pair.public_address, pair)
        return list(seen.values())

    def __len__(self) -> int:
        return len(self.instructions)


@dataclass
class SignedTransaction:
    """A fully signed transaction together with the transfers it carries."""

    transaction: Transaction
    transfers: list[TransferInstruction]
    fee_payer: str

    @property
    def message(self) -> Message:
        return self.transaction.message

    @property
    def signature(self) -> str:
        return str(self.transaction.signatures[0])

    @property
    def size(self) -> int:
        return len(bytes(self.transaction))

    @property
    def total_amount(self) -> int:
        return sum(ix.amount for ix in self.transfers)
