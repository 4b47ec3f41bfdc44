"""Ephemeral key pair wrapper.

A KeyPair is owned by exactly one payment session. Once disposed its
secret is dropped and any attempt to sign with it fails.
"""

from typing import Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from forwarder.errors import InvalidKeyError, KeyStoreError

# ed25519 secret (32) + public key (32)
KEYPAIR_LENGTH = 64


class KeyPair:
    """Disposable wallet key pair.

    Attributes:
        public_address: Base58 wallet address (kept after disposal for logging)
    """

    def __init__(self, keypair: Keypair):
        self._keypair: Optional[Keypair] = keypair
        self.public_address = str(keypair.pubkey())

    @classmethod
    def generate(cls) -> "KeyPair":
        """Generate a fresh random key pair."""
        return cls(Keypair())

    @classmethod
    def from_private_key(cls, private_key: str) -> "KeyPair":
        """Parse a base58-encoded 64-byte secret.

        Raises:
            InvalidKeyError: If the material is not a valid key pair
        """
        try:
            raw = base58.b58decode(private_key.strip())
        except ValueError as e:
            raise InvalidKeyError(f"Key material is not base58: {e}") from e

        if len(raw) != KEYPAIR_LENGTH:
            raise InvalidKeyError(f"Key material has {len(raw)} bytes, expected {KEYPAIR_LENGTH}")

        try:
            return cls(Keypair.from_bytes(raw))
        except ValueError as e:
            raise InvalidKeyError(f"Key material does not form a key pair: {e}") from e

    @property
    def pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.public_address)

    @property
    def signer(self) -> Keypair:
        """The solders keypair used for signing."""
        if self._keypair is None:
            raise KeyStoreError(f"Key pair for {self.public_address} has been disposed")
        return self._keypair

    @property
    def private_key(self) -> str:
        """Base58-encoded secret."""
        return base58.b58encode(bytes(self.signer)).decode()

    @property
    def disposed(self) -> bool:
        return self._keypair is None

    def wipe(self) -> None:
        """Drop the in-memory secret."""
        self._keypair = None

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"KeyPair(address={self.public_address}, {state})"
