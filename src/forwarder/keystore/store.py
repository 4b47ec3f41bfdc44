"""File-backed key store for disposable wallets.

Each key lives in its own slot file named after the wallet address:
``<wallet_dir>/<address>.dat``. When a master key is configured the slot
holds a Fernet token instead of the raw base58 secret.
"""

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from forwarder.crypto import InvalidToken, KeyEncryptor, is_encrypted
from forwarder.errors import InvalidKeyError, KeyPersistError, NonZeroBalanceError
from forwarder.keystore.base import KeyPair

if TYPE_CHECKING:
    from forwarder.config import Settings
    from forwarder.gateway.base import LedgerGateway

logger = logging.getLogger(__name__)

SLOT_SUFFIX = ".dat"


class FileKeyStore:
    """Generates, persists, loads and disposes ephemeral key pairs.

    Usage:
        store = FileKeyStore("./wal", gateway=gateway)
        pair = store.create()
        store.persist(pair)
        ...
        await store.dispose(pair)  # only once the wallet is empty
    """

    def __init__(
        self,
        wallet_dir: Union[str, Path],
        gateway: Optional["LedgerGateway"] = None,
        encryptor: Optional[KeyEncryptor] = None,
    ):
        """Initialize key store.

        Args:
            wallet_dir: Directory holding key slots
            gateway: Ledger gateway used to re-check balances before disposal
            encryptor: Optional encryptor for slots at rest
        """
        self.wallet_dir = Path(wallet_dir)
        self.gateway = gateway
        self.encryptor = encryptor

    @classmethod
    def from_settings(
        cls, settings: "Settings", gateway: Optional["LedgerGateway"] = None
    ) -> "FileKeyStore":
        encryptor = KeyEncryptor(settings.master_key) if settings.master_key else None
        return cls(settings.wallet_dir, gateway=gateway, encryptor=encryptor)

    def create(self) -> KeyPair:
        """Generate a fresh key pair (no ledger interaction)."""
        return KeyPair.generate()

    def slot_path(self, address: str) -> Path:
        return self.wallet_dir / f"{address}{SLOT_SUFFIX}"

    def exists(self, address: str) -> bool:
        return self.slot_path(address).exists()

    def stored_addresses(self) -> list[str]:
        """Addresses of every key slot currently on disk."""
        if not self.wallet_dir.is_dir():
            return []
        return sorted(p.stem for p in self.wallet_dir.glob(f"*{SLOT_SUFFIX}"))

    def persist(self, pair: KeyPair) -> Path:
        """Write the key pair's secret to its slot.

        Returns:
            Path of the slot

        Raises:
            KeyPersistError: If the slot could not be written
        """
        path = self.slot_path(pair.public_address)
        payload = pair.private_key
        if self.encryptor is not None:
            payload = self.encryptor.encrypt(payload)

        try:
            self.wallet_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError as e:
            raise KeyPersistError(f"Failed to write key slot {path}: {e}") from e

        logger.debug(f"Persisted key slot for {pair.public_address}")
        return path

    def load(self, location: Union[str, Path]) -> KeyPair:
        """Load a key pair from a slot.

        Raises:
            KeyPersistError: If the slot cannot be read
            InvalidKeyError: If the slot does not hold a valid key for its address
        """
        path = Path(location)
        try:
            payload = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise KeyPersistError(f"Failed to read key slot {path}: {e}") from e

        if is_encrypted(payload):
            if self.encryptor is None:
                raise InvalidKeyError(f"Key slot {path} is encrypted but no master key is set")
            try:
                payload = self.encryptor.decrypt(payload)
            except InvalidToken as e:
                raise InvalidKeyError(f"Key slot {path} could not be decrypted") from e

        pair = KeyPair.from_private_key(payload)
        if path.suffix == SLOT_SUFFIX and path.stem != pair.public_address:
            raise InvalidKeyError(
                f"Key slot {path.name} holds the key for {pair.public_address}"
            )
        return pair

    def load_address(self, address: str) -> KeyPair:
        return self.load(self.slot_path(address))

    async def dispose(self, pair: KeyPair) -> None:
        """Remove the key's slot and wipe it from memory.

        The wallet balance is re-checked first when a gateway is attached.
        Disposing an already disposed pair, or one whose slot is gone, is
        a no-op.

        Raises:
            NonZeroBalanceError: If the wallet still holds funds
            KeyPersistError: If the slot exists but cannot be removed
        """
        if pair.disposed:
            return

        if self.gateway is not None:
            balance = await self.gateway.balance_of(pair.public_address)
            if balance > 0:
                raise NonZeroBalanceError(pair.public_address, balance)

        path = self.slot_path(pair.public_address)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise KeyPersistError(f"Failed to remove key slot {path}: {e}") from e

        pair.wipe()
        logger.info(f"Disposed wallet {pair.public_address}")
