"""Disposable wallet key management."""

from forwarder.keystore.base import KeyPair
from forwarder.keystore.store import FileKeyStore

__all__ = ["FileKeyStore", "KeyPair"]
