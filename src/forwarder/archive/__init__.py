"""Append-only archive of payment notifications."""

from forwarder.archive.database import ArchiveDatabase
from forwarder.archive.models import Base, TransactionRecord
from forwarder.archive.repository import ArchiveRepository

__all__ = ["ArchiveDatabase", "ArchiveRepository", "Base", "TransactionRecord"]
