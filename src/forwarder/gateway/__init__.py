"""Ledger gateway: the core's only view of the ledger."""

from forwarder.gateway.base import (
    LedgerEvent,
    LedgerGateway,
    ParsedTransaction,
    SimulatedLedger,
    SimulationResult,
    Transfer,
)
from forwarder.gateway.factory import get_gateway

__all__ = [
    "LedgerEvent",
    "LedgerGateway",
    "ParsedTransaction",
    "SimulatedLedger",
    "SimulationResult",
    "Transfer",
    "get_gateway",
]
