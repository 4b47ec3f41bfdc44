"""Conversion between base ledger units (lamports) and display units (SOL).

All amounts inside the forwarder are integer lamports. SOL values only
appear at the edges: request parsing, webhook payloads and archive rows.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9

# Ledger balances and transfer amounts are unsigned 64-bit
MAX_LAMPORTS = 2**64 - 1

_LAMPORT = Decimal(1).scaleb(-SOL_DECIMALS)


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL, exact to 9 decimal places."""
    return (Decimal(int(lamports)) / LAMPORTS_PER_SOL).quantize(_LAMPORT)


def sol_to_lamports(amount: Union[Decimal, str, int, float]) -> int:
    """Convert a SOL amount to lamports.

    Digits finer than one lamport are truncated. Floats are converted via
    their string form so that 0.1 means 0.1 and not its binary expansion.

    Raises:
        ValueError: If the amount is not a finite number
    """
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid SOL amount: {amount!r}") from e

    if not value.is_finite():
        raise ValueError(f"Invalid SOL amount: {amount!r}")

    return int((value * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))


def format_sol(lamports: int) -> str:
    """Human-readable SOL amount for log lines."""
    return f"{lamports_to_sol(lamports)} SOL"
