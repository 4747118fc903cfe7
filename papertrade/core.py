"""
Core types and helpers for the paper-trading engine.

This module provides the foundational pieces shared by every component:
1. Decimal context and money helpers (to_decimal, round_cents, round_price)
2. Constants: contract multiplier, day count, rounding quanta
3. Enums: Side, Right, EntryType
4. Exceptions: PaperTradeError and the domain-specific error types
5. Environment: immutable market parameters for pricing calls
6. Deterministic id formatting

Money is always Decimal. Pricing numerics are float (see black_scholes.py).
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import math
from typing import Union


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Deterministic Decimal arithmetic for all money amounts.
#   - prec=50: headroom for intermediate products (strike * multiplier * qty)
#   - rounding=ROUND_HALF_EVEN: banker's rounding (unbiased)
#
_DECIMAL_CONTEXT = getcontext()
_DECIMAL_CONTEXT.prec = 50
_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Shares per listed option contract.
CONTRACT_MULTIPLIER = 100

# Calendar days per year used to turn day-index distances into tau.
DAYS_PER_YEAR = 365

# Floor applied to time-to-expiry before computing Greeks.
MIN_TAU = 1e-8

# Ledger amounts are written in cents.
CASH_QUANTUM = Decimal("0.01")

# Option premiums are carried at 8 places.
PRICE_QUANTUM = Decimal("0.00000001")

ZERO = Decimal("0")

Numberish = Union[Decimal, float, int, str]


# ============================================================================
# ENUMS
# ============================================================================

class Side(Enum):
    """Direction of an option leg."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        """+1 for LONG, -1 for SHORT."""
        return 1 if self is Side.LONG else -1


class Right(Enum):
    """Option right."""
    CALL = "CALL"
    PUT = "PUT"


class EntryType(Enum):
    """
    Closed set of ledger event types.

    Every cash- or position-affecting event maps to exactly one of these.
    """
    BUY_STOCK = "BUY_STOCK"
    SELL_STOCK = "SELL_STOCK"
    DIVIDEND = "DIVIDEND"
    ASSIGN_SHORT_CALL = "ASSIGN_SHORT_CALL"
    ASSIGN_SHORT_PUT = "ASSIGN_SHORT_PUT"
    EXERCISE_LONG_CALL = "EXERCISE_LONG_CALL"
    EXERCISE_LONG_PUT = "EXERCISE_LONG_PUT"
    RESERVE_CASH = "RESERVE_CASH"
    RELEASE_CASH = "RELEASE_CASH"
    RESERVE_SHARES = "RESERVE_SHARES"
    RELEASE_SHARES = "RELEASE_SHARES"
    BUY_OPTION = "BUY_OPTION"
    SELL_OPTION = "SELL_OPTION"
    CLOSE_LONG_OPTION = "CLOSE_LONG_OPTION"
    CLOSE_SHORT_OPTION = "CLOSE_SHORT_OPTION"


def parse_side(value) -> Side:
    """Accept a Side or its string name ("LONG"/"long")."""
    if isinstance(value, Side):
        return value
    try:
        return Side(str(value).upper())
    except ValueError:
        raise ValueError(f"side must be 'LONG' or 'SHORT', got {value!r}") from None


def parse_right(value) -> Right:
    """Accept a Right or its string name ("CALL"/"put")."""
    if isinstance(value, Right):
        return value
    try:
        return Right(str(value).upper())
    except ValueError:
        raise ValueError(f"right must be 'CALL' or 'PUT', got {value!r}") from None


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PaperTradeError(Exception):
    """Base exception for all engine errors."""
    pass


class InsufficientCash(PaperTradeError):
    """Raised when a debit or reservation exceeds the available cash."""
    pass


class InsufficientShares(PaperTradeError):
    """Raised when lots cannot supply the requested number of shares."""
    pass


class NoExistingExpiry(PaperTradeError):
    """Raised when adding legs to a position that has no expiry yet."""
    pass


class InvariantViolation(PaperTradeError):
    """
    Raised when system-triggered processing finds corrupted state.

    Not a user-facing error: it means a reservation flow upstream was wrong
    (e.g. assignment of a covered call whose shares were never reserved).
    """
    pass


# ============================================================================
# ENVIRONMENT
# ============================================================================

@dataclass(frozen=True, slots=True)
class Environment:
    """
    Market parameters for every pricing call.

    Attributes:
        r: Annualized risk-free rate (continuous compounding)
        q: Annualized dividend yield
        sigma: Annualized volatility
    """
    r: float = 0.0
    q: float = 0.0
    sigma: float = 0.2

    def __post_init__(self):
        for name in ("r", "q", "sigma"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")


# ============================================================================
# MONEY HELPERS
# ============================================================================

def to_decimal(value: Numberish) -> Decimal:
    """
    Convert a number to Decimal.

    Floats go through str() so that 2.35 becomes Decimal("2.35") rather than
    its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"amount must be finite, got {value}")
        return Decimal(str(value))
    return Decimal(value)


def round_cents(value: Numberish) -> Decimal:
    """Quantize an amount to cents using banker's rounding."""
    return to_decimal(value).quantize(CASH_QUANTUM, rounding=ROUND_HALF_EVEN)


def round_price(value: Numberish) -> Decimal:
    """Quantize a per-share premium to 8 places."""
    return to_decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)


def require_non_negative(amount: Decimal, what: str = "amount") -> Decimal:
    """Validate an amount that must be >= 0."""
    if amount < ZERO:
        raise ValueError(f"{what} must be non-negative, got {amount}")
    return amount


# ============================================================================
# IDS
# ============================================================================

def format_entry_id(sequence: int) -> str:
    return f"led:{sequence:08d}"


def format_lot_id(symbol: str, sequence: int) -> str:
    return f"lot:{symbol}:{sequence:06d}"


def format_leg_id(sequence: int) -> str:
    return f"leg:{sequence:06d}"
