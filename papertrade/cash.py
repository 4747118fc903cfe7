"""
cash.py - Cash Account with Reservations

A single-currency cash balance split into:
- available: spendable cash
- reserved: collateral earmarked for cash-secured short puts

Every debit checks `available` first, so `available` never goes negative.
Releases are tolerant (release at most what is reserved) to absorb rounding
at settlement boundaries.

This object only moves cash. Recording what happened is the ledger's job
(see portfolio.py for the operations that do both).
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import (
    ZERO, InsufficientCash, Numberish,
    to_decimal, require_non_negative,
)


@dataclass(slots=True)
class CashAccount:
    """
    Cash balance with an available and a reserved sub-balance.

    Attributes:
        currency: Currency code (e.g. "USD")
        available: Spendable cash
        reserved: Collateral held for cash-secured puts
        initial: Starting cash, kept for equity/return reporting

    Not thread-safe. Callers serialize mutations.
    """
    currency: str = "USD"
    available: Decimal = ZERO
    reserved: Decimal = ZERO
    initial: Decimal = ZERO

    def __post_init__(self):
        self.available = require_non_negative(to_decimal(self.available), "available")
        self.reserved = require_non_negative(to_decimal(self.reserved), "reserved")
        self.initial = to_decimal(self.initial)

    @property
    def total(self) -> Decimal:
        """available + reserved."""
        return self.available + self.reserved

    def debit(self, amount: Numberish) -> Decimal:
        """
        Remove cash from the available balance.

        Raises:
            InsufficientCash: If available < amount
        """
        amount = require_non_negative(to_decimal(amount))
        if self.available < amount:
            raise InsufficientCash(
                f"Insufficient cash: need {amount:.2f}, have {self.available:.2f}"
            )
        self.available -= amount
        return amount

    def credit(self, amount: Numberish) -> Decimal:
        """Add cash to the available balance (no credit limits in simulation)."""
        amount = require_non_negative(to_decimal(amount))
        self.available += amount
        return amount

    def reserve(self, amount: Numberish) -> Decimal:
        """
        Move cash from available to reserved.

        Raises:
            InsufficientCash: If available < amount
        """
        amount = require_non_negative(to_decimal(amount))
        if self.available < amount:
            raise InsufficientCash(
                f"Insufficient cash to reserve: need {amount:.2f}, have {self.available:.2f}"
            )
        self.available -= amount
        self.reserved += amount
        return amount

    def release(self, amount: Numberish) -> Decimal:
        """
        Move up to `amount` from reserved back to available.

        Returns:
            The amount actually released: min(amount, reserved)
        """
        amount = require_non_negative(to_decimal(amount))
        released = min(amount, self.reserved)
        self.reserved -= released
        self.available += released
        return released
