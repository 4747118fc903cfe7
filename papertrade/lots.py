"""
lots.py - FIFO Stock Lot Accounting

Per-symbol queue of purchase lots:
- add_lot() appends a lot and recomputes aggregates
- consume_fifo() removes shares from the oldest lots first and reports the
  cost basis consumed, lot by lot, for audit
- recalc_position() recomputes total_shares / avg_cost from the lots

Aggregates are always recomputed from scratch (O(lots)); they are never
adjusted incrementally.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Tuple

from .core import ZERO, InsufficientShares, Numberish, to_decimal


@dataclass(slots=True)
class StockLot:
    """
    One purchase lot.

    Only `shares` changes after creation (decremented by FIFO consumption).
    """
    lot_id: str
    symbol: str
    shares: int
    cost_basis: Decimal
    opened_at: datetime

    def __post_init__(self):
        if self.shares <= 0:
            raise ValueError(f"lot shares must be positive, got {self.shares}")
        self.cost_basis = to_decimal(self.cost_basis)


@dataclass(slots=True)
class StockPosition:
    """
    Holdings of one symbol.

    Invariants (after every recalc):
        total_shares == sum(lot.shares)
        avg_cost == sum(lot.shares * lot.cost_basis) / total_shares  (0 if flat)
        reserved_shares <= total_shares
    """
    symbol: str
    lots: List[StockLot] = field(default_factory=list)
    total_shares: int = 0
    avg_cost: Decimal = ZERO
    reserved_shares: int = 0

    @property
    def free_shares(self) -> int:
        """Shares not earmarked for covered calls."""
        return self.total_shares - self.reserved_shares


@dataclass(frozen=True, slots=True)
class LotConsumption:
    """Audit record of shares taken from one lot."""
    lot_id: str
    qty: int
    lot_cost_basis: Decimal


@dataclass(frozen=True, slots=True)
class FifoConsumption:
    """Result of consume_fifo()."""
    cost_consumed: Decimal
    breakdown: Tuple[LotConsumption, ...]


def recalc_position(position: StockPosition) -> StockPosition:
    """Recompute total_shares and avg_cost from the lots."""
    total_shares = sum(lot.shares for lot in position.lots)
    total_cost = sum((lot.shares * lot.cost_basis for lot in position.lots), ZERO)
    position.total_shares = total_shares
    position.avg_cost = total_cost / total_shares if total_shares > 0 else ZERO
    return position


def free_shares(position: StockPosition) -> int:
    return position.total_shares - position.reserved_shares


def add_lot(
    position: StockPosition,
    lot_id: str,
    shares: int,
    cost_basis: Numberish,
    opened_at: datetime,
) -> StockLot:
    """Append a new lot and recompute aggregates."""
    lot = StockLot(
        lot_id=lot_id,
        symbol=position.symbol,
        shares=shares,
        cost_basis=to_decimal(cost_basis),
        opened_at=opened_at,
    )
    position.lots.append(lot)
    recalc_position(position)
    return lot


def consume_fifo(position: StockPosition, shares_to_remove: int) -> FifoConsumption:
    """
    Remove shares from the oldest lots first.

    Lots are ordered by opened_at (stable, so same-day lots keep insertion
    order). The position is left untouched if the lots cannot cover the
    request.

    Args:
        position: Position to consume from
        shares_to_remove: Number of shares (> 0)

    Returns:
        FifoConsumption with total cost basis consumed and per-lot breakdown

    Raises:
        InsufficientShares: If sum(lot.shares) < shares_to_remove
    """
    if shares_to_remove <= 0:
        raise ValueError(f"shares_to_remove must be positive, got {shares_to_remove}")

    held = sum(lot.shares for lot in position.lots)
    if held < shares_to_remove:
        raise InsufficientShares(
            f"{position.symbol}: not enough shares to deliver: "
            f"need {shares_to_remove}, have {held}"
        )

    position.lots.sort(key=lambda lot: lot.opened_at)

    remaining = shares_to_remove
    cost_consumed = ZERO
    breakdown: List[LotConsumption] = []

    for lot in position.lots:
        if remaining <= 0:
            break
        take = min(lot.shares, remaining)
        cost_consumed += take * lot.cost_basis
        breakdown.append(LotConsumption(lot.lot_id, take, lot.cost_basis))
        lot.shares -= take
        remaining -= take

    position.lots = [lot for lot in position.lots if lot.shares > 0]
    recalc_position(position)
    return FifoConsumption(cost_consumed=cost_consumed, breakdown=tuple(breakdown))
