"""
lifecycle.py - Trading Session (day loop and option order integration)

TradingSession drives one underlying of a PortfolioSnapshot through a
price history, one simulated day at a time.

Order flow (open / add / close / close_all / roll):
    1. price the order and check cash, free shares and ledger time order
       for the whole order (a rejected order changes nothing)
    2. apply the position bookkeeping (options.py)
    3. move cash and collateral, and append the ledger entries:
       BUY_OPTION / SELL_OPTION on open, CLOSE_LONG_OPTION /
       CLOSE_SHORT_OPTION on close, RESERVE_* / RELEASE_* for collateral

A roll is one order: a single check covers both halves, and booking
puts every credit before any debit. Drafts expiring past the last day
of the history are rejected with ValueError.

Collateral: every short leg opened here is secured at open. Short puts
reserve strike * multiplier * qty of cash; short calls reserve
multiplier * qty shares. Closing contracts releases their share of the
collateral; settlement releases the rest.

Execution order each step():
    1. advance the day index by one (clamped to the history)
    2. settle the position if its expiry has been reached
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from .core import (
    DAYS_PER_YEAR, ZERO,
    EntryType, Environment, InsufficientCash, InsufficientShares, NoExistingExpiry, PaperTradeError,
    Right, Side, round_cents,
)
from .black_scholes import Greeks
from .ledger import LedgerEntry, OptionTrade
from .options import (
    Adjusted, LegClose, LegDraft, OpenPosition, OptionLeg, PositionValue, StrategyDraft,
    add_legs, close_selected, open_strategy,
    expiry_offset, leg_now_price, greeks_now, value_now,
    open_cash_delta, close_cash_delta,
)
from .expiry import SettlementReport, settle_expired
from .margin import margin_requirement
from .portfolio import (
    PortfolioSnapshot,
    reserve_cash_for_short_put, reserve_shares_for_short_call,
    release_reserved_cash, release_reserved_shares,
    _record,
)
from .pricing_source import PriceHistory


@dataclass(frozen=True, slots=True)
class _Requirement:
    """Cash and free shares an order needs, net of what it brings in."""
    cash: Decimal = ZERO
    shares: int = 0

    def __add__(self, other: "_Requirement") -> "_Requirement":
        return _Requirement(self.cash + other.cash, self.shares + other.shares)


class TradingSession:
    """
    Day-by-day driver for one underlying.

    Attributes:
        snapshot: Portfolio being traded (mutated in place)
        history: Price series of the underlying
        env: Market parameters used for every mark
        symbol: Underlying symbol
        index: Current day index into history
        position: The symbol's OpenPosition inside snapshot
        settlements: Reports of every settlement that did something

    Not thread-safe.

    Example:
        session = TradingSession(new_portfolio(50_000), history, Environment(0.03, 0.0, 0.25), "XYZ")
        session.open(StrategyDraft(30, [LegDraft("SHORT", "PUT", 1, 95)]))
        session.run(30)     # settles on day 30
    """

    def __init__(
        self,
        snapshot: PortfolioSnapshot,
        history: PriceHistory,
        env: Environment,
        symbol: str,
        index: int = 0,
        verbose: bool = False,
    ):
        self.snapshot = snapshot
        self.history = history
        self.env = env
        self.symbol = symbol
        self.index = history.clamp(index)
        self.verbose = verbose
        self.position: OpenPosition = snapshot.option_position(symbol)
        self.settlements: List[SettlementReport] = []

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def spot(self) -> float:
        return self.history.spot(self.index)

    @property
    def timestamp(self) -> datetime:
        return self.history.timestamp(self.index)

    @property
    def multiplier(self) -> int:
        return self.position.multiplier

    def value(self) -> PositionValue:
        return value_now(self.position, self.env, self.index, self.history)

    def greeks(self) -> Greeks:
        return greeks_now(self.position, self.env, self.index, self.history)

    def margin(self) -> Decimal:
        return margin_requirement(self.position, self.spot)

    def equity(self) -> Decimal:
        """Cash + stock at spot + option marks."""
        stock = self.snapshot.positions.get(self.symbol)
        shares = stock.total_shares if stock is not None else 0
        spot = Decimal(str(self.spot))
        return round_cents(self.snapshot.cash.total + spot * shares + self.value().value)

    # ========================================================================
    # ORDER CHECKS
    # ========================================================================

    def _open_requirement(self, drafts: Sequence[LegDraft], tau: float) -> _Requirement:
        """Collateral plus premium paid, minus premium received."""
        s = self.spot
        cash = ZERO
        shares = 0
        for d in drafts:
            price = leg_now_price(d, self.env, s, tau)
            premium = round_cents(d.quantity * price * self.multiplier)
            cash += premium if d.side is Side.LONG else -premium
            if d.side is Side.SHORT:
                if d.right is Right.PUT:
                    cash += round_cents(d.strike * self.multiplier * d.quantity)
                else:
                    shares += d.quantity * self.multiplier
        return _Requirement(cash, shares)

    @staticmethod
    def _collateral_share(leg: OptionLeg, qty: int) -> Tuple[Decimal, int]:
        """Collateral attributable to closing qty of the leg's contracts."""
        if qty >= leg.quantity:
            return leg.reserved_cash, leg.reserved_shares
        cash = round_cents(leg.reserved_cash * qty / leg.quantity)
        shares = leg.reserved_shares * qty // leg.quantity
        return cash, shares

    def _close_requirement(self, close_map: Dict[str, int]) -> _Requirement:
        """Premium paid to buy back shorts, minus proceeds and released collateral."""
        s = self.spot
        tau = self.position.tau_at(self.index)
        cash = ZERO
        shares = 0
        for leg, qty, released_cash, released_shares in self._releases(close_map):
            price = leg_now_price(leg, self.env, s, tau)
            premium = round_cents(qty * price * self.multiplier)
            cash += premium if leg.side is Side.SHORT else -premium
            cash -= released_cash
            shares -= released_shares
        return _Requirement(cash, shares)

    def _draft_tau(self, draft: StrategyDraft) -> float:
        """Years to the draft's expiry, which must fall inside the history."""
        expiry_index = self.index + expiry_offset(draft.expiry_days)
        if expiry_index > self.history.last_index:
            raise ValueError(
                f"{self.symbol}: expiry day {expiry_index} is past the end of the "
                f"history (last day {self.history.last_index})"
            )
        return (expiry_index - self.index) / DAYS_PER_YEAR

    def _check(self, need: _Requirement) -> datetime:
        ts = self.snapshot.ledger.check_order(self.timestamp)
        if self.snapshot.cash.available < need.cash:
            raise InsufficientCash(
                f"Insufficient cash: need {need.cash:.2f}, have {self.snapshot.cash.available:.2f}"
            )
        stock = self.snapshot.positions.get(self.symbol)
        free = stock.free_shares if stock is not None else 0
        if need.shares > 0 and free < need.shares:
            raise InsufficientShares(
                f"{self.symbol}: not enough shares to cover short calls: "
                f"need {need.shares}, have {free}"
            )
        return ts

    def _rejected(self, action: str, exc: PaperTradeError) -> None:
        if self.verbose:
            print(f"✗ REJECTED {action} {self.symbol} @ day {self.index}: {exc}")

    # ========================================================================
    # BOOKING
    # ========================================================================

    def _move_cash(self, delta: Decimal) -> None:
        if delta >= 0:
            self.snapshot.cash.credit(delta)
        else:
            self.snapshot.cash.debit(-delta)

    def _book_premiums(self, legs: Sequence[OptionLeg], ts: datetime) -> List[LedgerEntry]:
        entries = []
        for leg in legs:
            delta = open_cash_delta(leg, self.multiplier)
            self._move_cash(delta)
            entry_type = EntryType.BUY_OPTION if leg.side is Side.LONG else EntryType.SELL_OPTION
            entries.append(_record(
                self.snapshot, entry_type, self.symbol,
                OptionTrade(side=leg.side, right=leg.right, strike=leg.strike,
                            qty=leg.quantity, price=leg.entry_price, leg_id=leg.id),
                cash_delta=delta, timestamp=ts,
            ))
        return entries

    def _book_collateral(self, legs: Sequence[OptionLeg], ts: datetime) -> List[LedgerEntry]:
        entries = []
        for leg in legs:
            if leg.side is not Side.SHORT:
                continue
            if leg.right is Right.PUT:
                entry = reserve_cash_for_short_put(
                    self.snapshot, self.symbol, leg.strike, leg.quantity, ts, self.multiplier)
                leg.reserved_cash = entry.details.amount
            else:
                entry = reserve_shares_for_short_call(
                    self.snapshot, self.symbol, leg.quantity, ts, self.multiplier)
                leg.reserved_shares = entry.details.shares
            entries.append(entry)
        return entries

    def _book_open(self, legs: Sequence[OptionLeg], ts: datetime) -> List[LedgerEntry]:
        shorts = [leg for leg in legs if leg.side is Side.SHORT]
        longs = [leg for leg in legs if leg.side is Side.LONG]
        # Premium received first so it can fund debits and collateral.
        return (self._book_premiums(shorts, ts) + self._book_premiums(longs, ts)
                + self._book_collateral(legs, ts))

    def _releases(self, close_map: Dict[str, int]) -> List[Tuple[OptionLeg, int, Decimal, int]]:
        """(leg, contracts, cash, shares) to free per leg, on pre-close quantities."""
        out = []
        for leg in self.position.legs:
            qty = max(0, min(leg.quantity, int(close_map.get(leg.id, 0))))
            if qty > 0:
                out.append((leg, qty, *self._collateral_share(leg, qty)))
        return out

    def _book_releases(
        self,
        releases: Sequence[Tuple[OptionLeg, int, Decimal, int]],
        ts: datetime,
    ) -> List[LedgerEntry]:
        entries = []
        for leg, _, released_cash, released_shares in releases:
            if released_cash > 0:
                entries.append(release_reserved_cash(self.snapshot, self.symbol, released_cash, ts))
                leg.reserved_cash -= released_cash
            if released_shares > 0:
                entries.append(release_reserved_shares(
                    self.snapshot, self.symbol, released_shares // self.multiplier, ts, self.multiplier))
                leg.reserved_shares -= released_shares
        return entries

    def _book_fills(self, fills: Sequence[LegClose], ts: datetime) -> List[LedgerEntry]:
        entries = []
        # Long proceeds before short buybacks.
        for fill in sorted(fills, key=lambda f: f.side is Side.SHORT):
            delta = close_cash_delta(fill, self.multiplier)
            self._move_cash(delta)
            entry_type = (EntryType.CLOSE_LONG_OPTION if fill.side is Side.LONG
                          else EntryType.CLOSE_SHORT_OPTION)
            entries.append(_record(
                self.snapshot, entry_type, self.symbol,
                OptionTrade(side=fill.side, right=fill.right, strike=fill.strike,
                            qty=fill.quantity, price=fill.price, leg_id=fill.leg_id),
                cash_delta=delta, realized_pnl=fill.realized, timestamp=ts,
            ))
        return entries

    def _book_close(
        self,
        releases: Sequence[Tuple[OptionLeg, int, Decimal, int]],
        fills: Sequence[LegClose],
        ts: datetime,
    ) -> List[LedgerEntry]:
        return self._book_releases(releases, ts) + self._book_fills(fills, ts)

    def _book_roll(
        self,
        releases: Sequence[Tuple[OptionLeg, int, Decimal, int]],
        fills: Sequence[LegClose],
        legs: Sequence[OptionLeg],
        ts: datetime,
    ) -> List[LedgerEntry]:
        """
        Book a roll as one order: every credit before any debit.

        Released collateral and new short premiums fund the buyback of the
        old shorts, the new long premiums and the new collateral, so the
        running available balance never dips below the checked total.
        """
        shorts = [leg for leg in legs if leg.side is Side.SHORT]
        longs = [leg for leg in legs if leg.side is Side.LONG]
        return (self._book_releases(releases, ts)
                + self._book_premiums(shorts, ts)
                + self._book_fills(fills, ts)
                + self._book_premiums(longs, ts)
                + self._book_collateral(legs, ts))

    # ========================================================================
    # ORDERS
    # ========================================================================

    def open(self, draft: StrategyDraft) -> List[LedgerEntry]:
        """
        Open a strategy on the (empty) position and book premiums and collateral.

        Raises:
            InsufficientCash: If premiums and put collateral exceed available cash
            InsufficientShares: If free shares cannot cover the short calls
            ValueError: If the position is already open, or if the expiry
                falls past the end of the history
        """
        if not draft.legs:
            return []
        if not self.position.is_empty:
            raise ValueError(f"{self.symbol}: position already open; use add or roll")
        tau = self._draft_tau(draft)
        try:
            ts = self._check(self._open_requirement(draft.legs, tau))
        except PaperTradeError as exc:
            self._rejected("open", exc)
            raise

        open_strategy(self.position, self.env, self.index, self.history, draft)
        return self._book_open(self.position.legs, ts)

    def add(self, legs: Sequence[LegDraft]) -> List[LedgerEntry]:
        """
        Add legs at the position's expiry.

        Raises:
            NoExistingExpiry: If the position is empty
            InsufficientCash / InsufficientShares: As for open()
        """
        if not legs:
            return []
        try:
            if self.position.expiry_index is None:
                raise NoExistingExpiry(f"{self.symbol}: no existing expiry to add legs to")
            ts = self._check(self._open_requirement(legs, self.position.tau_at(self.index)))
        except PaperTradeError as exc:
            self._rejected("add", exc)
            raise

        added = add_legs(self.position, self.env, self.index, self.history, legs)
        return self._book_open(added, ts)

    def close(self, close_map: Dict[str, int]) -> Adjusted:
        """
        Close selected contracts at the current mark.

        Requested quantities above a leg's open contracts are clamped; the
        returned Adjusted carries the applied quantities.

        Raises:
            InsufficientCash: If buying back shorts costs more than the cash
                available after proceeds and released collateral
        """
        if self.position.is_empty:
            return Adjusted(self.position)
        try:
            ts = self._check(self._close_requirement(close_map))
        except PaperTradeError as exc:
            self._rejected("close", exc)
            raise

        releases = self._releases(close_map)
        result = close_selected(self.position, self.env, self.index, self.history, close_map)
        self._book_close(releases, result.fills, ts)
        return result

    def close_all(self) -> Adjusted:
        return self.close({leg.id: leg.quantity for leg in self.position.legs})

    def roll(self, draft: StrategyDraft) -> Adjusted:
        """
        Close everything and open draft as one order.

        The cash and shares the whole roll needs are checked once; the
        buyback of old shorts may be funded by the new legs' premium.

        Returns:
            The Adjusted result of the closing half

        Raises:
            InsufficientCash / InsufficientShares: If the roll as a whole
                cannot be afforded (nothing is closed or opened)
            ValueError: If the new expiry falls past the end of the history
        """
        close_map = {leg.id: leg.quantity for leg in self.position.legs}
        tau = self._draft_tau(draft) if draft.legs else 0.0
        try:
            ts = self._check(self._close_requirement(close_map) + self._open_requirement(draft.legs, tau))
        except PaperTradeError as exc:
            self._rejected("roll", exc)
            raise

        releases = self._releases(close_map)
        closed = close_selected(self.position, self.env, self.index, self.history, close_map)
        open_strategy(self.position, self.env, self.index, self.history, draft)
        self._book_roll(releases, closed.fills, self.position.legs, ts)
        return closed

    # ========================================================================
    # DAY LOOP
    # ========================================================================

    def settle(self) -> SettlementReport:
        """Settle the position if expired at the current index."""
        try:
            report = settle_expired(
                self.snapshot, self.position, self.env, self.index, self.history, self.timestamp)
        except PaperTradeError as exc:
            if self.verbose:
                print(f"✗ SETTLEMENT FAILED {self.symbol} @ day {self.index}: {exc}")
            raise
        if report.settled:
            self.settlements.append(report)
            if self.verbose:
                print(f"✓ SETTLED {self.symbol} @ day {self.index}: "
                      f"{len(report.legs)} legs, realized {report.realized:+.2f}")
        return report

    def step(self) -> SettlementReport:
        """Advance one day (clamped to the history) and settle."""
        self.index = self.history.clamp(self.index + 1)
        return self.settle()

    def advance_to(self, index: int) -> List[SettlementReport]:
        """Step until index (clamped) is reached; returns reports that settled."""
        target = self.history.clamp(index)
        reports = []
        while self.index < target:
            report = self.step()
            if report.settled:
                reports.append(report)
        return reports

    def run(self, days: int) -> List[SettlementReport]:
        """Step `days` times (stops moving at the end of the history)."""
        reports = []
        for _ in range(days):
            report = self.step()
            if report.settled:
                reports.append(report)
        return reports
