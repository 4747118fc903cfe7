"""
Rounding Conformance Tests

INVARIANT: Money is booked in cents, half-even, one rounding per entry.

    ∀ entry: |entry.cash_delta - raw_amount| <= 0.005
             entry.cash_delta has exactly two decimal places
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from papertrade import (
    EntryType,
    LegDraft,
    StrategyDraft,
    TradingSession,
    Environment,
    buy_shares,
    new_portfolio,
    pay_dividend,
    round_cents,
    sell_shares,
)

from .ops import START, day, history, prices, shares


HALF_CENT = Decimal("0.005")


def in_cents(value: Decimal) -> bool:
    return value.as_tuple().exponent == -2


class TestStockRounding:

    @given(qty=shares, buy=prices, sell=prices)
    @settings(max_examples=200, deadline=None)
    def test_trade_amounts(self, qty, buy, sell):
        snapshot = new_portfolio(Decimal("1000000"), timestamp=START)
        bought = buy_shares(snapshot, "XYZ", qty, buy, day(0))
        sold = sell_shares(snapshot, "XYZ", qty, sell, day(1))

        assert abs(bought.cash_delta + qty * buy) <= HALF_CENT
        assert abs(sold.cash_delta - qty * sell) <= HALF_CENT
        # realized is rounded once from the unrounded lot cost
        assert abs(sold.realized_pnl - (sold.cash_delta + bought.cash_delta)) <= Decimal("0.01")
        for entry in (bought, sold):
            assert in_cents(entry.cash_delta)
            assert in_cents(entry.realized_pnl)

    @given(qty=shares, per_share=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("3"), places=4))
    @settings(max_examples=100, deadline=None)
    def test_dividend_amount(self, qty, per_share):
        snapshot = new_portfolio(Decimal("1000000"), timestamp=START)
        buy_shares(snapshot, "XYZ", qty, Decimal("10"), day(0))
        entry = pay_dividend(snapshot, "XYZ", per_share, day(1))
        assert entry.cash_delta == round_cents(qty * per_share)
        assert abs(entry.cash_delta - qty * per_share) <= HALF_CENT

    def test_half_even(self):
        snapshot = new_portfolio(Decimal("1000"), timestamp=START)
        # 1 * 0.125 -> 0.12, 1 * 0.135 -> 0.14
        assert buy_shares(snapshot, "XYZ", 1, Decimal("0.125"), day(0)).cash_delta == Decimal("-0.12")
        assert buy_shares(snapshot, "XYZ", 1, Decimal("0.135"), day(0)).cash_delta == Decimal("-0.14")


class TestOptionRounding:

    @given(
        strike=st.integers(min_value=70, max_value=130),
        qty=st.integers(min_value=1, max_value=5),
        sigma=st.floats(min_value=0.05, max_value=1.0),
        days=st.integers(min_value=1, max_value=60),
    )
    @settings(max_examples=100, deadline=None)
    def test_premium_amounts(self, strike, qty, sigma, days):
        snapshot = new_portfolio(Decimal("1000000"), timestamp=START)
        session = TradingSession(snapshot, history([100.0] * 61), Environment(0.02, 0.0, sigma), "XYZ")
        session.open(StrategyDraft(days, [
            LegDraft("LONG", "CALL", qty, strike),
            LegDraft("SHORT", "PUT", qty, strike),
        ]))

        legs = {leg.id: leg for leg in session.position.legs}
        for entry in snapshot.ledger:
            assert in_cents(entry.cash_delta)
            if entry.type in (EntryType.BUY_OPTION, EntryType.SELL_OPTION):
                leg = legs[entry.details.leg_id]
                raw = -leg.sign * leg.entry_price * leg.quantity * 100
                assert abs(entry.cash_delta - raw) <= HALF_CENT
        assert snapshot.cash.total - snapshot.cash.initial == snapshot.ledger.total_cash_delta()
