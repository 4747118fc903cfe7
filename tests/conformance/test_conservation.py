"""
Conservation Invariant Tests

After any sequence of operations, accepted or rejected:
- cash.total - initial == sum of ledger cash_delta
- reserved cash == cash reserved - cash released, per the ledger
- every stock position has total_shares == sum(lot.shares)
- 0 <= reserved_shares <= total_shares
- available and reserved cash never go negative
"""

from decimal import Decimal

from hypothesis import given, note, settings

from papertrade import EntryType, PaperTradeError, new_portfolio

from .ops import START, apply_op, day, operations


def assert_conserved(snapshot):
    ledger = snapshot.ledger
    cash = snapshot.cash

    assert cash.total - cash.initial == ledger.total_cash_delta()
    assert cash.available >= 0
    assert cash.reserved >= 0

    reserved = sum((e.details.amount for e in ledger.entries_of(EntryType.RESERVE_CASH)), Decimal(0))
    released = sum((e.details.amount for e in ledger.entries_of(EntryType.RELEASE_CASH)), Decimal(0))
    assert cash.reserved == reserved - released

    for position in snapshot.positions.values():
        assert position.total_shares == sum(lot.shares for lot in position.lots)
        assert 0 <= position.reserved_shares <= position.total_shares
        assert all(lot.shares > 0 for lot in position.lots)


class TestConservation:

    @given(ops=operations)
    @settings(max_examples=200, deadline=None)
    def test_cash_and_shares_conserved(self, ops):
        snapshot = new_portfolio(Decimal("100000"), timestamp=START)
        for i, op in enumerate(ops):
            note(f"day {i}: {op}")
            try:
                apply_op(snapshot, op, day(i))
            except PaperTradeError:
                pass
            assert_conserved(snapshot)

    @given(ops=operations)
    @settings(max_examples=100, deadline=None)
    def test_realized_comes_from_disposals_and_dividends(self, ops):
        """Only share disposals and dividends realize P&L among stock operations."""
        snapshot = new_portfolio(Decimal("100000"), timestamp=START)
        for i, op in enumerate(ops):
            try:
                apply_op(snapshot, op, day(i))
            except PaperTradeError:
                pass

        cost_realized = sum(
            (e.realized_pnl for e in snapshot.ledger
             if e.type in (EntryType.SELL_STOCK, EntryType.EXERCISE_LONG_PUT)),
            Decimal(0),
        )
        dividends = sum(
            (e.realized_pnl for e in snapshot.ledger.entries_of(EntryType.DIVIDEND)), Decimal(0)
        )
        assert snapshot.ledger.total_realized() == cost_realized + dividends
