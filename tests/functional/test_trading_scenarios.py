"""
test_trading_scenarios.py - End-to-end paper-trading scenarios

Tests complete strategy lifecycles through TradingSession:
- The wheel: cash-secured put assigned, covered call assigned
- Template strategies opened at spot and settled at expiry
- Iron condor opened, marked and closed early
- Stock events (dividends, exercise) mixed with option trading
- CSV export of a full history
"""

import pytest
from datetime import datetime
from decimal import Decimal

from papertrade import (
    CSV_COLUMNS,
    EntryType,
    InsufficientShares,
    LegDraft,
    SettlementOutcome,
    StrategyDraft,
    TradingSession,
    build_template,
    exercise_long_put,
    margin_requirement,
    new_portfolio,
    pay_dividend,
)


def conserved(snapshot):
    return snapshot.cash.total - snapshot.cash.initial == snapshot.ledger.total_cash_delta()


class TestWheel:
    """Sell a put, take assignment, sell a call against the shares, get called away."""

    @pytest.fixture
    def wheel(self, make_history, flat_env):
        prices = [100.0] * 61
        prices[30] = 90.0
        prices[60] = 110.0
        snapshot = new_portfolio(Decimal("100000"), timestamp=datetime(2025, 1, 1))
        return TradingSession(snapshot, make_history(prices), flat_env, "XYZ")

    def test_full_cycle(self, wheel):
        snapshot = wheel.snapshot

        p1 = wheel.open(StrategyDraft(30, [LegDraft("SHORT", "PUT", 1, 95)]))[0].cash_delta
        assert snapshot.cash.reserved == Decimal("9500.00")

        put_reports = wheel.run(30)
        assert len(put_reports) == 1
        assert put_reports[0].legs[0].outcome is SettlementOutcome.ASSIGNED
        assert put_reports[0].legs[0].realized == p1 - Decimal("500.00")

        position = snapshot.positions["XYZ"]
        assert position.total_shares == 100
        assert position.avg_cost == Decimal("95")
        assert snapshot.cash.reserved == Decimal("0")
        assert snapshot.cash.available == Decimal("90500.00") + p1

        p2 = wheel.open(StrategyDraft(30, [LegDraft("SHORT", "CALL", 1, 100)]))[0].cash_delta
        assert position.reserved_shares == 100
        assert wheel.position.expiry_index == 60

        call_reports = wheel.run(30)
        assert len(call_reports) == 1
        assert call_reports[0].index == 60
        assert call_reports[0].legs[0].outcome is SettlementOutcome.ASSIGNED

        assert position.total_shares == 0
        assert position.reserved_shares == 0
        assert snapshot.cash.reserved == Decimal("0")
        assert snapshot.cash.available == Decimal("100500.00") + p1 + p2
        assert conserved(snapshot)

    def test_realized_breakdown(self, wheel):
        snapshot = wheel.snapshot
        p1 = wheel.open(StrategyDraft(30, [LegDraft("SHORT", "PUT", 1, 95)]))[0].cash_delta
        wheel.run(30)
        p2 = wheel.open(StrategyDraft(30, [LegDraft("SHORT", "CALL", 1, 100)]))[0].cash_delta
        wheel.run(30)

        by_type = {}
        for e in snapshot.ledger:
            by_type[e.type] = by_type.get(e.type, Decimal("0")) + e.realized_pnl
        assert by_type[EntryType.ASSIGN_SHORT_PUT] == p1 - Decimal("500.00")
        assert by_type[EntryType.SELL_STOCK] == Decimal("500.00")
        assert by_type[EntryType.ASSIGN_SHORT_CALL] == p2 - Decimal("1000.00")
        # intrinsic is realized on the option leg while lots are booked at strike
        assert snapshot.ledger.total_realized() == p1 + p2 - Decimal("1000.00")

    def test_entry_sequence_and_csv(self, wheel):
        snapshot = wheel.snapshot
        wheel.open(StrategyDraft(30, [LegDraft("SHORT", "PUT", 1, 95)]))
        wheel.run(30)
        wheel.open(StrategyDraft(30, [LegDraft("SHORT", "CALL", 1, 100)]))
        wheel.run(30)

        assert [e.type for e in snapshot.ledger] == [
            EntryType.SELL_OPTION, EntryType.RESERVE_CASH,
            EntryType.RELEASE_CASH, EntryType.BUY_STOCK, EntryType.ASSIGN_SHORT_PUT,
            EntryType.SELL_OPTION, EntryType.RESERVE_SHARES,
            EntryType.RELEASE_SHARES, EntryType.SELL_STOCK, EntryType.ASSIGN_SHORT_CALL,
        ]

        lines = snapshot.ledger.export_csv().splitlines()
        assert lines[0] == ",".join(CSV_COLUMNS)
        assert len(lines) == 11
        assert lines[4] == "led:00000004,2025-01-31T00:00:00,BUY_STOCK,XYZ,100,95.00,,-9500.00,0.00"
        assert lines[9] == "led:00000009,2025-03-02T00:00:00,SELL_STOCK,XYZ,100,100.00,,10000.00,500.00"


class TestTemplateStrategies:

    def test_bull_call_spread_to_expiry(self, make_history, flat_env, stock_snapshot):
        prices = [100.0] * 31
        prices[30] = 103.0
        session = TradingSession(stock_snapshot, make_history(prices), flat_env, "XYZ")
        cash_before = stock_snapshot.cash.total

        legs = build_template("bull_call_spread", session.spot)
        assert [l.strike for l in legs] == [Decimal("98"), Decimal("105")]
        session.open(StrategyDraft(30, legs))
        # the short 105 call is covered by the 100 shares held
        assert stock_snapshot.positions["XYZ"].reserved_shares == 100

        report = session.run(30)[0]
        outcomes = {leg.strike: leg.outcome for leg in report.legs}
        assert outcomes == {
            Decimal("98"): SettlementOutcome.CASH_SETTLED,
            Decimal("105"): SettlementOutcome.EXPIRED_WORTHLESS,
        }
        assert stock_snapshot.positions["XYZ"].total_shares == 100
        assert stock_snapshot.positions["XYZ"].reserved_shares == 0
        assert stock_snapshot.ledger.total_realized() == stock_snapshot.cash.total - cash_before

    def test_short_call_template_needs_shares(self, session):
        legs = build_template("short_strangle", session.spot)
        with pytest.raises(InsufficientShares, match="cover short calls"):
            session.open(StrategyDraft(30, legs))
        assert session.position.is_empty

    def test_long_straddle_cash_settled(self, make_history, flat_env, snapshot):
        prices = [100.0] * 21
        prices[20] = 88.0
        session = TradingSession(snapshot, make_history(prices), flat_env, "XYZ")
        entries = session.open(StrategyDraft(20, build_template("long_straddle", 100.0)))
        debit = sum(e.cash_delta for e in entries)

        report = session.run(20)[0]
        assert all(leg.outcome is SettlementOutcome.CASH_SETTLED for leg in report.legs)
        # put pays 12 per share, call pays nothing
        assert snapshot.cash.total == Decimal("100000.00") + debit + Decimal("1200.00")
        assert conserved(snapshot)


class TestIronCondor:

    def test_open_mark_close(self, stock_session, stock_snapshot):
        legs = build_template("iron_condor", stock_session.spot)
        entries = stock_session.open(StrategyDraft(45, legs))
        credit = sum(e.cash_delta for e in entries)
        assert credit > 0

        put_collateral = Decimal("9000.00")
        assert stock_snapshot.cash.reserved == put_collateral
        assert stock_session.margin() == margin_requirement(stock_session.position, 100.0)
        assert stock_session.margin() > 0

        stock_session.run(10)
        assert stock_session.value().value < 0
        result = stock_session.close_all()

        assert len(result.fills) == 4
        assert stock_session.position.is_empty
        assert stock_snapshot.cash.reserved == Decimal("0")
        assert stock_snapshot.positions["XYZ"].reserved_shares == 0
        assert stock_snapshot.ledger.total_realized() == result.realized
        assert conserved(stock_snapshot)


class TestStockAndOptions:

    def test_dividend_while_covered(self, stock_session, stock_snapshot):
        stock_session.open(StrategyDraft(30, [LegDraft("SHORT", "CALL", 1, 110)]))
        stock_session.run(10)
        entry = pay_dividend(stock_snapshot, "XYZ", Decimal("0.50"), stock_session.timestamp)
        # reserved shares still earn the dividend
        assert entry.cash_delta == Decimal("50.00")

        stock_session.run(20)
        assert stock_snapshot.positions["XYZ"].total_shares == 100
        assert stock_snapshot.positions["XYZ"].reserved_shares == 0
        assert conserved(stock_snapshot)

    def test_reserved_shares_cannot_be_delivered(self, stock_session, stock_snapshot):
        stock_session.open(StrategyDraft(30, [LegDraft("SHORT", "CALL", 1, 110)]))
        with pytest.raises(InsufficientShares, match="insufficient shares"):
            exercise_long_put(stock_snapshot, "XYZ", 100, 1, stock_session.timestamp)
        assert stock_snapshot.positions["XYZ"].total_shares == 100
