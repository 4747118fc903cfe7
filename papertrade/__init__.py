"""
papertrade - Options Paper-Trading Engine

Simulated trading of stock and multi-leg option positions against a daily
price history: BSM pricing, FIFO lots, cash with collateral reservations,
an append-only ledger, expiry settlement, a margin estimate and a Monte
Carlo strategy evaluator.

Usage:
    from papertrade import (
        Environment, PriceHistory, new_portfolio, TradingSession,
        StrategyDraft, LegDraft,
    )

    history = PriceHistory.from_pairs([("2024-01-02", 100.0), ("2024-01-03", 101.5)])
    snapshot = new_portfolio(50_000)
    session = TradingSession(snapshot, history, Environment(0.03, 0.0, 0.25), "XYZ")
    session.open(StrategyDraft(30, [LegDraft("SHORT", "PUT", 1, 95)]))
    session.run(30)

    print(snapshot.ledger.export_csv())
"""

# Core types
from .core import (
    CONTRACT_MULTIPLIER,
    DAYS_PER_YEAR,
    Side,
    Right,
    EntryType,
    Environment,
    PaperTradeError,
    InsufficientCash,
    InsufficientShares,
    NoExistingExpiry,
    InvariantViolation,
    parse_side,
    parse_right,
    round_cents,
)

# Black-Scholes pricing and Greeks
from .black_scholes import (
    Greeks,
    bsm_price,
    bsm_greeks,
    option_price,
    intrinsic_value,
)

# Cash, lots, ledger
from .cash import CashAccount
from .lots import StockLot, StockPosition, FifoConsumption, add_lot, consume_fifo
from .ledger import (
    Ledger,
    LedgerEntry,
    StockTrade,
    OptionTrade,
    Assignment,
    Exercise,
    CashReservation,
    ShareReservation,
    DividendPayment,
    CSV_COLUMNS,
)

# Prices
from .pricing_source import PriceHistory

# Options
from .options import (
    LegDraft,
    StrategyDraft,
    OptionLeg,
    OpenPosition,
    LegClose,
    Adjusted,
    PositionValue,
    GreeksSeries,
    open_strategy,
    add_legs,
    close_selected,
    close_all,
    roll_to,
    value_now,
    greeks_now,
    greeks_time_series,
    pnl_time_series,
    payoff_at_expiry,
    pnl_at_tau,
    preview_draft_premium,
    payoff_curve_for_draft,
    cash_change_open,
    cash_change_close,
)

# Portfolio
from .portfolio import (
    PortfolioSnapshot,
    UnrealizedEntry,
    new_portfolio,
    buy_shares,
    sell_shares,
    pay_dividend,
    reserve_cash_for_short_put,
    release_reserved_cash,
    reserve_shares_for_short_call,
    release_reserved_shares,
    exercise_long_call,
    exercise_long_put,
    compute_unrealized_pnl,
    cash_total,
    realized_pnl,
    stock_value,
)

# Settlement
from .expiry import (
    SettlementOutcome,
    LegSettlement,
    SettlementReport,
    assign_short_put,
    assign_short_call,
    settle_expired,
)

# Margin
from .margin import margin_requirement, margin_utilization

# Strategy evaluation
from .strategies import (
    Template,
    EvalResult,
    TEMPLATES,
    build_template,
    evaluate_templates,
)

# Day loop
from .lifecycle import TradingSession

__all__ = [
    # Core
    'CONTRACT_MULTIPLIER', 'DAYS_PER_YEAR',
    'Side', 'Right', 'EntryType', 'Environment',
    'PaperTradeError', 'InsufficientCash', 'InsufficientShares',
    'NoExistingExpiry', 'InvariantViolation',
    'parse_side', 'parse_right', 'round_cents',
    # Black-Scholes
    'Greeks', 'bsm_price', 'bsm_greeks', 'option_price', 'intrinsic_value',
    # Cash, lots, ledger
    'CashAccount',
    'StockLot', 'StockPosition', 'FifoConsumption', 'add_lot', 'consume_fifo',
    'Ledger', 'LedgerEntry', 'StockTrade', 'OptionTrade', 'Assignment', 'Exercise',
    'CashReservation', 'ShareReservation', 'DividendPayment', 'CSV_COLUMNS',
    # Prices
    'PriceHistory',
    # Options
    'LegDraft', 'StrategyDraft', 'OptionLeg', 'OpenPosition', 'LegClose', 'Adjusted',
    'PositionValue', 'GreeksSeries',
    'open_strategy', 'add_legs', 'close_selected', 'close_all', 'roll_to',
    'value_now', 'greeks_now', 'greeks_time_series', 'pnl_time_series',
    'payoff_at_expiry', 'pnl_at_tau', 'preview_draft_premium', 'payoff_curve_for_draft',
    'cash_change_open', 'cash_change_close',
    # Portfolio
    'PortfolioSnapshot', 'UnrealizedEntry', 'new_portfolio',
    'buy_shares', 'sell_shares', 'pay_dividend',
    'reserve_cash_for_short_put', 'release_reserved_cash',
    'reserve_shares_for_short_call', 'release_reserved_shares',
    'exercise_long_call', 'exercise_long_put',
    'compute_unrealized_pnl', 'cash_total', 'realized_pnl', 'stock_value',
    # Settlement
    'SettlementOutcome', 'LegSettlement', 'SettlementReport',
    'assign_short_put', 'assign_short_call', 'settle_expired',
    # Margin
    'margin_requirement', 'margin_utilization',
    # Strategy evaluation
    'Template', 'EvalResult', 'TEMPLATES', 'build_template', 'evaluate_templates',
    # Day loop
    'TradingSession',
]

__version__ = '1.0.0'
