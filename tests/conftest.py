"""
conftest.py - Shared pytest fixtures for paper-trading tests

Provides common fixtures used across unit, functional and conformance tests:
- Market environments (with and without rates)
- Price histories (flat, and a factory for custom paths)
- Portfolios (funded, with stock)
- Trading sessions
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence

from papertrade import (
    Environment,
    PriceHistory,
    TradingSession,
    buy_shares,
    new_portfolio,
)


START = datetime(2025, 1, 1)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def history_from(prices: Sequence[float], start: datetime = START) -> PriceHistory:
    """Daily history starting at `start`, one price per calendar day."""
    dates = [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(len(prices))]
    return PriceHistory(dates, list(prices))


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def env():
    """r=3%, no dividends, 25% vol."""
    return Environment(r=0.03, q=0.0, sigma=0.25)


@pytest.fixture
def flat_env():
    """Zero rates, 25% vol."""
    return Environment(r=0.0, q=0.0, sigma=0.25)


@pytest.fixture
def make_history():
    return history_from


@pytest.fixture
def flat_history():
    """61 days at 100.0 starting 2025-01-01."""
    return history_from([100.0] * 61)


# =============================================================================
# PORTFOLIO FIXTURES
# =============================================================================

@pytest.fixture
def snapshot():
    """$100,000 portfolio at 2025-01-01."""
    return new_portfolio(Decimal("100000"), timestamp=START)


@pytest.fixture
def small_snapshot():
    """$1,000 portfolio at 2025-01-01."""
    return new_portfolio(Decimal("1000"), timestamp=START)


@pytest.fixture
def stock_snapshot(snapshot):
    """$100,000 portfolio holding 100 XYZ @ 97."""
    buy_shares(snapshot, "XYZ", 100, Decimal("97"), START)
    return snapshot


@pytest.fixture
def session(snapshot, flat_history, flat_env):
    """Session on XYZ over the flat history, starting day 0."""
    return TradingSession(snapshot, flat_history, flat_env, "XYZ")


@pytest.fixture
def stock_session(stock_snapshot, flat_history, flat_env):
    return TradingSession(stock_snapshot, flat_history, flat_env, "XYZ")
