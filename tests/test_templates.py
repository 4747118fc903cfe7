"""
test_templates.py - Unit tests for strategy templates and Monte Carlo evaluation
"""

import pytest
import math
import numpy as np
from decimal import Decimal

from papertrade import (
    TEMPLATES,
    Environment,
    Right,
    Side,
    build_template,
    evaluate_templates,
)
from papertrade.strategies import (
    Template,
    evaluate_template,
    round_strike,
    terminal_prices,
)


@pytest.fixture
def mc_env():
    return Environment(r=0.03, q=0.0, sigma=0.25)


class TestCatalogue:

    def test_keys(self):
        assert [t.key for t in TEMPLATES] == [
            "long_call_atm", "bull_call_spread", "long_put_atm", "bear_put_spread",
            "long_straddle", "short_strangle", "iron_condor",
        ]

    @pytest.mark.parametrize("value,strike", [(102.5, 103), (102.4, 102), (99.5, 100), (97.02, 97)])
    def test_round_strike(self, value, strike):
        assert round_strike(value) == strike

    def test_iron_condor(self):
        legs = build_template("iron_condor", 100.0)
        assert [(l.side, l.right, l.strike) for l in legs] == [
            (Side.SHORT, Right.CALL, Decimal("110")),
            (Side.LONG, Right.CALL, Decimal("120")),
            (Side.SHORT, Right.PUT, Decimal("90")),
            (Side.LONG, Right.PUT, Decimal("80")),
        ]

    def test_bull_call_spread_strikes(self):
        legs = build_template("bull_call_spread", 200.0)
        assert [l.strike for l in legs] == [Decimal("196"), Decimal("210")]

    def test_unknown_template(self):
        with pytest.raises(ValueError, match="Unknown strategy template"):
            build_template("butterfly", 100.0)


class TestTerminalPrices:

    def test_zero_tau_is_spot(self, mc_env):
        rng = np.random.default_rng(1)
        np.testing.assert_allclose(terminal_prices(100.0, 0.0, mc_env, 5, rng), 100.0)

    def test_risk_neutral_mean(self, mc_env):
        rng = np.random.default_rng(7)
        s_t = terminal_prices(100.0, 0.5, mc_env, 200_000, rng)
        assert s_t.mean() == pytest.approx(100.0 * math.exp(0.03 * 0.5), rel=5e-3)
        assert np.all(s_t > 0)


class TestEvaluate:

    def test_sorted_by_ev(self, mc_env):
        results = evaluate_templates(100.0, 30 / 365, mc_env, seed=1234, n=2000)
        assert len(results) == len(TEMPLATES)
        evs = [r.ev for r in results]
        assert evs == sorted(evs, reverse=True)

    def test_deterministic(self, mc_env):
        a = evaluate_templates(100.0, 30 / 365, mc_env, seed=42, n=1000)
        b = evaluate_templates(100.0, 30 / 365, mc_env, seed=42, n=1000)
        assert a == b

    def test_seed_matters(self, mc_env):
        a = evaluate_templates(100.0, 30 / 365, mc_env, seed=1, n=500)
        b = evaluate_templates(100.0, 30 / 365, mc_env, seed=2, n=500)
        assert [r.ev for r in a] != [r.ev for r in b]

    def test_premium_signs(self, mc_env):
        by_key = {r.key: r for r in evaluate_templates(100.0, 0.25, mc_env, n=500)}
        assert by_key["long_call_atm"].premium > 0
        assert by_key["short_strangle"].premium < 0
        assert by_key["long_straddle"].premium == pytest.approx(
            by_key["long_call_atm"].premium + by_key["long_put_atm"].premium)

    def test_pop_and_median_bounds(self, mc_env):
        for r in evaluate_templates(100.0, 0.25, mc_env, n=500):
            assert 0.0 <= r.pop <= 1.0
            assert math.isfinite(r.median)

    def test_long_call_loss_bounded_by_premium(self, mc_env):
        template = TEMPLATES[0]
        result = evaluate_template(template, 100.0, 0.25, mc_env, 1000, np.random.default_rng(3))
        assert result.median >= -result.premium - 1e-12

    def test_custom_catalogue(self, mc_env):
        only = (Template("short_put", "Short Put", lambda s: build_template("bear_put_spread", s)[1:]),)
        results = evaluate_templates(100.0, 0.25, mc_env, n=200, templates=only)
        assert [r.key for r in results] == ["short_put"]
        assert results[0].premium < 0

    @pytest.mark.parametrize("kwargs,match", [
        ({"n": 0}, "n must be positive"),
        ({"s0": 0.0}, "s0 must be positive"),
    ])
    def test_rejects_bad_input(self, mc_env, kwargs, match):
        args = {"s0": 100.0, "tau": 0.25, "env": mc_env, "n": 100}
        args.update(kwargs)
        with pytest.raises(ValueError, match=match):
            evaluate_templates(**args)

    def test_expired_is_intrinsic(self, mc_env):
        by_key = {r.key: r for r in evaluate_templates(100.0, 0.0, mc_env, n=50)}
        # ATM at expiry: zero premium, zero payoff
        assert by_key["long_call_atm"].premium == pytest.approx(0.0)
        assert by_key["long_call_atm"].ev == pytest.approx(0.0)
        assert by_key["long_call_atm"].pop == 0.0
