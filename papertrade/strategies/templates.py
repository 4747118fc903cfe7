"""
templates.py - Strategy Templates and Monte Carlo Evaluation

A fixed catalogue of multi-leg option structures, built relative to the
current spot (strikes rounded to whole currency units), and a Monte Carlo
evaluator that estimates each structure's P&L distribution at expiry.

Evaluation of one template:
    1. premium = sum(sign * qty * BSM price) at (S0, T)    (LONG +, SHORT -)
    2. S_T = S0 * exp((r - q - 0.5*sigma^2)*T + sigma*sqrt(T)*Z),  Z ~ N(0, 1)
    3. P&L = sum(sign * qty * intrinsic(S_T)) - premium
    4. report premium, mean (EV), median (sorted[n // 2]) and PoP (P&L > 0)

All figures are per share (multiply by the contract multiplier for dollars).

Determinism: a single numpy Generator seeded with `seed` draws n normals per
template in catalogue order, so (seed, n, S0, T, env) fixes every result.
"""

from __future__ import annotations
from dataclasses import dataclass
import math
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..core import Environment, Right, Side
from ..black_scholes import bsm_price, intrinsic_value
from ..options import LegDraft


DEFAULT_SEED = 1234
DEFAULT_PATHS = 3000


def round_strike(value: float) -> int:
    """Nearest whole strike, halves rounded up."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Template:
    """
    A named strategy shape.

    Attributes:
        key: Stable identifier (e.g. "iron_condor")
        label: Display name
        build: Callable mapping spot to the template's legs
    """
    key: str
    label: str
    build: Callable[[float], Tuple[LegDraft, ...]]


@dataclass(frozen=True, slots=True)
class EvalResult:
    key: str
    label: str
    premium: float
    ev: float
    median: float
    pop: float


def _leg(side: Side, right: Right, strike: float, quantity: int = 1) -> LegDraft:
    return LegDraft(side=side, right=right, quantity=quantity, strike=round_strike(strike))


LONG, SHORT = Side.LONG, Side.SHORT
CALL, PUT = Right.CALL, Right.PUT

TEMPLATES: Tuple[Template, ...] = (
    Template("long_call_atm", "Long Call (ATM)",
             lambda s: (_leg(LONG, CALL, s),)),
    Template("bull_call_spread", "Bull Call Spread",
             lambda s: (_leg(LONG, CALL, s * 0.98), _leg(SHORT, CALL, s * 1.05))),
    Template("long_put_atm", "Long Put (ATM)",
             lambda s: (_leg(LONG, PUT, s),)),
    Template("bear_put_spread", "Bear Put Spread",
             lambda s: (_leg(LONG, PUT, s * 1.02), _leg(SHORT, PUT, s * 0.95))),
    Template("long_straddle", "Long Straddle (ATM)",
             lambda s: (_leg(LONG, CALL, s), _leg(LONG, PUT, s))),
    Template("short_strangle", "Short Strangle (±10%)",
             lambda s: (_leg(SHORT, CALL, s * 1.10), _leg(SHORT, PUT, s * 0.90))),
    Template("iron_condor", "Iron Condor (±10/20%)",
             lambda s: (_leg(SHORT, CALL, s * 1.10), _leg(LONG, CALL, s * 1.20),
                        _leg(SHORT, PUT, s * 0.90), _leg(LONG, PUT, s * 0.80))),
)


def build_template(key: str, s0: float) -> Tuple[LegDraft, ...]:
    """Legs of the template named key at spot s0."""
    for template in TEMPLATES:
        if template.key == key:
            return template.build(s0)
    raise ValueError(f"Unknown strategy template: {key!r}")


def terminal_prices(
    s0: float,
    tau: float,
    env: Environment,
    n: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """n risk-neutral lognormal draws of the spot at tau."""
    tau = max(0.0, tau)
    z = rng.standard_normal(n)
    drift = (env.r - env.q - 0.5 * env.sigma * env.sigma) * tau
    diffusion = env.sigma * math.sqrt(tau)
    return s0 * np.exp(drift + diffusion * z)


def evaluate_template(
    template: Template,
    s0: float,
    tau: float,
    env: Environment,
    n: int,
    rng: np.random.Generator,
) -> EvalResult:
    legs = template.build(s0)
    premium = sum(
        leg.side.sign * leg.quantity
        * bsm_price(s0, float(leg.strike), env.r, env.q, env.sigma, tau, leg.right)
        for leg in legs
    )

    s_t = terminal_prices(s0, tau, env, n, rng)
    payoff = np.zeros(n)
    for leg in legs:
        payoff += leg.side.sign * leg.quantity * intrinsic_value(s_t, float(leg.strike), leg.right)
    pnl = np.sort(payoff - premium)

    return EvalResult(
        key=template.key,
        label=template.label,
        premium=float(premium),
        ev=float(pnl.mean()),
        median=float(pnl[n // 2]),
        pop=float(np.count_nonzero(pnl > 0)) / n,
    )


def evaluate_templates(
    s0: float,
    tau: float,
    env: Environment,
    seed: int = DEFAULT_SEED,
    n: int = DEFAULT_PATHS,
    templates: Optional[Sequence[Template]] = None,
) -> List[EvalResult]:
    """
    Evaluate every template and rank by expected value.

    Args:
        s0: Current spot
        tau: Years to expiry
        env: Market parameters (drift uses r - q)
        seed: Seed of the numpy Generator
        n: Draws per template
        templates: Catalogue to evaluate (default TEMPLATES)

    Returns:
        EvalResults sorted by ev, highest first
    """
    if n <= 0:
        raise ValueError(f"n must be positive, got {n}")
    if s0 <= 0:
        raise ValueError(f"s0 must be positive, got {s0}")

    rng = np.random.default_rng(seed)
    catalogue = TEMPLATES if templates is None else templates
    results = [evaluate_template(t, s0, tau, env, n, rng) for t in catalogue]
    results.sort(key=lambda r: r.ev, reverse=True)
    return results
