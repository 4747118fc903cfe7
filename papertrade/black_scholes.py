"""
black_scholes.py - Black-Scholes-Merton Option Pricing and Greeks

European option formulas with a continuous risk-free rate r and dividend
yield q. Time is in years (tau); volatility is annualized.

Provides:
- Normal distribution functions (CDF via scipy's erf, PDF)
- d1 / d2
- Option prices (bsm_price) with the degenerate-input policy:
  sigma <= 0 or tau <= 0 prices at intrinsic value
- First/second-order Greeks (bsm_greeks): delta, gamma, vega, theta
- Decimal interface (option_price) for the accounting side

Conventions:
- vega is per 1.00 of volatility (not per 1%)
- theta is per year; time decay of a long option is negative
- Greeks floor tau at MIN_TAU, so zero-DTE values are informative only

Price functions accept numpy arrays for the spot to sample whole curves in
one call.
"""

import math
import numpy as np
from dataclasses import dataclass
from decimal import Decimal
from typing import Union
from scipy.special import erf as scipy_erf

from .core import MIN_TAU, Right, parse_right, round_price


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

# Constants
SQRT_2 = math.sqrt(2.0)
INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


# ============================================================================
# NORMAL DISTRIBUTION FUNCTIONS
# ============================================================================

def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


def normal_pdf(x: Numeric) -> Numeric:
    """Standard normal probability density function."""
    x = np.asarray(x)
    return INV_SQRT_2PI * np.exp(-0.5 * x * x)


def _scalar(value):
    """Unwrap 0-d arrays so scalar inputs give plain floats back."""
    if isinstance(value, np.ndarray) and value.ndim == 0:
        return float(value)
    return value


# ============================================================================
# D1 AND D2
# ============================================================================

def d1(s: Numeric, k: float, r: float, q: float, sigma: float, tau: float) -> Numeric:
    """
    d1 = (ln(S/K) + (r - q + 0.5*σ²)*τ) / (σ*√τ)
    """
    s = np.asarray(s, dtype=float)
    return _scalar((np.log(s / k) + (r - q + 0.5 * sigma * sigma) * tau) / (sigma * math.sqrt(tau)))


def d2(s: Numeric, k: float, r: float, q: float, sigma: float, tau: float) -> Numeric:
    """d2 = d1 - σ*√τ"""
    return d1(s, k, r, q, sigma, tau) - sigma * math.sqrt(tau)


# ============================================================================
# OPTION PRICES
# ============================================================================

def intrinsic_value(s: Numeric, k: float, right) -> Numeric:
    """Payoff per share if exercised now: max(0, S-K) for calls, max(0, K-S) for puts."""
    right = parse_right(right)
    s = np.asarray(s, dtype=float)
    if right is Right.CALL:
        return _scalar(np.maximum(0.0, s - k))
    return _scalar(np.maximum(0.0, k - s))


def bsm_price(
    s: Numeric,
    k: float,
    r: float,
    q: float,
    sigma: float,
    tau: float,
    right,
) -> Numeric:
    """
    Black-Scholes-Merton price per share.

    C = S*e^(-qτ)*N(d1) - K*e^(-rτ)*N(d2)
    P = K*e^(-rτ)*N(-d2) - S*e^(-qτ)*N(-d1)

    Degenerate inputs (sigma <= 0 or tau <= 0) return intrinsic value.
    """
    right = parse_right(right)
    k = float(k)
    if sigma <= 0 or tau <= 0:
        return intrinsic_value(s, k, right)

    s = np.asarray(s, dtype=float)
    d1_val = d1(s, k, r, q, sigma, tau)
    d2_val = d1_val - sigma * math.sqrt(tau)
    disc_q = math.exp(-q * tau)
    disc_r = math.exp(-r * tau)

    if right is Right.CALL:
        price = s * disc_q * normal_cdf(d1_val) - k * disc_r * normal_cdf(d2_val)
    else:
        price = k * disc_r * normal_cdf(-d2_val) - s * disc_q * normal_cdf(-d1_val)
    return _scalar(price)


def option_price(s, k, env, tau: float, right) -> Decimal:
    """BSM price with Decimal interface, quantized to 8 places."""
    result = bsm_price(float(s), float(k), env.r, env.q, env.sigma, max(0.0, tau), right)
    return round_price(float(result))


# ============================================================================
# GREEKS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Greeks:
    """
    Option sensitivities.

    Attributes:
        delta: ∂V/∂S
        gamma: ∂²V/∂S²
        vega: ∂V/∂σ per 1.00 volatility
        theta: ∂V/∂t per year (negative for long time decay)
    """
    delta: float = 0.0
    gamma: float = 0.0
    vega: float = 0.0
    theta: float = 0.0

    def __add__(self, other: "Greeks") -> "Greeks":
        return Greeks(
            self.delta + other.delta,
            self.gamma + other.gamma,
            self.vega + other.vega,
            self.theta + other.theta,
        )

    def scaled(self, factor: float) -> "Greeks":
        return Greeks(
            self.delta * factor,
            self.gamma * factor,
            self.vega * factor,
            self.theta * factor,
        )


def bsm_greeks(
    s: float,
    k: float,
    r: float,
    q: float,
    sigma: float,
    tau: float,
    right,
) -> Greeks:
    """
    First-order Greeks plus gamma for one option (per share).

    delta_call = e^(-qτ)*N(d1)            delta_put = -e^(-qτ)*N(-d1)
    gamma      = e^(-qτ)*n(d1) / (S*σ*√τ)
    vega       = S*e^(-qτ)*n(d1)*√τ
    theta_call = -S*e^(-qτ)*n(d1)*σ/(2√τ) - r*K*e^(-rτ)*N(d2) + q*S*e^(-qτ)*N(d1)
    theta_put  = -S*e^(-qτ)*n(d1)*σ/(2√τ) + r*K*e^(-rτ)*N(-d2) - q*S*e^(-qτ)*N(-d1)

    tau is floored at MIN_TAU. With sigma <= 0 the option is its intrinsic
    value, so only delta survives (1/-1 in the money, 0 otherwise).
    """
    right = parse_right(right)
    s = float(s)
    k = float(k)
    if sigma <= 0:
        if right is Right.CALL:
            return Greeks(delta=1.0 if s > k else 0.0)
        return Greeks(delta=-1.0 if s < k else 0.0)
    tau = max(MIN_TAU, tau)
    sqrt_t = math.sqrt(tau)

    d1_val = d1(s, k, r, q, sigma, tau)
    d2_val = d1_val - sigma * sqrt_t
    disc_q = math.exp(-q * tau)
    disc_r = math.exp(-r * tau)
    pdf_d1 = float(normal_pdf(d1_val))

    gamma = disc_q * pdf_d1 / (s * sigma * sqrt_t)
    vega = s * disc_q * pdf_d1 * sqrt_t
    decay = -(s * disc_q * pdf_d1 * sigma) / (2.0 * sqrt_t)

    if right is Right.CALL:
        delta = disc_q * float(normal_cdf(d1_val))
        theta = decay - r * k * disc_r * float(normal_cdf(d2_val)) + q * s * disc_q * float(normal_cdf(d1_val))
    else:
        delta = -disc_q * float(normal_cdf(-d1_val))
        theta = decay + r * k * disc_r * float(normal_cdf(-d2_val)) - q * s * disc_q * float(normal_cdf(-d1_val))

    return Greeks(delta=delta, gamma=gamma, vega=vega, theta=theta)


if __name__ == "__main__":
    S, K, T = 100.0, 100.0, 0.5
    r, q, sigma = 0.03, 0.0, 0.25

    call_price = bsm_price(S, K, r, q, sigma, T, Right.CALL)
    put_price = bsm_price(S, K, r, q, sigma, T, Right.PUT)

    print(f"Call Price: {call_price}")
    print(f"Put Price: {put_price}")
    print(f"Call Greeks: {bsm_greeks(S, K, r, q, sigma, T, Right.CALL)}")
