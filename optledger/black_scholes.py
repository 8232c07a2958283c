"""
black_scholes.py - Fixed-Point Black-Scholes Premium

Computes the call premium stored on every option contract at creation.
The computation runs entirely in unsigned fixed point (see fixed_point.py),
so a premium is a reproducible function of its five inputs.

Input units:
- spot, strike: raw asset units (u64)
- time_to_expiry_seconds: seconds, converted to years with a 365-day year
- risk_free_rate, volatility: fractions scaled by SCALE (5% -> 50_000)

The result is approximate by construction (linear log, truncated exponential
series, linear CDF). A float reference pricer is provided for measuring how
far the stored premium is from the textbook value; it never feeds stored
state.
"""

import math
import numpy as np
from typing import Dict, Union
from scipy.special import erf as scipy_erf

from .fixed_point import (
    SCALE,
    checked_add, checked_sub, checked_div, mul_div, mul_fp,
    scale_in, scale_out, to_u64,
    ln_approx, exp_approx, sqrt_approx, normal_cdf_approx,
)
from .core import U64_MAX


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

# Constants
SECONDS_PER_YEAR = 31_536_000
SQRT_2 = math.sqrt(2.0)

# Discount factor variants for the strike leg.
# LEGACY evaluates the series at (1 - r*t), which is what every stored
# premium was computed with. RECIPROCAL evaluates 1 / e^(r*t) instead and
# changes premiums; switching is a breaking change for stored contracts.
DISCOUNT_LEGACY = "legacy"
DISCOUNT_RECIPROCAL = "reciprocal"
DISCOUNT_MODES = (DISCOUNT_LEGACY, DISCOUNT_RECIPROCAL)


def _validate_inputs(**inputs: int) -> None:
    """Validate raw pricing inputs: integers within the u64 range."""
    for name, value in inputs.items():
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"{name} must be int, got {type(value).__name__}")
        if value < 0 or value > U64_MAX:
            raise ValueError(f"{name} must be within [0, 2**64 - 1], got {value}")


def years_fp(time_to_expiry_seconds: int) -> int:
    """Time to expiry as fixed-point years (365-day year, truncated)."""
    return mul_div(time_to_expiry_seconds, SCALE, SECONDS_PER_YEAR)


def discount_factor(r_t_fp: int, discount: str = DISCOUNT_LEGACY) -> int:
    """Fixed-point discount factor applied to the strike for a given r*t."""
    if discount == DISCOUNT_LEGACY:
        return exp_approx(checked_sub(SCALE, r_t_fp))
    if discount == DISCOUNT_RECIPROCAL:
        return checked_div(SCALE * SCALE, exp_approx(r_t_fp))
    raise ValueError(f"discount must be one of {DISCOUNT_MODES}, got {discount!r}")


def price_option(
    spot: int,
    strike: int,
    time_to_expiry_seconds: int,
    risk_free_rate: int,
    volatility: int,
    discount: str = DISCOUNT_LEGACY,
) -> int:
    """
    Fixed-point Black-Scholes call premium.

    C = S*N(d1) - K*D*N(d2)
    d1 = (ln(S/K) + (r + sigma^2/2)*t) / (sigma*sqrt(t))
    d2 = d1 - sigma*sqrt(t)

    Returns 0 when sigma*sqrt(t) is zero (no volatility or no time left),
    whatever the other inputs, and when the strike leg exceeds the spot leg.

    Raises:
        ValueError: If an input is not an integer in the u64 range
        ArithmeticFault: If an intermediate leaves the unsigned 128-bit
            range: spot below strike (negative log), d1 below sigma*sqrt(t),
            r*t above 1 in legacy discounting, or a zero strike
    """
    _validate_inputs(
        spot=spot, strike=strike, time_to_expiry_seconds=time_to_expiry_seconds,
        risk_free_rate=risk_free_rate, volatility=volatility,
    )

    s_fp = scale_in(spot)
    k_fp = scale_in(strike)
    t_fp = years_fp(time_to_expiry_seconds)
    r_fp = risk_free_rate
    sigma_fp = volatility

    # Checked first so a degenerate option prices at zero whatever its moneyness
    sigma_sqrt_t = mul_fp(sigma_fp, sqrt_approx(t_fp))
    if sigma_sqrt_t == 0:
        return 0

    ln_s_div_k = ln_approx(mul_div(s_fp, SCALE, k_fp))
    half_sigma_squared = mul_fp(sigma_fp, sigma_fp) // 2
    drift = checked_add(r_fp, half_sigma_squared)
    numerator = checked_add(ln_s_div_k, mul_fp(drift, t_fp))

    d1 = mul_div(numerator, SCALE, sigma_sqrt_t)
    d2 = checked_sub(d1, sigma_sqrt_t)

    nd1 = normal_cdf_approx(d1)
    nd2 = normal_cdf_approx(d2)

    s_nd1 = mul_fp(s_fp, nd1)
    r_t = mul_fp(r_fp, t_fp)
    k_discounted = mul_fp(k_fp, discount_factor(r_t, discount))
    k_discounted_nd2 = mul_fp(k_discounted, nd2)

    c_fp = s_nd1 - k_discounted_nd2 if s_nd1 >= k_discounted_nd2 else 0
    return to_u64(scale_out(c_fp))


# ============================================================================
# FLOAT REFERENCE
# ============================================================================

def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


def reference_call_price(
    spot: int,
    strike: int,
    time_to_expiry_seconds: int,
    risk_free_rate: int,
    volatility: int,
) -> float:
    """
    Textbook Black-Scholes call in floating point, same input units as price_option.

    Degenerates to the discounted intrinsic value when sigma*sqrt(t) is zero.
    """
    _validate_inputs(
        spot=spot, strike=strike, time_to_expiry_seconds=time_to_expiry_seconds,
        risk_free_rate=risk_free_rate, volatility=volatility,
    )
    if strike == 0:
        raise ValueError("strike must be positive")
    s = float(spot)
    k = float(strike)
    t = time_to_expiry_seconds / SECONDS_PER_YEAR
    r = risk_free_rate / SCALE
    v = volatility / SCALE

    discounted_strike = k * np.exp(-r * t)
    vol_sqrt_t = v * np.sqrt(t)
    if vol_sqrt_t == 0.0:
        return float(max(0.0, s - discounted_strike))

    d1 = (np.log(s / k) + (r + 0.5 * v * v) * t) / vol_sqrt_t
    d2 = d1 - vol_sqrt_t
    return float(s * normal_cdf(d1) - discounted_strike * normal_cdf(d2))


def pricing_gap(
    spot: int,
    strike: int,
    time_to_expiry_seconds: int,
    risk_free_rate: int,
    volatility: int,
    discount: str = DISCOUNT_LEGACY,
) -> Dict[str, float]:
    """
    Compare the fixed-point premium with the float reference.

    Returns:
        Dict with 'fixed_point', 'reference', 'absolute_error' and
        'relative_error' (None when the reference price is zero).
    """
    fixed = price_option(
        spot, strike, time_to_expiry_seconds, risk_free_rate, volatility, discount
    )
    reference = reference_call_price(
        spot, strike, time_to_expiry_seconds, risk_free_rate, volatility
    )
    absolute_error = abs(fixed - reference)
    return {
        'fixed_point': fixed,
        'reference': reference,
        'absolute_error': absolute_error,
        'relative_error': absolute_error / reference if reference > 0 else None,
    }
