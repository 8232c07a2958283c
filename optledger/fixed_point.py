"""
fixed_point.py - Unsigned Fixed-Point Arithmetic

Deterministic integer arithmetic for option pricing. Every value is an
unsigned integer scaled by SCALE (six decimal digits of fraction), so the
same inputs produce the same outputs on every interpreter and platform.

Python integers never overflow, so the width discipline of the pricing
model is enforced explicitly: raw inputs are 64-bit, every intermediate
must fit in 128 bits, and nothing may go negative. Any violation raises
ArithmeticFault instead of wrapping.

Provides:
- Scaling (scale_in, scale_out)
- Checked primitives (checked_add, checked_sub, checked_mul, checked_div, mul_div)
- Approximations (ln_approx, exp_approx, sqrt_approx, normal_cdf_approx)

The approximations are deliberately crude and reproduce the premiums the
model has always produced. Their valid domains are documented per function;
outside them the result is still deterministic but inaccurate.
"""

from typing import Final

from .core import ArithmeticFault, U64_MAX


SCALE: Final[int] = 1_000_000
U128_MAX: Final[int] = 2 ** 128 - 1

# sqrt(2 * pi) * SCALE, truncated
SQRT_2_PI: Final[int] = 2_506_628

# Upper end of the range where ln_approx stays within ~0.005 of ln (ratio 1.1)
LN_ACCURATE_MAX: Final[int] = 1_100_000

# |d| at and beyond which normal_cdf_approx saturates at 0 or SCALE (~1.2533)
CDF_LINEAR_LIMIT: Final[int] = SQRT_2_PI // 2


# ============================================================================
# CHECKED PRIMITIVES
# ============================================================================

def _require_unsigned(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def _u128(value: int, op: str) -> int:
    if value < 0:
        raise ArithmeticFault(f"{op}: underflow ({value})")
    if value > U128_MAX:
        raise ArithmeticFault(f"{op}: overflow beyond 128 bits")
    return value


def checked_add(a: int, b: int) -> int:
    return _u128(a + b, "add")


def checked_sub(a: int, b: int) -> int:
    """a - b, raising ArithmeticFault when b > a."""
    return _u128(a - b, "sub")


def checked_mul(a: int, b: int) -> int:
    return _u128(a * b, "mul")


def checked_div(a: int, b: int) -> int:
    """Truncating a // b, raising ArithmeticFault on a zero divisor."""
    if b == 0:
        raise ArithmeticFault("div: division by zero")
    return _u128(a // b, "div")


def mul_div(a: int, b: int, denominator: int) -> int:
    """a * b // denominator with the product checked against 128 bits."""
    return checked_div(checked_mul(a, b), denominator)


def mul_fp(a_fp: int, b_fp: int) -> int:
    """Product of two fixed-point values."""
    return mul_div(a_fp, b_fp, SCALE)


def div_fp(a_fp: int, b_fp: int) -> int:
    """Quotient of two fixed-point values."""
    return mul_div(a_fp, SCALE, b_fp)


# ============================================================================
# SCALING
# ============================================================================

def scale_in(x: int) -> int:
    """Lift a raw integer to fixed point."""
    _require_unsigned(x, "x")
    return checked_mul(x, SCALE)


def scale_out(x_fp: int) -> int:
    """Lower a fixed-point value to a raw integer, truncating the fraction."""
    _require_unsigned(x_fp, "x_fp")
    return x_fp // SCALE


def to_u64(x: int) -> int:
    """Narrow to the 64-bit output range."""
    if x < 0 or x > U64_MAX:
        raise ArithmeticFault(f"value {x} does not fit in 64 bits")
    return x


# ============================================================================
# APPROXIMATIONS
# ============================================================================

def ln_approx(x_fp: int) -> int:
    """
    First-order natural logarithm: ln(x) ~= x - 1.

    This is not a series expansion. It is exact only at x == SCALE and the
    absolute error grows quadratically away from it: within
    [SCALE, LN_ACCURATE_MAX] (ratio 1.0 to 1.1) the error is below 0.005,
    at ratio 2.0 the result is 1.0 instead of 0.693.

    Ratios below 1 have a negative logarithm, which an unsigned value cannot
    hold; they raise ArithmeticFault.
    """
    _require_unsigned(x_fp, "x_fp")
    return checked_sub(x_fp, SCALE)


def exp_approx(x_fp: int) -> int:
    """
    Exponential by the truncated series 1 + x + x^2/2! + x^3/3!.

    Each power is truncated to fixed point before dividing by the factorial.
    Accurate for small x (relative error ~x^4/24); large inputs are not
    guarded beyond the 128-bit check and simply lose accuracy.
    """
    _require_unsigned(x_fp, "x_fp")
    x2 = mul_fp(x_fp, x_fp)
    x3 = mul_fp(x2, x_fp)
    return checked_add(checked_add(SCALE, x_fp), checked_add(x2 // 2, x3 // 6))


def sqrt_approx(x_fp: int) -> int:
    """
    Fixed-point square root by the Babylonian method.

    Iterates y <- (x*SCALE/y + y) / 2 from y0 = (x + SCALE) / 2 and stops at
    the first step that does not strictly decrease. y0 is the arithmetic
    mean of x and 1, never below the root, so the sequence falls strictly
    until it reaches floor(sqrt(x * SCALE)) and the loop always terminates.

    Breaking change for inputs below 1.0 (x_fp < SCALE): earlier releases
    returned x unchanged there. Very short expiries then had
    sigma*sqrt(t) == 0 and priced at 0. They now get the real root, so
    premiums for t under one year differ from stored ones, and short-dated at-the-money terms (d1 < sigma*sqrt(t)) raise
    ArithmeticFault in price_option instead of pricing at 0.
    """
    _require_unsigned(x_fp, "x_fp")
    if x_fp == 0:
        return 0
    n = checked_mul(x_fp, SCALE)
    z = (x_fp + SCALE) // 2
    y = (n // z + z) // 2
    while y < z:
        z = y
        y = (n // z + z) // 2
    return z


def normal_cdf_approx(d_fp: int) -> int:
    """
    Linear standard normal CDF: N(d) ~= 0.5 + d / sqrt(2*pi), clamped to [0, 1].

    This is the tangent at d = 0, not an error-function expansion. It
    tracks N(d) to within ~0.01 for |d| <= 0.5 and saturates at
    |d| >= CDF_LINEAR_LIMIT, where the real CDF is still ~0.105 / ~0.895.

    Accepts signed d; the quotient truncates toward zero.
    """
    if not isinstance(d_fp, int) or isinstance(d_fp, bool):
        raise ValueError(f"d_fp must be int, got {type(d_fp).__name__}")
    slope = abs(d_fp) * SCALE // SQRT_2_PI
    nd = SCALE // 2 + slope if d_fp >= 0 else SCALE // 2 - slope
    if nd > SCALE:
        return SCALE
    if nd < 0:
        return 0
    return nd
