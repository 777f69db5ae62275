# ====================================================================== #
# bidpool/utils/fixed_point.py
# 18-decimal fixed-point ratios and 128-bit unsigned amounts.
#
#   amount × ratio → floor, exact intermediate
#   ratio  × ratio → truncated to 18 fractional digits
#   n / d          → truncated to 18 fractional digits
#
# Nothing here saturates: leaving the representable range raises
# ArithmeticOverflowError.
# ====================================================================== #

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_FLOOR, Context, Decimal
from fractions import Fraction
from typing import Union

from bidpool.errors import ArithmeticOverflowError

MAX_AMOUNT: int = 2**128 - 1
RATIO_PLACES: int = 18
_QUANT: Decimal = Decimal(1).scaleb(-RATIO_PLACES)
_ATOMICS: int = 10**RATIO_PLACES

# 2**128 has 39 digits; products of two such values with 18 places stay well below 100.
_CTX = Context(prec=100, rounding=ROUND_DOWN)

MAX_RATIO: Decimal = _CTX.divide(Decimal(MAX_AMOUNT), Decimal(_ATOMICS)).quantize(_QUANT, context=_CTX)
ZERO: Decimal = Decimal(0).quantize(_QUANT)
ONE: Decimal = Decimal(1).quantize(_QUANT)

RatioLike = Union[Decimal, str, int, Fraction]


def _check_amount(v: int) -> int:
    if v < 0 or v > MAX_AMOUNT:
        raise ArithmeticOverflowError(f"amount out of range: {v}")
    return v


def _check_ratio(r: Decimal) -> Decimal:
    if r < 0 or r > MAX_RATIO:
        raise ArithmeticOverflowError(f"ratio out of range: {r}")
    return r


def to_amount(value) -> int:
    """Coerce to a checked amount; strings like '4000000000' are accepted."""
    if isinstance(value, bool):
        raise ArithmeticOverflowError(f"invalid amount: {value!r}")
    try:
        v = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ArithmeticOverflowError(f"invalid amount: {value!r}") from e
    if isinstance(value, (float, Decimal, Fraction)) and v != value:
        raise ArithmeticOverflowError(f"fractional amount: {value!r}")
    return _check_amount(v)


def to_ratio(value: RatioLike) -> Decimal:
    """Truncate a rational-like value to 18 fractional digits."""
    if isinstance(value, Fraction):
        return ratio_from(value.numerator, value.denominator)
    if isinstance(value, float):
        value = str(value)
    try:
        d = Decimal(value)
    except Exception as e:
        raise ArithmeticOverflowError(f"invalid ratio: {value!r}") from e
    if not d.is_finite():
        raise ArithmeticOverflowError(f"invalid ratio: {value!r}")
    return _check_ratio(d.quantize(_QUANT, rounding=ROUND_DOWN, context=_CTX))


def ratio_from(numerator: int, denominator: int) -> Decimal:
    if denominator == 0:
        raise ArithmeticOverflowError(f"invalid ratio: {numerator}/0")
    q = _CTX.divide(Decimal(int(numerator)), Decimal(int(denominator)))
    return _check_ratio(q.quantize(_QUANT, rounding=ROUND_DOWN, context=_CTX))


def mul_amount(amount: int, ratio: Decimal) -> int:
    """floor(amount × ratio)"""
    product = _CTX.multiply(Decimal(int(amount)), ratio)
    return _check_amount(int(product.to_integral_value(rounding=ROUND_FLOOR, context=_CTX)))


def mul_ratio(a: Decimal, b: Decimal) -> Decimal:
    product = _CTX.multiply(a, b)
    return _check_ratio(product.quantize(_QUANT, rounding=ROUND_DOWN, context=_CTX))


def add_ratio(a: Decimal, b: Decimal) -> Decimal:
    return _check_ratio(_CTX.add(a, b).quantize(_QUANT, context=_CTX))


def sub_ratio(a: Decimal, b: Decimal) -> Decimal:
    return _check_ratio(_CTX.subtract(a, b).quantize(_QUANT, context=_CTX))


def add_amount(a: int, b: int) -> int:
    return _check_amount(int(a) + int(b))


def sub_amount(a: int, b: int) -> int:
    return _check_amount(int(a) - int(b))


def format_ratio(r: Decimal) -> str:
    """Render without trailing zeros or exponent: 0.01, 1, 0.75."""
    n = r.normalize(context=_CTX)
    return format(n, "f")
