"""
Deterministic integer fixed-point math.

All values are Python ints. A fixed-point number ``x`` at scale ``one``
represents ``x / one``. Every routine here is exact integer arithmetic so the
read-only quote path and the state-mutating path agree bit for bit.
"""
import math

ONE = 10 ** 18
HIGH_PRECISION = 10 ** 36

# ln(2) at 36 decimal places
_LN2_36 = 693147180559945309417232121458176568


def mul_div(a: int, b: int, denominator: int) -> int:
    """Multiply two numbers and divide by denominator, rounding down."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """Multiply and divide with rounding up."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div_up by zero")
    product = a * b
    if product == 0:
        return 0
    return (product - 1) // denominator + 1


def div_down(numerator: int, denominator: int) -> int:
    if denominator == 0:
        raise ZeroDivisionError("div_down by zero")
    return numerator // denominator


def div_up(numerator: int, denominator: int) -> int:
    """
    Integer division rounding towards +infinity for non-negative inputs.

    Zero stays zero, so ``div_up(0, d) == 0``.
    """
    if denominator == 0:
        raise ZeroDivisionError("div_up by zero")
    if numerator == 0:
        return 0
    return 1 + (numerator - 1) // denominator


def mul_down(a: int, b: int, one: int = ONE) -> int:
    """Fixed-point multiply, rounding down."""
    return (a * b) // one


def mul_up(a: int, b: int, one: int = ONE) -> int:
    """Fixed-point multiply, rounding up."""
    return div_up(a * b, one)


def fp_div_down(a: int, b: int, one: int = ONE) -> int:
    """Fixed-point divide, rounding down."""
    return div_down(a * one, b)


def isqrt(value: int) -> int:
    """Floor of the square root of a non-negative integer."""
    if value < 0:
        raise ValueError(f"isqrt of negative value {value}")
    return math.isqrt(value)


def ln2(one: int = ONE) -> int:
    """ln(2) at the requested scale (scales up to 10**36)."""
    if one > HIGH_PRECISION:
        raise ValueError("ln2 is only tabulated up to 36 decimal places")
    return _LN2_36 * one // HIGH_PRECISION


def exp(x: int, one: int = ONE) -> int:
    """
    Fixed-point natural exponential.

    Range reduction by powers of two: x = n * ln2 + r with 0 <= r < ln2,
    e^x = 2^n * e^r. e^r is summed as a Taylor series until the next term
    truncates to zero, then shifted left by n. Negative arguments use
    e^-x = 1 / e^x.

    Args:
        x: Exponent at scale ``one``
        one: Fixed-point scale

    Returns:
        e^(x / one) at scale ``one``, rounded down
    """
    if x < 0:
        return fp_div_down(one, exp(-x, one), one)
    if x == 0:
        return one

    log2 = ln2(one)
    n = x // log2
    r = x - n * log2

    total = one
    term = one
    i = 1
    while True:
        term = term * r // (i * one)
        if term == 0:
            break
        total += term
        i += 1

    return total << n
