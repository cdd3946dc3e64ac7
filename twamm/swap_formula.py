"""
Virtual trade solvers for two concurrent constant-rate order flows.

Given reserves (r0, r1) and the amounts sold into the pool over a block range
(sell0 of token0, sell1 of token1), each solver returns the token amounts
paid out and the reserves at the end of the range.

Reserves at the end of a range round up and outputs round down, so rounding
never takes value out of the pool.
"""
from collections import namedtuple

from twamm.errors import DegenerateReserves
from twamm.fixed_point import HIGH_PRECISION, div_up, exp, isqrt

CLOSED_FORM = 'closed_form'
APPROXIMATION = 'approximation'
SOLVERS = (CLOSED_FORM, APPROXIMATION)

# Past exp(90) the (E + c) / (E - c) factor differs from 1 by less than one
# part in 10**36, so the closed form settles at sqrt(k * sell0 / sell1).
EXPONENT_CUTOFF = 90

SwapResult = namedtuple('SwapResult', ['token0_out', 'token1_out', 'reserve0', 'reserve1'])


def compute_virtual_trade(reserve0: int, reserve1: int, sell0: int, sell1: int,
                          solver: str = CLOSED_FORM) -> SwapResult:
    """
    Solve one virtual trade step.

    Args:
        reserve0: Token0 reserve before the step
        reserve1: Token1 reserve before the step
        sell0: Token0 sold into the pool during the step (net of fees)
        sell1: Token1 sold into the pool during the step (net of fees)
        solver: CLOSED_FORM or APPROXIMATION for the two-sided case

    Returns:
        SwapResult(token0_out, token1_out, reserve0, reserve1)
    """
    if sell0 == 0 and sell1 == 0:
        return SwapResult(0, 0, reserve0, reserve1)

    if reserve0 <= 0 or reserve1 <= 0:
        raise DegenerateReserves(
            f"Cannot execute virtual trade against reserves ({reserve0}, {reserve1})"
        )

    if sell1 == 0:
        token1_out, new_r0, new_r1 = one_sided(reserve0, reserve1, sell0)
        return SwapResult(0, token1_out, new_r0, new_r1)

    if sell0 == 0:
        token0_out, new_r1, new_r0 = one_sided(reserve1, reserve0, sell1)
        return SwapResult(token0_out, 0, new_r0, new_r1)

    if solver == CLOSED_FORM:
        return two_sided_closed_form(reserve0, reserve1, sell0, sell1)
    if solver == APPROXIMATION:
        return two_sided_approximation(reserve0, reserve1, sell0, sell1)
    raise ValueError(f"Unknown solver: {solver}")


def one_sided(reserve_in: int, reserve_out: int, sell_in: int) -> tuple:
    """
    Exact constant-product swap of a single flow.

    Formula: out = reserve_out * sell_in / (reserve_in + sell_in)

    Returns:
        (amount_out, new_reserve_in, new_reserve_out)
    """
    new_reserve_in = reserve_in + sell_in
    amount_out = (reserve_out * sell_in) // new_reserve_in
    return amount_out, new_reserve_in, reserve_out - amount_out


def two_sided_closed_form(r0: int, r1: int, sell0: int, sell1: int,
                          precision: int = HIGH_PRECISION) -> SwapResult:
    """
    Closed-form solution of two opposing constant-rate flows.

    With k = r0 * r1:
        c = (sqrt(r0 * sell1) - sqrt(r1 * sell0)) / (sqrt(r0 * sell1) + sqrt(r1 * sell0))
        E = exp(2 * sqrt(sell0 * sell1 / k))
        new_r0 = sqrt(k * sell0 / sell1) * (E + c) / (E - c)
        new_r1 = k / new_r0

    Square roots are taken of whole products rather than multiplied
    separately, and every intermediate carries ``precision`` as its scale.
    """
    p = precision
    k = r0 * r1

    a = isqrt(r0 * sell1 * p)
    b = isqrt(r1 * sell0 * p)
    c_numerator = a - b
    if c_numerator >= 0:
        c = div_up(c_numerator * p, a + b)
    else:
        c = -((-c_numerator * p) // (a + b))

    root = isqrt(k * sell0 * p * p // sell1)
    x = 2 * isqrt(sell0 * sell1 * p * p // k)

    if x >= EXPONENT_CUTOFF * p:
        new_r0 = div_up(root, p)
    else:
        exponent = exp(x, p)
        new_r0 = div_up(root * (exponent + c), (exponent - c) * p)
    new_r0 = max(1, min(new_r0, r0 + sell0))
    new_r1 = min(div_up(k, new_r0), r1 + sell1)

    return SwapResult(
        token0_out=r0 + sell0 - new_r0,
        token1_out=r1 + sell1 - new_r1,
        reserve0=new_r0,
        reserve1=new_r1,
    )


def two_sided_approximation(r0: int, r1: int, sell0: int, sell1: int) -> SwapResult:
    """
    Symmetric approximation: both flows enter the pool, then the reserves are
    rebalanced so their product is unchanged.

        new_r0 = r1 * (r0 + sell0) / (r1 + sell1)
        new_r1 = r0 * (r1 + sell1) / (r0 + sell0)
    """
    sum0 = r0 + sell0
    sum1 = r1 + sell1
    new_r0 = min(div_up(r1 * sum0, sum1), sum0)
    new_r1 = min(div_up(r0 * sum1, sum0), sum1)

    return SwapResult(
        token0_out=sum0 - new_r0,
        token1_out=sum1 - new_r1,
        reserve0=new_r0,
        reserve1=new_r1,
    )
