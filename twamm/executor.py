"""
Virtual order execution.

Brings a LongTermOrderBook and its reserves forward to a target block. The
block range is cut at every order-block-interval boundary; each piece is one
virtual trade at constant sales rates, followed by proceeds distribution and
then expiry of the orders ending at that boundary.

The number of steps depends only on the elapsed blocks and the interval,
never on how many orders are active.
"""
import copy
import logging

from twamm.fixed_point import fp_div_down
from twamm.reserves import Reserves, split_fee
from twamm.swap_formula import compute_virtual_trade

logger = logging.getLogger(__name__)


class ExecutionReport:
    """Totals for one advance_to call."""

    def __init__(self):
        self.steps = 0
        self.sold = [0, 0]
        self.proceeds = [0, 0]
        self.lp_fees = [0, 0]
        self.protocol_fees = [0, 0]

    @property
    def token0_out(self) -> int:
        return self.proceeds[0]

    @property
    def token1_out(self) -> int:
        return self.proceeds[1]

    def to_dict(self) -> dict:
        return {
            'steps': self.steps,
            'sold': list(self.sold),
            'proceeds': list(self.proceeds),
            'lp_fees': list(self.lp_fees),
            'protocol_fees': list(self.protocol_fees),
        }

    def __repr__(self) -> str:
        return (
            f"ExecutionReport("
            f"steps={self.steps}, "
            f"sold={self.sold}, "
            f"out={self.proceeds})"
        )


def next_boundary(block: int, interval: int) -> int:
    """First interval multiple strictly after ``block``."""
    return block - (block % interval) + interval


def advance_to(book, reserves: Reserves, target_block: int) -> ExecutionReport:
    """
    Execute all virtual trades and expiries up to ``target_block``.

    A target at or before the book's last virtual order block is a no-op.

    Args:
        book: LongTermOrderBook to advance (mutated)
        reserves: Pool reserves (mutated)
        target_block: Block to bring the state to

    Returns:
        ExecutionReport with the totals of the executed steps
    """
    report = ExecutionReport()
    if target_block <= book.last_virtual_order_block:
        return report

    interval = book.order_block_interval
    boundary = next_boundary(book.last_virtual_order_block, interval)

    while boundary < target_block:
        step(book, reserves, boundary, report)
        boundary += interval

    if book.last_virtual_order_block < target_block:
        step(book, reserves, target_block, report)

    if report.sold[0] or report.sold[1]:
        logger.debug(
            f"Virtual orders executed to block {target_block} in {report.steps} steps: "
            f"sold {report.sold}, out {report.proceeds}"
        )
    return report


def step(book, reserves: Reserves, block_number: int, report: ExecutionReport = None):
    """
    One virtual trade from the book's last virtual order block to ``block_number``.

    Order matters: proceeds are distributed before expiries at the same block,
    so orders ending exactly at ``block_number`` share in its proceeds.
    """
    pool0, pool1 = book.pools
    fees = book.fees
    delta = block_number - book.last_virtual_order_block

    # Oracle prices are those in force before this step's trade
    if reserves.has_liquidity:
        book.price_cumulative[0] += fp_div_down(reserves.reserve1, reserves.reserve0) * delta
        book.price_cumulative[1] += fp_div_down(reserves.reserve0, reserves.reserve1) * delta

    sell0 = pool0.current_sales_rate * delta
    sell1 = pool1.current_sales_rate * delta

    split0 = split_fee(sell0, fees.long_term_fee_bp, fees.protocol_fee_share,
                       fees.collect_protocol_fees)
    split1 = split_fee(sell1, fees.long_term_fee_bp, fees.protocol_fee_share,
                       fees.collect_protocol_fees)

    result = compute_virtual_trade(
        reserves.reserve0, reserves.reserve1,
        split0.amount_less_fees, split1.amount_less_fees,
        solver=book.solver
    )

    # LP fees join the reserves only after the trade is solved
    reserves.reserve0 = result.reserve0 + split0.lp_fee
    reserves.reserve1 = result.reserve1 + split1.lp_fee

    # Token0 sellers are paid in token1 and vice versa
    pool0.distribute(result.token1_out)
    pool1.distribute(result.token0_out)

    pool0.expire_to_block(block_number)
    pool1.expire_to_block(block_number)

    book.order_balance[0] -= sell0
    book.order_balance[1] -= sell1
    book.proceeds_balance[0] += result.token0_out
    book.proceeds_balance[1] += result.token1_out
    book.protocol_fees[0] += split0.protocol_fee
    book.protocol_fees[1] += split1.protocol_fee
    book.last_virtual_order_block = block_number

    if report is not None:
        report.steps += 1
        report.sold[0] += sell0
        report.sold[1] += sell1
        report.proceeds[0] += result.token0_out
        report.proceeds[1] += result.token1_out
        report.lp_fees[0] += split0.lp_fee
        report.lp_fees[1] += split1.lp_fee
        report.protocol_fees[0] += split0.protocol_fee
        report.protocol_fees[1] += split1.protocol_fee


def quote(book, reserves: Reserves, target_block: int) -> tuple:
    """
    Book and reserves as they will be at ``target_block``, without mutating
    anything.

    Runs the same code path as advance_to on copies, so the result is
    identical to what a real advance would produce.

    Returns:
        (book, reserves) copies advanced to ``target_block``
    """
    book_copy = copy.deepcopy(book)
    reserves_copy = reserves.copy()
    advance_to(book_copy, reserves_copy, target_block)
    return book_copy, reserves_copy


def quote_reserves(book, reserves: Reserves, target_block: int) -> Reserves:
    """Reserves as they will be at ``target_block``, without mutating anything."""
    return quote(book, reserves, target_block)[1]
