"""
Aggregate state of all long-term orders selling one token.

Orders never get touched one by one while virtual trades execute. The pool
keeps one summed sales rate, subtracts expiring rates at grid blocks, and
accumulates proceeds per unit of sales rate in ``reward_factor``. An order's
proceeds are the growth of the reward factor since its last settlement times
its own selling rate.
"""
import logging

from twamm.errors import InvalidExpiry
from twamm.fixed_point import fp_div_down, mul_down
from twamm.order import LongTermOrder

logger = logging.getLogger(__name__)


class OrderPool:
    """Sales rate, expiry schedule and reward factor for one sell direction."""

    def __init__(self, order_block_interval: int, data: dict = None):
        if order_block_interval <= 0:
            raise ValueError("order_block_interval must be positive")
        self.order_block_interval = order_block_interval

        if data is None:
            data = {
                'current_sales_rate': 0,
                'reward_factor': 0,
                'sales_rate_ending_at_block': {},
                'reward_factor_at_block': {},
                'undistributed': 0,
            }

        self.current_sales_rate = int(data['current_sales_rate'])
        self.reward_factor = int(data['reward_factor'])
        self.sales_rate_ending_at_block = {
            int(block): int(rate) for block, rate in data['sales_rate_ending_at_block'].items()
        }
        self.reward_factor_at_block = {
            int(block): int(factor) for block, factor in data['reward_factor_at_block'].items()
        }
        self.undistributed = int(data.get('undistributed', 0))

    def record_new_order(self, selling_rate: int, expiry_block: int, current_block: int):
        """
        Add an order's selling rate to the pool.

        Raises:
            InvalidExpiry: expiry is off the interval grid or not in the future
        """
        if expiry_block % self.order_block_interval != 0:
            raise InvalidExpiry(
                f"Expiry block {expiry_block} is not a multiple of "
                f"the order block interval {self.order_block_interval}"
            )
        if expiry_block <= current_block:
            raise InvalidExpiry(
                f"Expiry block {expiry_block} is not after current block {current_block}"
            )

        self.current_sales_rate += selling_rate
        self.sales_rate_ending_at_block[expiry_block] = (
            self.sales_rate_ending_at_block.get(expiry_block, 0) + selling_rate
        )

    def remove_order(self, selling_rate: int, expiry_block: int):
        """Withdraw an unexpired order's rate from both the live rate and its expiry."""
        self.current_sales_rate -= selling_rate
        remaining = self.sales_rate_ending_at_block.get(expiry_block, 0) - selling_rate
        if remaining < 0 or self.current_sales_rate < 0:
            raise ValueError(
                f"Sales rate underflow removing {selling_rate} ending at {expiry_block}"
            )
        self.sales_rate_ending_at_block[expiry_block] = remaining

    def expire_to_block(self, block: int):
        """
        Retire the sales rate of orders ending at ``block``.

        The expiry entry is consumed, so a second call at the same block
        subtracts nothing and keeps the first reward factor snapshot.
        """
        ending_rate = self.sales_rate_ending_at_block.pop(block, None)
        if ending_rate is None:
            return

        self.current_sales_rate -= ending_rate
        self.reward_factor_at_block[block] = self.reward_factor
        if ending_rate:
            logger.debug(f"Expired sales rate {ending_rate} at block {block}")

    def distribute(self, proceeds: int):
        """
        Credit proceeds to every order in the pool, pro rata to selling rate.

        The per-unit increment rounds down. Proceeds arriving while nothing is
        selling are held in ``undistributed`` instead of being credited.
        """
        if proceeds <= 0:
            return

        if self.current_sales_rate == 0:
            self.undistributed += proceeds
            logger.warning(f"Escrowed {proceeds} proceeds: pool has no active sales rate")
            return

        self.reward_factor += fp_div_down(proceeds, self.current_sales_rate)

    def settled_reward_factor(self, order: LongTermOrder) -> int:
        """
        Reward factor an order is entitled to right now.

        Once the order's expiry has been processed the snapshot taken at expiry
        replaces the live factor, excluding sales made after the order ended.
        """
        snapshot = self.reward_factor_at_block.get(order.expiry_block)
        if snapshot is not None:
            return snapshot
        return self.reward_factor

    def is_expired(self, order: LongTermOrder) -> bool:
        return order.expiry_block in self.reward_factor_at_block

    def proceeds_of(self, order: LongTermOrder) -> int:
        """Unclaimed proceeds of an order, rounded down."""
        factor = self.settled_reward_factor(order)
        return mul_down(factor - order.reward_factor_at_submission, order.selling_rate)

    def to_dict(self) -> dict:
        return {
            'current_sales_rate': self.current_sales_rate,
            'reward_factor': self.reward_factor,
            'sales_rate_ending_at_block': dict(self.sales_rate_ending_at_block),
            'reward_factor_at_block': dict(self.reward_factor_at_block),
            'undistributed': self.undistributed,
        }

    @staticmethod
    def from_dict(order_block_interval: int, data: dict) -> 'OrderPool':
        return OrderPool(order_block_interval, data)

    def __repr__(self) -> str:
        return (
            f"OrderPool("
            f"sales_rate={self.current_sales_rate}, "
            f"reward_factor={self.reward_factor}, "
            f"pending_expiries={len(self.sales_rate_ending_at_block)})"
        )
