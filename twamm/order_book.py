"""
Long-term order book: two OrderPools plus the individual order records.

Every operation first brings virtual order execution up to the caller's
block, so pool bookkeeping is never stale relative to unprocessed flow.
Input is validated before anything is mutated.
"""
import logging
from collections import namedtuple
from dataclasses import asdict
from typing import Optional

from twamm.config import FeeConfig
from twamm.errors import (
    BackwardBlock,
    InvalidAmount,
    InvalidIntervals,
    InvalidToken,
    NothingToWithdraw,
    NotOrderOwner,
    OrderNotActive,
    UnknownOrder,
    ZeroSalesRate,
)
from twamm.executor import ExecutionReport, advance_to
from twamm.order import LongTermOrder, OrderState
from twamm.order_pool import OrderPool
from twamm.reserves import Reserves
from twamm.swap_formula import CLOSED_FORM

logger = logging.getLogger(__name__)

OrderReceipt = namedtuple(
    'OrderReceipt',
    ['order_id', 'selling_rate', 'start_block', 'expiry_block', 'deposit', 'dust']
)

PriceOracle = namedtuple('PriceOracle', ['price0_cumulative', 'price1_cumulative', 'block_number'])


def compute_expiry_block(current_block: int, num_intervals: int, interval: int) -> int:
    """
    Expiry of an order placed at ``current_block``.

    The next grid boundary plus ``num_intervals`` full intervals, so every
    order lives at least one full interval and ends on the grid.
    """
    return current_block - (current_block % interval) + interval * (num_intervals + 1)


class LongTermOrderBook:
    """
    Owns both OrderPools, the order map and the balance accounting.

    ``order_balance`` is unsold principal held for orders, ``proceeds_balance``
    is virtual-trade output not yet paid out and ``protocol_fees`` is the
    protocol's fee share, each indexed by token.

    ``price_cumulative`` holds, per token, the sum over elapsed blocks of its
    spot price in the other token (fixed point, ONE scale). The average price
    between two readings is the difference divided by the blocks between them.
    """

    def __init__(self, order_block_interval: int, fees: FeeConfig = None,
                 solver: str = CLOSED_FORM, last_virtual_order_block: int = 0):
        if order_block_interval <= 0:
            raise ValueError("order_block_interval must be positive")

        self.order_block_interval = order_block_interval
        self.fees = fees if fees is not None else FeeConfig()
        self.solver = solver
        self.last_virtual_order_block = last_virtual_order_block
        self.pools = [OrderPool(order_block_interval), OrderPool(order_block_interval)]
        self.orders: dict[int, LongTermOrder] = {}
        self.next_order_id = 1
        self.order_balance = [0, 0]
        self.proceeds_balance = [0, 0]
        self.protocol_fees = [0, 0]
        self.price_cumulative = [0, 0]
        self.last_execution: Optional[ExecutionReport] = None

    # ==========================================================================
    # VIRTUAL ORDER EXECUTION
    # ==========================================================================

    def execute_virtual_orders(self, reserves: Reserves, current_block: int) -> ExecutionReport:
        self._check_block(current_block)
        return self._execute(reserves, current_block)

    def _execute(self, reserves: Reserves, current_block: int) -> ExecutionReport:
        self.last_execution = advance_to(self, reserves, current_block)
        return self.last_execution

    def price_oracle(self) -> PriceOracle:
        return PriceOracle(self.price_cumulative[0], self.price_cumulative[1],
                           self.last_virtual_order_block)

    def _check_block(self, current_block: int):
        if current_block < self.last_virtual_order_block:
            raise BackwardBlock(
                f"Block {current_block} is before last virtual order block "
                f"{self.last_virtual_order_block}"
            )

    # ==========================================================================
    # ORDERS
    # ==========================================================================

    def get_order(self, order_id: int) -> LongTermOrder:
        order = self.orders.get(order_id)
        if order is None:
            raise UnknownOrder(f"Order {order_id} does not exist")
        return order

    def orders_of(self, owner: str) -> list:
        return [order for order in self.orders.values() if order.owner == owner]

    def active_orders(self) -> list:
        return [order for order in self.orders.values() if order.is_active]

    def place_order(self, reserves: Reserves, owner: str, token_index: int, amount: int,
                    num_intervals: int, current_block: int,
                    delegate: Optional[str] = None) -> OrderReceipt:
        """
        Register a long-term order selling ``amount`` of ``token_index``.

        Args:
            reserves: Pool reserves, advanced to ``current_block`` first
            owner: Order owner, the recipient of refunds and proceeds
            token_index: Token sold (0 or 1)
            amount: Amount offered; only selling_rate * blocks is deposited
            num_intervals: Full order block intervals to sell over
            current_block: Current block number
            delegate: Optional address allowed to cancel or withdraw for the owner

        Returns:
            OrderReceipt; ``dust`` is the part of ``amount`` lost to truncation
            of the selling rate, which the caller keeps
        """
        if token_index not in (0, 1):
            raise InvalidToken(f"Token index must be 0 or 1, got {token_index}")
        if amount <= 0:
            raise InvalidAmount("Order amount must be positive")
        if num_intervals <= 0:
            raise InvalidIntervals("Number of intervals must be positive")
        self._check_block(current_block)

        expiry_block = compute_expiry_block(current_block, num_intervals,
                                            self.order_block_interval)
        order_blocks = expiry_block - current_block
        selling_rate = amount // order_blocks
        if selling_rate == 0:
            raise ZeroSalesRate(
                f"Amount {amount} over {order_blocks} blocks gives a zero sales rate"
            )

        self._execute(reserves, current_block)

        pool = self.pools[token_index]
        pool.record_new_order(selling_rate, expiry_block, current_block)

        order = LongTermOrder(
            order_id=self.next_order_id,
            owner=owner,
            delegate=delegate,
            sell_token_index=token_index,
            selling_rate=selling_rate,
            start_block=current_block,
            expiry_block=expiry_block,
            reward_factor_at_submission=pool.reward_factor,
        )
        self.orders[order.order_id] = order
        self.next_order_id += 1
        self.order_balance[token_index] += order.deposit

        logger.info(
            f"Order {order.order_id} placed: {owner} sells token{token_index} "
            f"at {selling_rate}/block until block {expiry_block}"
        )
        return OrderReceipt(
            order_id=order.order_id,
            selling_rate=selling_rate,
            start_block=current_block,
            expiry_block=expiry_block,
            deposit=order.deposit,
            dust=amount - order.deposit,
        )

    def cancel_order(self, reserves: Reserves, order_id: int, caller: str,
                     current_block: int) -> tuple:
        """
        Cancel an active order.

        Refunds the unsold principal, selling_rate * (expiry_block - current_block),
        and pays out the proceeds accrued so far. An order that already reached
        its expiry refunds nothing.

        Returns:
            (refund, proceeds), both owed to the order owner
        """
        order = self._authorize(order_id, caller)
        self._check_block(current_block)

        self._execute(reserves, current_block)

        pool = self.pools[order.sell_token_index]
        proceeds = pool.proceeds_of(order)

        if pool.is_expired(order):
            refund = 0
        else:
            refund = order.selling_rate * order.remaining_blocks(current_block)
            pool.remove_order(order.selling_rate, order.expiry_block)

        order.reward_factor_at_submission = pool.settled_reward_factor(order)
        order.state = OrderState.CANCELLED
        self.order_balance[order.sell_token_index] -= refund
        self.proceeds_balance[order.buy_token_index] -= proceeds

        logger.info(
            f"Order {order_id} cancelled at block {current_block}: "
            f"refund {refund} token{order.sell_token_index}, "
            f"proceeds {proceeds} token{order.buy_token_index}"
        )
        return refund, proceeds

    def withdraw_proceeds(self, reserves: Reserves, order_id: int, caller: str,
                          current_block: int) -> int:
        """
        Pay out an order's accrued proceeds.

        While the order runs this may be repeated; after expiry the first
        withdrawal is terminal and completes the order, even with nothing owed.

        Raises:
            NothingToWithdraw: a running order has no proceeds yet
        """
        order = self._authorize(order_id, caller)
        self._check_block(current_block)

        self._execute(reserves, current_block)

        pool = self.pools[order.sell_token_index]
        proceeds = pool.proceeds_of(order)
        terminal = pool.is_expired(order)
        if proceeds == 0 and not terminal:
            raise NothingToWithdraw(f"Order {order_id} has no proceeds to withdraw")

        order.reward_factor_at_submission = pool.settled_reward_factor(order)
        if terminal:
            order.state = OrderState.COMPLETED
        self.proceeds_balance[order.buy_token_index] -= proceeds

        logger.info(
            f"Order {order_id} withdrew {proceeds} token{order.buy_token_index}"
            f"{' (completed)' if terminal else ''}"
        )
        return proceeds

    def _authorize(self, order_id: int, caller: str) -> LongTermOrder:
        order = self.get_order(order_id)
        if not order.can_be_managed_by(caller):
            raise NotOrderOwner(f"{caller} may not manage order {order_id}")
        if not order.is_active:
            raise OrderNotActive(f"Order {order_id} is {order.state.value}")
        return order

    # ==========================================================================
    # STATE
    # ==========================================================================

    def checkpoint(self) -> dict:
        """
        Copy of the state a single operation can change.

        Existing order records are only written after an operation's last
        check, so the order map is restored by dropping orders created since.
        """
        return {
            'last_virtual_order_block': self.last_virtual_order_block,
            'pools': [pool.to_dict() for pool in self.pools],
            'next_order_id': self.next_order_id,
            'order_balance': list(self.order_balance),
            'proceeds_balance': list(self.proceeds_balance),
            'protocol_fees': list(self.protocol_fees),
            'price_cumulative': list(self.price_cumulative),
        }

    def rollback(self, checkpoint: dict):
        """Return to the state captured by ``checkpoint``."""
        for order_id in range(checkpoint['next_order_id'], self.next_order_id):
            self.orders.pop(order_id, None)
        self.pools = [OrderPool.from_dict(self.order_block_interval, pool)
                      for pool in checkpoint['pools']]
        self.last_virtual_order_block = checkpoint['last_virtual_order_block']
        self.next_order_id = checkpoint['next_order_id']
        self.order_balance = list(checkpoint['order_balance'])
        self.proceeds_balance = list(checkpoint['proceeds_balance'])
        self.protocol_fees = list(checkpoint['protocol_fees'])
        self.price_cumulative = list(checkpoint['price_cumulative'])
        self.last_execution = None

    def to_dict(self) -> dict:
        return {
            'order_block_interval': self.order_block_interval,
            'fees': asdict(self.fees),
            'solver': self.solver,
            'last_virtual_order_block': self.last_virtual_order_block,
            'pools': [pool.to_dict() for pool in self.pools],
            'orders': [order.to_dict() for order in self.orders.values()],
            'next_order_id': self.next_order_id,
            'order_balance': list(self.order_balance),
            'proceeds_balance': list(self.proceeds_balance),
            'protocol_fees': list(self.protocol_fees),
            'price_cumulative': list(self.price_cumulative),
        }

    @staticmethod
    def from_dict(data: dict) -> 'LongTermOrderBook':
        interval = data['order_block_interval']
        book = LongTermOrderBook(
            order_block_interval=interval,
            fees=FeeConfig(**data['fees']),
            solver=data['solver'],
            last_virtual_order_block=data['last_virtual_order_block'],
        )
        book.pools = [OrderPool.from_dict(interval, pool) for pool in data['pools']]
        for order_data in data['orders']:
            order = LongTermOrder.from_dict(order_data)
            book.orders[order.order_id] = order
        book.next_order_id = data['next_order_id']
        book.order_balance = list(data['order_balance'])
        book.proceeds_balance = list(data['proceeds_balance'])
        book.protocol_fees = list(data['protocol_fees'])
        book.price_cumulative = list(data['price_cumulative'])
        return book

    def __repr__(self) -> str:
        return (
            f"LongTermOrderBook("
            f"interval={self.order_block_interval}, "
            f"last_block={self.last_virtual_order_block}, "
            f"orders={len(self.orders)}, "
            f"rates=({self.pools[0].current_sales_rate}, {self.pools[1].current_sales_rate}))"
        )
