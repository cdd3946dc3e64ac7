"""
TWAMM pool: long-term orders and immediate swaps against shared reserves.

This is the surface a custody layer calls. Every reserve-affecting operation
first executes outstanding virtual orders up to the caller's block, then
applies its own effect. Amounts returned are what the custody layer must
move; no tokens are held here.
"""
import logging
import time
from typing import Optional

from twamm.codec import decode_state, encode_state
from twamm.config import Config, MonitoringConfig, PoolConfig
from twamm.errors import (
    BackwardBlock,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidToken,
    ReentrantCall,
    SlippageExceeded,
    TwammError,
)
from twamm.executor import ExecutionReport, quote, quote_reserves
from twamm.monitoring import Monitor
from twamm.order_book import LongTermOrderBook, OrderReceipt, PriceOracle
from twamm.reserves import Reserves, split_fee

logger = logging.getLogger(__name__)


class TwammPool:
    """
    A constant-product pool with a long-term order book.

    Calls must arrive in one global order with non-decreasing block numbers.
    Nested calls (for example from a transfer callback) are rejected.
    """

    def __init__(self, config: Config = None, monitor: Monitor = None,
                 reserves: Reserves = None, book: LongTermOrderBook = None):
        self.config = config if config is not None else Config.default()

        monitoring = self.config.monitoring
        if monitor is None and monitoring.enabled:
            logger.info(f"Initializing Monitor with host={monitoring.host}, port={monitoring.port}")
            monitor = Monitor(host=monitoring.host, port=monitoring.port)
            monitor.start_server()
        self.monitor = monitor
        self.reserves = reserves if reserves is not None else Reserves()

        if book is None:
            pool_config = self.config.pool
            book = LongTermOrderBook(
                order_block_interval=pool_config.order_block_interval,
                fees=self.config.fees,
                solver=pool_config.solver,
                last_virtual_order_block=pool_config.initial_block,
            )
        self.book = book
        self.last_block = book.last_virtual_order_block
        self._busy = False

    # ==========================================================================
    # OPERATION GUARD
    # ==========================================================================

    def _run(self, operation: str, current_block: int, action):
        """
        Run ``action`` as one atomic pool operation.

        Rejects re-entry and block numbers that go backwards. A failure rolls
        back the book and the reserves, including any virtual orders executed
        before it, is logged and counted, and is re-raised unchanged.
        """
        if self._busy:
            raise ReentrantCall(f"{operation} called while another pool operation is running")
        if current_block < self.last_block:
            raise BackwardBlock(
                f"{operation} at block {current_block} after block {self.last_block}"
            )

        self._busy = True
        self.book.last_execution = None
        checkpoint = self.book.checkpoint()
        reserves = self.reserves.as_tuple()
        start = time.time()
        status = 'success'
        try:
            result = action()
            self.last_block = current_block
            return result
        except TwammError as e:
            status = 'failed'
            self.book.rollback(checkpoint)
            self.reserves.reserve0, self.reserves.reserve1 = reserves
            logger.warning(f"{operation} failed at block {current_block}: {e}")
            raise
        finally:
            self._busy = False
            if self.monitor is not None:
                report = self.book.last_execution
                if report is not None and report.steps:
                    self.monitor.record_execution(report)
                self.monitor.record_operation(operation, status, time.time() - start)
                self.monitor.update(self)

    def _advance(self, current_block: int) -> ExecutionReport:
        return self.book.execute_virtual_orders(self.reserves, current_block)

    def _require_liquidity(self):
        if not self.reserves.has_liquidity:
            raise InsufficientLiquidity("Pool has no liquidity")

    # ==========================================================================
    # LONG-TERM ORDERS
    # ==========================================================================

    def execute_virtual_orders(self, current_block: int) -> ExecutionReport:
        """Bring virtual order execution up to ``current_block``."""
        return self._run('execute_virtual_orders', current_block,
                         lambda: self._advance(current_block))

    def place_long_term_order(self, owner: str, direction: int, amount: int,
                              num_intervals: int, current_block: int,
                              delegate: Optional[str] = None) -> OrderReceipt:
        """
        Sell ``amount`` of token ``direction`` over ``num_intervals`` intervals.

        The custody layer should take ``receipt.deposit`` from the owner.
        """
        def action():
            self._require_liquidity()
            return self.book.place_order(self.reserves, owner, direction, amount,
                                         num_intervals, current_block, delegate=delegate)

        return self._run('place_long_term_order', current_block, action)

    def cancel_long_term_order(self, order_id: int, caller: str, current_block: int) -> tuple:
        """
        Cancel an order.

        Returns:
            (refund, proceeds): refund in the sold token, proceeds in the
            bought token, both owed to the order owner
        """
        return self._run('cancel_long_term_order', current_block,
                         lambda: self.book.cancel_order(self.reserves, order_id, caller, current_block))

    def withdraw_proceeds(self, order_id: int, caller: str, current_block: int) -> int:
        """Withdraw an order's proceeds, owed to the order owner."""
        return self._run('withdraw_proceeds', current_block,
                         lambda: self.book.withdraw_proceeds(self.reserves, order_id, caller, current_block))

    def quote_reserves(self, block_number: int) -> tuple:
        """
        Reserves as of ``block_number`` without changing any state.

        Identical to the reserves a real execution to the same block produces.
        """
        return quote_reserves(self.book, self.reserves, block_number).as_tuple()

    def price_oracle(self) -> PriceOracle:
        """Cumulative prices as of the last virtual order block."""
        return self.book.price_oracle()

    def virtual_price_oracle(self, block_number: int) -> PriceOracle:
        """
        Cumulative prices as of ``block_number`` without changing any state.

        Identical to what price_oracle returns after executing virtual orders
        to the same block.
        """
        book, _ = quote(self.book, self.reserves, block_number)
        return book.price_oracle()

    # ==========================================================================
    # SHORT-TERM TRADING & LIQUIDITY
    # ==========================================================================

    def swap(self, token_in: int, amount_in: int, current_block: int,
             min_amount_out: int = 0, partner: bool = False) -> int:
        """
        Immediate swap of ``amount_in`` of ``token_in`` for the other token.

        Args:
            token_in: Index of the token sold (0 or 1)
            amount_in: Gross amount sold, fees included
            current_block: Current block number
            min_amount_out: Slippage limit
            partner: Use the partner fee instead of the short-term fee

        Returns:
            Amount of the other token paid out
        """
        if token_in not in (0, 1):
            raise InvalidToken(f"Token index must be 0 or 1, got {token_in}")
        if amount_in <= 0:
            raise InvalidAmount("Swap amount must be positive")

        def action():
            self._require_liquidity()
            self._advance(current_block)

            fees = self.book.fees
            fee_bp = fees.partner_fee_bp if partner else fees.short_term_fee_bp
            split = split_fee(amount_in, fee_bp, fees.protocol_fee_share,
                              fees.collect_protocol_fees)

            amount_out = self.reserves.get_swap_output(split.amount_less_fees, token_in)
            if amount_out == 0:
                raise InvalidAmount(f"Swap of {amount_in} is too small to produce output")
            if amount_out < min_amount_out:
                raise SlippageExceeded(f"Slippage: got {amount_out}, expected {min_amount_out}")

            self.reserves.apply_swap(split.amount_less_fees, split.lp_fee, token_in)
            self.book.protocol_fees[token_in] += split.protocol_fee

            logger.info(
                f"Swap: {amount_in} token{token_in} -> {amount_out} token{1 - token_in}, "
                f"price: {self.reserves.spot_price}"
            )
            return amount_out

        return self._run('swap', current_block, action)

    def add_liquidity(self, amount0: int, amount1: int, current_block: int) -> tuple:
        """Add tokens to the reserves. LP share accounting happens elsewhere."""
        if amount0 <= 0 or amount1 <= 0:
            raise InvalidAmount("Cannot add zero liquidity")

        def action():
            self._advance(current_block)
            self.reserves.reserve0 += amount0
            self.reserves.reserve1 += amount1
            logger.info(f"Liquidity added: {amount0} token0, {amount1} token1")
            return self.reserves.as_tuple()

        return self._run('add_liquidity', current_block, action)

    def remove_liquidity(self, amount0: int, amount1: int, current_block: int) -> tuple:
        """
        Remove tokens from the reserves.

        Reserves may only be emptied when no long-term order is selling.
        """
        if amount0 < 0 or amount1 < 0 or (amount0 == 0 and amount1 == 0):
            raise InvalidAmount("Cannot remove zero liquidity")

        def action():
            self._advance(current_block)
            reserves = self.reserves
            if amount0 > reserves.reserve0 or amount1 > reserves.reserve1:
                raise InsufficientLiquidity("Removal exceeds reserves")

            empties0 = amount0 == reserves.reserve0
            empties1 = amount1 == reserves.reserve1
            if empties0 != empties1:
                raise InsufficientLiquidity("Removal would empty only one reserve")
            if empties0 and any(pool.current_sales_rate for pool in self.book.pools):
                raise InsufficientLiquidity("Cannot empty reserves while long-term orders are selling")

            reserves.reserve0 -= amount0
            reserves.reserve1 -= amount1
            logger.info(f"Liquidity removed: {amount0} token0, {amount1} token1")
            return reserves.as_tuple()

        return self._run('remove_liquidity', current_block, action)

    # ==========================================================================
    # STATE & STATS
    # ==========================================================================

    def snapshot(self) -> bytes:
        """Serialize reserves and order book."""
        return encode_state(self.book, self.reserves)

    @classmethod
    def restore(cls, data: bytes, config: Config = None,
                monitor: Monitor = None) -> 'TwammPool':
        """
        Rebuild a pool from a snapshot.

        Fees, solver and interval always come from the snapshot. Without a
        config, monitoring stays off.
        """
        book, reserves = decode_state(data)
        if config is None:
            config = Config(
                pool=PoolConfig(order_block_interval=book.order_block_interval,
                                solver=book.solver,
                                initial_block=book.last_virtual_order_block),
                fees=book.fees,
                monitoring=MonitoringConfig(),
            )
        return cls(config=config, monitor=monitor, reserves=reserves, book=book)

    def vault_balances(self) -> tuple:
        """
        Tokens the custody layer must hold for this pool, per token:
        reserves, unsold order principal, unpaid proceeds and protocol fees.
        """
        book = self.book
        return tuple(
            reserve + book.order_balance[i] + book.proceeds_balance[i] + book.protocol_fees[i]
            for i, reserve in enumerate(self.reserves.as_tuple())
        )

    def get_stats(self) -> dict:
        """Get current pool statistics."""
        book = self.book
        return {
            'reserve0': str(self.reserves.reserve0),
            'reserve1': str(self.reserves.reserve1),
            'spot_price': str(self.reserves.spot_price),
            'sales_rate0': str(book.pools[0].current_sales_rate),
            'sales_rate1': str(book.pools[1].current_sales_rate),
            'active_orders': len(book.active_orders()),
            'last_virtual_order_block': book.last_virtual_order_block,
            'protocol_fees0': str(book.protocol_fees[0]),
            'protocol_fees1': str(book.protocol_fees[1]),
        }
