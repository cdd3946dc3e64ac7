"""
Order placement, cancellation and withdrawal on a LongTermOrderBook.
"""
import pytest

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
from twamm.order import OrderState
from twamm.order_book import LongTermOrderBook, compute_expiry_block
from twamm.reserves import Reserves


@pytest.fixture
def book():
    return LongTermOrderBook(order_block_interval=10, fees=FeeConfig.zero())


@pytest.fixture
def reserves():
    return Reserves({'reserve0': 10 ** 8, 'reserve1': 10 ** 8})


class TestExpiryGrid:

    @pytest.mark.parametrize("current_block, num_intervals, expected", [
        (0, 1, 20),
        (7, 1, 20),
        (10, 1, 30),
        (15, 3, 50),
        (0, 20, 210),
    ])
    def test_compute_expiry_block(self, current_block, num_intervals, expected):
        assert compute_expiry_block(current_block, num_intervals, 10) == expected


class TestPlaceOrder:

    def test_place_order(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)

        assert receipt.order_id == 1
        assert receipt.expiry_block == 210
        assert receipt.selling_rate == 100
        assert receipt.deposit == 21000
        assert receipt.dust == 0

        order = book.get_order(1)
        assert order.owner == 'alice'
        assert order.state == OrderState.ACTIVE
        assert book.pools[0].current_sales_rate == 100
        assert book.pools[0].sales_rate_ending_at_block == {210: 100}
        assert book.order_balance == [21000, 0]

    def test_rate_truncation_leaves_dust(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 1, 10000, 10, 0)

        # 10000 over 110 blocks
        assert receipt.selling_rate == 90
        assert receipt.deposit == 9900
        assert receipt.dust == 100
        assert book.order_balance == [0, 9900]

    def test_order_ids_increase(self, book, reserves):
        first = book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        second = book.place_order(reserves, 'bob', 1, 21000, 20, 5)

        assert (first.order_id, second.order_id) == (1, 2)
        assert [o.order_id for o in book.orders_of('bob')] == [2]

    def test_place_advances_virtual_orders(self, book, reserves):
        book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        book.place_order(reserves, 'bob', 0, 21000, 20, 55)

        assert book.last_virtual_order_block == 55
        assert reserves.reserve0 > 10 ** 8

    @pytest.mark.parametrize("token, amount, intervals, error", [
        (2, 21000, 20, InvalidToken),
        (0, 0, 20, InvalidAmount),
        (0, -5, 20, InvalidAmount),
        (0, 21000, 0, InvalidIntervals),
        (0, 100, 20, ZeroSalesRate),
    ])
    def test_invalid_order_leaves_state_unchanged(self, book, reserves, token, amount,
                                                  intervals, error):
        book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        before = book.to_dict()
        reserves_before = reserves.as_tuple()

        with pytest.raises(error):
            book.place_order(reserves, 'bob', token, amount, intervals, 50)

        assert book.to_dict() == before
        assert reserves.as_tuple() == reserves_before

    def test_backward_block_raises(self, book, reserves):
        book.execute_virtual_orders(reserves, 100)
        with pytest.raises(BackwardBlock):
            book.place_order(reserves, 'alice', 0, 21000, 20, 99)


class TestCancelOrder:

    def test_cancel_at_midpoint(self, book, reserves):
        """Refund plus amount sold equals the deposit."""
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)

        refund, proceeds = book.cancel_order(reserves, receipt.order_id, 'alice', 105)

        sold = 100 * 105
        assert refund == 10500
        assert refund + sold == receipt.deposit
        assert 10470 <= proceeds <= 10499

        order = book.get_order(receipt.order_id)
        assert order.state == OrderState.CANCELLED
        assert book.pools[0].current_sales_rate == 0
        assert book.order_balance[0] == 0

    def test_cancelled_rate_does_not_expire_twice(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        book.place_order(reserves, 'bob', 0, 42000, 20, 0)
        book.cancel_order(reserves, receipt.order_id, 'alice', 105)

        book.execute_virtual_orders(reserves, 300)

        assert book.pools[0].current_sales_rate == 0
        assert book.order_balance[0] == 0

    def test_cancel_after_expiry_refunds_nothing(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)

        refund, proceeds = book.cancel_order(reserves, receipt.order_id, 'alice', 250)

        assert refund == 0
        assert proceeds > 0
        assert book.get_order(receipt.order_id).state == OrderState.CANCELLED
        assert book.pools[0].current_sales_rate == 0

    def test_cancel_after_expiry_pays_what_withdrawal_would(self, reserves):
        cancelled = LongTermOrderBook(10, fees=FeeConfig.zero())
        withdrawn = LongTermOrderBook(10, fees=FeeConfig.zero())
        withdrawn_reserves = reserves.copy()
        cancelled.place_order(reserves, 'alice', 0, 21000, 20, 0)
        withdrawn.place_order(withdrawn_reserves, 'alice', 0, 21000, 20, 0)

        _, proceeds = cancelled.cancel_order(reserves, 1, 'alice', 250)

        assert proceeds == withdrawn.withdraw_proceeds(withdrawn_reserves, 1, 'alice', 250)
        assert cancelled.proceeds_balance == withdrawn.proceeds_balance
        assert cancelled.order_balance == withdrawn.order_balance == [0, 0]

    def test_cancel_twice_raises(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        book.cancel_order(reserves, receipt.order_id, 'alice', 50)

        with pytest.raises(OrderNotActive):
            book.cancel_order(reserves, receipt.order_id, 'alice', 60)

    def test_cancel_by_stranger_raises(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        before = book.to_dict()

        with pytest.raises(NotOrderOwner):
            book.cancel_order(reserves, receipt.order_id, 'mallory', 50)
        assert book.to_dict() == before

    def test_cancel_unknown_order_raises(self, book, reserves):
        with pytest.raises(UnknownOrder):
            book.cancel_order(reserves, 42, 'alice', 0)

    def test_delegate_can_cancel(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0, delegate='carol')
        refund, _ = book.cancel_order(reserves, receipt.order_id, 'carol', 105)
        assert refund == 10500


class TestWithdrawProceeds:

    def test_repeated_withdrawals_then_completion(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)

        first = book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 50)
        with pytest.raises(NothingToWithdraw):
            book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 50)
        second = book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 120)
        last = book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 250)

        assert first > 0 and second > 0 and last > 0
        assert book.get_order(receipt.order_id).state == OrderState.COMPLETED
        assert 0 <= book.proceeds_balance[1] <= 5

        with pytest.raises(OrderNotActive):
            book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 260)

    def test_withdraw_before_any_trade_raises(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        with pytest.raises(NothingToWithdraw):
            book.withdraw_proceeds(reserves, receipt.order_id, 'alice', 0)

    def test_withdraw_total_matches_single_withdrawal(self, reserves):
        """Withdrawing in pieces pays at most rounding dust less than once."""
        pieces_book = LongTermOrderBook(10, fees=FeeConfig.zero())
        once_book = LongTermOrderBook(10, fees=FeeConfig.zero())
        pieces_reserves = reserves.copy()
        once_reserves = reserves.copy()
        pieces_id = pieces_book.place_order(pieces_reserves, 'alice', 0, 21000, 20, 0).order_id
        once_id = once_book.place_order(once_reserves, 'alice', 0, 21000, 20, 0).order_id

        total = sum(
            pieces_book.withdraw_proceeds(pieces_reserves, pieces_id, 'alice', block)
            for block in (30, 90, 150, 210)
        )
        once = once_book.withdraw_proceeds(once_reserves, once_id, 'alice', 210)

        assert once - 4 <= total <= once
        assert pieces_reserves == once_reserves

    def test_delegate_withdraws_for_owner(self, book, reserves):
        receipt = book.place_order(reserves, 'alice', 0, 21000, 20, 0, delegate='carol')
        assert book.withdraw_proceeds(reserves, receipt.order_id, 'carol', 100) > 0

        with pytest.raises(NotOrderOwner):
            book.withdraw_proceeds(reserves, receipt.order_id, 'mallory', 110)


class TestCheckpoint:

    def test_rollback_undoes_execution_and_new_order(self, book, reserves):
        book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        before = book.to_dict()
        reserves_before = reserves.as_tuple()
        checkpoint = book.checkpoint()

        receipt = book.place_order(reserves, 'bob', 1, 50000, 5, 64)
        book.rollback(checkpoint)

        assert book.to_dict() == before
        assert book.last_execution is None
        with pytest.raises(UnknownOrder):
            book.get_order(receipt.order_id)

        # Reserves are the caller's to restore
        assert reserves.as_tuple() != reserves_before

    def test_rolled_back_book_replays_identically(self, reserves):
        book = LongTermOrderBook(10, fees=FeeConfig())
        twin = LongTermOrderBook(10, fees=FeeConfig())
        twin_reserves = reserves.copy()
        book.place_order(reserves, 'alice', 0, 21000, 20, 0)
        twin.place_order(twin_reserves, 'alice', 0, 21000, 20, 0)

        checkpoint = book.checkpoint()
        saved = reserves.as_tuple()
        book.execute_virtual_orders(reserves, 150)
        book.rollback(checkpoint)
        reserves.reserve0, reserves.reserve1 = saved

        book.execute_virtual_orders(reserves, 300)
        twin.execute_virtual_orders(twin_reserves, 300)
        assert book.to_dict() == twin.to_dict()
        assert reserves == twin_reserves


class TestSerialization:

    def test_round_trip(self, book, reserves):
        book.place_order(reserves, 'alice', 0, 21000, 20, 0, delegate='carol')
        book.place_order(reserves, 'bob', 1, 50000, 5, 12)
        book.execute_virtual_orders(reserves, 70)

        restored = LongTermOrderBook.from_dict(book.to_dict())

        assert restored.to_dict() == book.to_dict()
        assert restored.get_order(1).delegate == 'carol'
