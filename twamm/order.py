"""
Long-term order records.
"""
from enum import Enum
from typing import Optional


class OrderState(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


class LongTermOrder:
    """
    A commitment to sell one token at a constant rate until ``expiry_block``.

    ``reward_factor_at_submission`` is the owning OrderPool's reward factor the
    last time proceeds were settled for this order. It moves forward on every
    withdrawal so proceeds are never paid twice.
    """
    __slots__ = ('order_id', 'owner', 'delegate', 'sell_token_index',
                 'selling_rate', 'start_block', 'expiry_block',
                 'reward_factor_at_submission', 'state')

    def __init__(self, order_id: int, owner: str, sell_token_index: int,
                 selling_rate: int, start_block: int, expiry_block: int,
                 reward_factor_at_submission: int,
                 delegate: Optional[str] = None,
                 state: OrderState = OrderState.ACTIVE):
        self.order_id = order_id
        self.owner = owner
        self.delegate = delegate
        self.sell_token_index = sell_token_index
        self.selling_rate = selling_rate
        self.start_block = start_block
        self.expiry_block = expiry_block
        self.reward_factor_at_submission = reward_factor_at_submission
        self.state = OrderState(state)

    @property
    def buy_token_index(self) -> int:
        return 1 - self.sell_token_index

    @property
    def is_active(self) -> bool:
        return self.state == OrderState.ACTIVE

    @property
    def deposit(self) -> int:
        """Total amount this order sells over its full life."""
        return self.selling_rate * (self.expiry_block - self.start_block)

    def can_be_managed_by(self, caller: str) -> bool:
        return caller == self.owner or (self.delegate is not None and caller == self.delegate)

    def remaining_blocks(self, current_block: int) -> int:
        return max(0, self.expiry_block - current_block)

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'owner': self.owner,
            'delegate': self.delegate,
            'sell_token_index': self.sell_token_index,
            'selling_rate': self.selling_rate,
            'start_block': self.start_block,
            'expiry_block': self.expiry_block,
            'reward_factor_at_submission': self.reward_factor_at_submission,
            'state': self.state.value,
        }

    @staticmethod
    def from_dict(data: dict) -> 'LongTermOrder':
        return LongTermOrder(
            order_id=data['order_id'],
            owner=data['owner'],
            delegate=data.get('delegate'),
            sell_token_index=data['sell_token_index'],
            selling_rate=data['selling_rate'],
            start_block=data['start_block'],
            expiry_block=data['expiry_block'],
            reward_factor_at_submission=data['reward_factor_at_submission'],
            state=data.get('state', OrderState.ACTIVE.value),
        )

    def __repr__(self) -> str:
        return (
            f"LongTermOrder("
            f"id={self.order_id}, "
            f"owner={self.owner}, "
            f"sell={self.sell_token_index}, "
            f"rate={self.selling_rate}, "
            f"blocks={self.start_block}->{self.expiry_block}, "
            f"state={self.state.value})"
        )
