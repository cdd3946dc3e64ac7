"""
Constant-product reserve state: reserve0 * reserve1 = k.

Holds the reserve pair both immediate swaps and virtual trades execute
against, plus the fee split shared by short-term and long-term trades.
"""
from collections import namedtuple
from decimal import Decimal

from twamm.fixed_point import div_up, mul_div_up, mul_up

# Fee denominator (100_000 = 100%)
BP = 100_000

FeeSplit = namedtuple('FeeSplit', ['amount_less_fees', 'lp_fee', 'protocol_fee'])


def split_fee(amount: int, fee_bp: int, protocol_share: int = 0,
              collect_protocol_fees: bool = False) -> FeeSplit:
    """
    Split a sold amount into the part that trades and the fees it pays.

    The gross fee rounds up against the trader. The protocol share of the
    gross fee (a fraction at scale ONE) also rounds up, the rest stays with
    liquidity providers.

    Args:
        amount: Gross amount sold
        fee_bp: Fee in units of 1/BP
        protocol_share: Protocol fraction of the gross fee, scaled by ONE
        collect_protocol_fees: When False the whole fee goes to LPs

    Returns:
        FeeSplit(amount_less_fees, lp_fee, protocol_fee)
    """
    if amount <= 0 or fee_bp == 0:
        return FeeSplit(max(amount, 0), 0, 0)

    gross_fee = div_up(amount * fee_bp, BP)
    protocol_fee = 0
    if collect_protocol_fees and protocol_share > 0:
        protocol_fee = mul_up(gross_fee, protocol_share)
    lp_fee = gross_fee - protocol_fee
    return FeeSplit(amount - gross_fee, lp_fee, protocol_fee)


class Reserves:
    """
    Reserve pair of a two-token constant-product pool.

    Token amounts are integers in the token's smallest unit.
    """

    def __init__(self, data: dict = None):
        if data is None:
            data = {
                'reserve0': 0,
                'reserve1': 0,
            }

        self.reserve0 = int(data['reserve0'])
        self.reserve1 = int(data['reserve1'])
        if self.reserve0 < 0 or self.reserve1 < 0:
            raise ValueError("Reserves cannot be negative")

    def to_dict(self) -> dict:
        return {
            'reserve0': self.reserve0,
            'reserve1': self.reserve1,
        }

    @staticmethod
    def from_dict(data: dict) -> 'Reserves':
        return Reserves(data)

    def copy(self) -> 'Reserves':
        return Reserves(self.to_dict())

    def as_tuple(self) -> tuple:
        return (self.reserve0, self.reserve1)

    @property
    def k(self) -> int:
        return self.reserve0 * self.reserve1

    @property
    def has_liquidity(self) -> bool:
        return self.reserve0 > 0 and self.reserve1 > 0

    @property
    def spot_price(self) -> Decimal:
        """
        Price of token0 denominated in token1.

        Price = reserve1 / reserve0
        """
        if self.reserve0 == 0:
            return Decimal(0)
        return Decimal(self.reserve1) / Decimal(self.reserve0)

    def get_swap_output(self, amount_in: int, token_in: int) -> int:
        """
        Output of an immediate swap of an amount that has already paid fees.

        Formula: out = reserve_out - ceil(k / (reserve_in + amount_in))

        Args:
            amount_in: Amount of the input token, net of fees
            token_in: Index (0 or 1) of the token sold

        Returns:
            Amount of the other token paid out
        """
        if amount_in <= 0:
            return 0

        reserve_in, reserve_out = self._ordered(token_in)
        if reserve_in == 0 or reserve_out == 0:
            return 0

        next_reserve_out = mul_div_up(reserve_in, reserve_out, reserve_in + amount_in)
        return reserve_out - next_reserve_out

    def apply_swap(self, amount_in: int, lp_fee: int, token_in: int) -> int:
        """
        Execute an immediate swap against the reserves.

        The LP fee is added to the input-side reserve after the output is
        computed, so it grows k.

        Returns:
            Amount of the other token paid out
        """
        amount_out = self.get_swap_output(amount_in, token_in)
        if token_in == 0:
            self.reserve0 += amount_in + lp_fee
            self.reserve1 -= amount_out
        else:
            self.reserve1 += amount_in + lp_fee
            self.reserve0 -= amount_out
        return amount_out

    def _ordered(self, token_in: int) -> tuple:
        if token_in == 0:
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0

    def __eq__(self, other) -> bool:
        if not isinstance(other, Reserves):
            return NotImplemented
        return self.as_tuple() == other.as_tuple()

    def __repr__(self) -> str:
        return (
            f"Reserves("
            f"reserve0={self.reserve0}, "
            f"reserve1={self.reserve1}, "
            f"price={self.spot_price})"
        )
