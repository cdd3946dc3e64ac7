"""
Time-weighted average market maker: long-term orders executed as virtual
trades against a constant-product pool.
"""
from twamm.config import Config, FeeConfig, MonitoringConfig, PoolConfig
from twamm.order import LongTermOrder, OrderState
from twamm.order_book import LongTermOrderBook, OrderReceipt, PriceOracle
from twamm.pool import TwammPool
from twamm.reserves import Reserves

__version__ = "0.1.0"

__all__ = [
    'Config',
    'FeeConfig',
    'LongTermOrder',
    'LongTermOrderBook',
    'MonitoringConfig',
    'OrderReceipt',
    'OrderState',
    'PoolConfig',
    'PriceOracle',
    'Reserves',
    'TwammPool',
]
