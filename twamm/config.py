"""
Configuration management for a TWAMM pool.
"""
import json
import os
from dataclasses import dataclass, asdict

from twamm.fixed_point import ONE
from twamm.reserves import BP
from twamm.swap_formula import CLOSED_FORM, SOLVERS


@dataclass
class PoolConfig:
    """Virtual order execution configuration."""
    order_block_interval: int = 300  # Blocks per expiry grid step
    solver: str = CLOSED_FORM
    initial_block: int = 0

    def __post_init__(self):
        if self.order_block_interval <= 0:
            raise ValueError("order_block_interval must be positive")
        if self.solver not in SOLVERS:
            raise ValueError(f"Unknown solver {self.solver}, expected one of {SOLVERS}")
        if self.initial_block < 0:
            raise ValueError("initial_block cannot be negative")


@dataclass
class FeeConfig:
    """Fee configuration. Fees are in units of 1/BP (100_000 = 100%)."""
    short_term_fee_bp: int = 50
    partner_fee_bp: int = 25
    long_term_fee_bp: int = 150
    protocol_fee_share: int = ONE // 2  # Fraction of each fee, scaled by ONE
    collect_protocol_fees: bool = True

    def __post_init__(self):
        for name in ('short_term_fee_bp', 'partner_fee_bp', 'long_term_fee_bp'):
            value = getattr(self, name)
            if value < 0 or value >= BP:
                raise ValueError(f"{name} must be in [0, {BP})")
        if self.protocol_fee_share < 0 or self.protocol_fee_share > ONE:
            raise ValueError("protocol_fee_share must be in [0, ONE]")

    @classmethod
    def zero(cls) -> 'FeeConfig':
        """Fee-free configuration."""
        return cls(
            short_term_fee_bp=0,
            partner_fee_bp=0,
            long_term_fee_bp=0,
            protocol_fee_share=0,
            collect_protocol_fees=False
        )


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090


@dataclass
class Config:
    """Main configuration."""
    pool: PoolConfig
    fees: FeeConfig
    monitoring: MonitoringConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            pool=PoolConfig(),
            fees=FeeConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        return cls(
            pool=PoolConfig(**data.get('pool', {})),
            fees=FeeConfig(**data.get('fees', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'pool': asdict(self.pool),
            'fees': asdict(self.fees),
            'monitoring': asdict(self.monitoring)
        }
