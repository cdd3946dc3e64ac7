"""
Error taxonomy for the TWAMM engine.

ValidationError subclasses are raised for bad caller input and leave state
unchanged. InvariantViolation subclasses signal states the engine must never
reach.
"""


class TwammError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(TwammError):
    """Raised when validation of caller input fails."""
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidIntervals(ValidationError):
    pass


class InvalidToken(ValidationError):
    pass


class InvalidExpiry(ValidationError):
    pass


class ZeroSalesRate(ValidationError):
    """Order amount is too small to sell at least one unit per block."""
    pass


class UnknownOrder(ValidationError):
    pass


class NotOrderOwner(ValidationError):
    pass


class OrderNotActive(ValidationError):
    pass


class NothingToWithdraw(ValidationError):
    pass


class SlippageExceeded(ValidationError):
    pass


class InsufficientLiquidity(ValidationError):
    pass


class InvariantViolation(TwammError):
    """Raised when an internal invariant does not hold."""
    pass


class DegenerateReserves(InvariantViolation):
    pass


class BackwardBlock(InvariantViolation):
    pass


class ReentrantCall(InvariantViolation):
    pass
