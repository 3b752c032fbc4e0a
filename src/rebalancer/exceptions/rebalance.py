from typing import Any

from eth_typing import ChecksumAddress

from rebalancer.exceptions.base import RebalancerError

"""
Exceptions defined here are raised by classes and functions in the `rebalance` module.
"""


class RebalanceError(RebalancerError):
    """
    Exception raised inside rebalancing helpers.
    """


class InvalidRange(RebalanceError):
    """
    The tick range fails the ordering, spacing, or bounds checks after normalization.
    """

    def __init__(self, tick_lower: int, tick_upper: int, reason: str) -> None:
        self.tick_lower = tick_lower
        self.tick_upper = tick_upper
        self.reason = reason
        super().__init__(message=f"Invalid range [{tick_lower}, {tick_upper}]: {reason}")

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.tick_lower, self.tick_upper, self.reason)


class NotOwner(RebalanceError):
    """
    The caller is neither the owner of the position nor an approved operator.
    """

    def __init__(self, position_id: int, caller: ChecksumAddress) -> None:
        self.position_id = position_id
        self.caller = caller
        super().__init__(message=f"{caller} is not authorized for position {position_id}")

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.position_id, self.caller)


class PositionNotFound(RebalanceError):
    def __init__(self, position_id: int) -> None:
        self.position_id = position_id
        super().__init__(message=f"Position {position_id} does not exist")

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.position_id,)


class PositionLocked(RebalanceError):
    """
    Raised when a second operation attempts to take custody of a position that is mid-flight.
    """

    def __init__(self, position_id: int) -> None:
        self.position_id = position_id
        super().__init__(message=f"Position {position_id} is held by another operation")

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.position_id,)


class SlippageExceeded(RebalanceError):
    """
    The simulated swap moves the price (or returns an amount) outside the configured tolerance.
    """

    def __init__(self, message: str = "Simulated swap exceeds the slippage tolerance.") -> None:
        self.message = message
        super().__init__(message=message)

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.message,)


class SolverDidNotConverge(RebalanceError):
    def __init__(self, message: str = "Solver failed to converge on a solution.") -> None:
        self.message = message
        super().__init__(message=message)

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.message,)


class InsufficientLiquidity(RebalanceError):
    """
    The post-swap amounts round to zero mintable liquidity in the target range.
    """

    def __init__(self, amount0: int, amount1: int) -> None:
        self.amount0 = amount0
        self.amount1 = amount1
        super().__init__(
            message=f"Amounts ({amount0}, {amount1}) produce zero liquidity in the target range"
        )

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.amount0, self.amount1)


class Aborted(RebalanceError):
    """
    Raised when a stage fails after at least one earlier stage succeeded. All recorded stages have
    been rolled back by the time this is raised, and the failure is chained as `__cause__`.
    """

    def __init__(self, stage: str, error: str) -> None:
        self.stage = stage
        self.error = error
        super().__init__(message=f"Rebalance aborted during {stage}: {error}")

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.stage, self.error)
