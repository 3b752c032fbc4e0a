from rebalancer.exceptions.base import RebalancerError, RebalancerTypeError, RebalancerValueError
from rebalancer.exceptions.evm import EVMRevertError
from rebalancer.exceptions.liquidity_pool import (
    IncompleteSwap,
    InsufficientBalance,
    LiquidityPoolError,
)
from rebalancer.exceptions.rebalance import (
    Aborted,
    InsufficientLiquidity,
    InvalidRange,
    NotOwner,
    PositionLocked,
    PositionNotFound,
    RebalanceError,
    SlippageExceeded,
    SolverDidNotConverge,
)

from . import evm, liquidity_pool, rebalance

__all__ = (
    "Aborted",
    "EVMRevertError",
    "IncompleteSwap",
    "InsufficientBalance",
    "InsufficientLiquidity",
    "InvalidRange",
    "LiquidityPoolError",
    "NotOwner",
    "PositionLocked",
    "PositionNotFound",
    "RebalanceError",
    "RebalancerError",
    "RebalancerTypeError",
    "RebalancerValueError",
    "SlippageExceeded",
    "SolverDidNotConverge",
    "evm",
    "liquidity_pool",
    "rebalance",
)
