from . import (
    v3_libraries as v3_libraries,
)  # excluded from __all__ so it doesn't bubble back up to the top level package namespace
from .v3_liquidity_pool import UniswapV3Pool, calculate_swap
from .v3_pool_reader import UniswapV3PoolReader, fetch_pool_state
from .v3_position_manager import UniswapV3PositionManager
from .v3_router import UniswapV3Router
from .v3_types import (
    MintParams,
    MintResult,
    Position,
    TickRange,
    UniswapV3LiquidityAtTick,
    UniswapV3PoolState,
    UniswapV3SwapResult,
)

__all__ = (
    "MintParams",
    "MintResult",
    "Position",
    "TickRange",
    "UniswapV3LiquidityAtTick",
    "UniswapV3Pool",
    "UniswapV3PoolReader",
    "UniswapV3PoolState",
    "UniswapV3PositionManager",
    "UniswapV3Router",
    "UniswapV3SwapResult",
    "calculate_swap",
    "fetch_pool_state",
)
