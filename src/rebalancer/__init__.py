from .checksum_cache import get_checksum_address
from .config import settings
from .version import __version__

# isort: split

from .logging import logger
from .rebalance import (
    Holdings,
    PositionCustody,
    PositionMinter,
    PositionWithdrawer,
    RebalanceResult,
    RebalanceSolver,
    RebalanceStage,
    Rebalancer,
    RollbackLog,
    StateJournal,
    SwapDirection,
    SwapPlan,
)
from .transaction import SimulationLedger
from .uniswap import (
    UniswapV3Pool,
    UniswapV3PoolReader,
    UniswapV3PoolState,
    UniswapV3PositionManager,
    UniswapV3Router,
)

__all__ = (
    "Holdings",
    "PositionCustody",
    "PositionMinter",
    "PositionWithdrawer",
    "RebalanceResult",
    "RebalanceSolver",
    "RebalanceStage",
    "Rebalancer",
    "RollbackLog",
    "SimulationLedger",
    "StateJournal",
    "SwapDirection",
    "SwapPlan",
    "UniswapV3Pool",
    "UniswapV3PoolReader",
    "UniswapV3PoolState",
    "UniswapV3PositionManager",
    "UniswapV3Router",
    "__version__",
    "get_checksum_address",
    "logger",
    "settings",
)
