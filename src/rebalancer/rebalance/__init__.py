from .custody import PositionCustody
from .journal import RollbackLog, StateJournal
from .minter import PositionMinter
from .orchestrator import Rebalancer
from .solver import RebalanceSolver
from .types import Holdings, RebalanceResult, RebalanceStage, SwapDirection, SwapPlan
from .withdrawer import PositionWithdrawer

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
    "StateJournal",
    "SwapDirection",
    "SwapPlan",
)
