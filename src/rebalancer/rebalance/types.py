import dataclasses
import enum
from typing import Any, Self

import pydantic
from eth_typing import ChecksumAddress

from rebalancer.exceptions import RebalancerValueError
from rebalancer.types.aliases import Liquidity, PositionId, SqrtPriceX96, Tick


@dataclasses.dataclass(slots=True, frozen=True)
class Holdings:
    """
    Token quantities awaiting a swap or a deposit. Both amounts are non-negative.
    """

    amount0: int = 0
    amount1: int = 0

    def __post_init__(self) -> None:
        if self.amount0 < 0 or self.amount1 < 0:
            raise RebalancerValueError(
                message=f"Holdings cannot be negative: ({self.amount0}, {self.amount1})"
            )

    def __add__(self, other: Self) -> Self:
        return type(self)(self.amount0 + other.amount0, self.amount1 + other.amount1)

    def __sub__(self, other: Self) -> Self:
        return type(self)(self.amount0 - other.amount0, self.amount1 - other.amount1)

    def __bool__(self) -> bool:
        return self.amount0 > 0 or self.amount1 > 0

    @property
    def is_single_sided(self) -> bool:
        return (self.amount0 == 0) != (self.amount1 == 0)


class SwapDirection(enum.Enum):
    ZERO_FOR_ONE = enum.auto()
    ONE_FOR_ZERO = enum.auto()

    @property
    def zero_for_one(self) -> bool:
        return self is SwapDirection.ZERO_FOR_ONE


@dataclasses.dataclass(slots=True, frozen=True, kw_only=True)
class SwapPlan:
    """
    A swap sized by the solver. The expected values come from simulating the swap against the pool
    state the solver was given; `min_amount_out` and `sqrt_price_limit_x96` bound the execution.
    """

    direction: SwapDirection
    amount_in: int
    min_amount_out: int
    expected_amount_out: int
    sqrt_price_limit_x96: SqrtPriceX96
    expected_sqrt_price_x96: SqrtPriceX96

    def apply(self, holdings: Holdings, amount_out: int) -> Holdings:
        """
        The holdings after executing this plan and receiving `amount_out`.
        """

        if self.direction.zero_for_one:
            return Holdings(holdings.amount0 - self.amount_in, holdings.amount1 + amount_out)
        return Holdings(holdings.amount0 + amount_out, holdings.amount1 - self.amount_in)


class RebalanceStage(enum.Enum):
    IDLE = enum.auto()
    WITHDRAWING = enum.auto()
    SOLVING = enum.auto()
    SWAPPING = enum.auto()
    DEPOSITING = enum.auto()
    SWEEPING = enum.auto()
    DONE = enum.auto()
    ABORTED = enum.auto()


class RebalanceResult(pydantic.BaseModel, frozen=True):
    old_position_id: PositionId
    new_position_id: PositionId
    owner: ChecksumAddress
    tick_lower: Tick
    tick_upper: Tick
    liquidity: Liquidity
    amount0_withdrawn: int
    amount1_withdrawn: int
    amount0_deposited: int
    amount1_deposited: int
    amount0_refunded: int
    amount1_refunded: int
    swap_direction: SwapDirection | None = None
    swap_amount_in: int = 0
    swap_amount_out: int = 0

    def as_event(self) -> dict[str, Any]:
        """
        The result as a JSON-ready dictionary, used for the audit log.
        """

        event = self.model_dump(mode="json")
        event["swap_direction"] = (
            self.swap_direction.name if self.swap_direction is not None else None
        )
        return event
