import dataclasses
from collections.abc import Iterator
from typing import Self

import pydantic
from eth_typing import ChecksumAddress

from rebalancer.types.aliases import BlockNumber, Liquidity, Pip, PositionId, SqrtPriceX96, Tick
from rebalancer.validation.evm_values import (
    ValidatedInt24,
    ValidatedInt128,
    ValidatedUint24,
    ValidatedUint128,
    ValidatedUint256,
)


class UniswapV3LiquidityAtTick(pydantic.BaseModel, frozen=True):
    liquidity_net: ValidatedInt128
    liquidity_gross: ValidatedUint128
    fee_growth_outside0_x128: ValidatedUint256 = 0
    fee_growth_outside1_x128: ValidatedUint256 = 0


type LiquidityMap = dict[Tick, UniswapV3LiquidityAtTick]


@dataclasses.dataclass(slots=True, frozen=True, kw_only=True)
class UniswapV3PoolState:
    """
    An immutable snapshot of a pool. Any read of a pool returns a new snapshot, and a snapshot taken
    before a swap must not be used to size a deposit made after it.
    """

    address: ChecksumAddress
    block: BlockNumber | None = None
    token0: ChecksumAddress
    token1: ChecksumAddress
    fee: Pip
    tick_spacing: int
    liquidity: Liquidity
    sqrt_price_x96: SqrtPriceX96
    tick: Tick
    tick_data: LiquidityMap = dataclasses.field(default_factory=dict)
    fee_growth_global0_x128: int = 0
    fee_growth_global1_x128: int = 0


@dataclasses.dataclass(slots=True, frozen=True)
class UniswapV3SwapResult:
    """
    The outcome of a swap calculation. Deltas are signed from the pool's perspective: a positive
    amount was deposited to the pool, and a negative amount was sent to the swapper.
    """

    amount0_delta: int
    amount1_delta: int
    initial_state: UniswapV3PoolState
    final_state: UniswapV3PoolState

    @property
    def amount_in(self) -> int:
        return max(self.amount0_delta, self.amount1_delta)

    @property
    def amount_out(self) -> int:
        return -min(self.amount0_delta, self.amount1_delta)


@dataclasses.dataclass(slots=True, frozen=True)
class TickRange:
    lower: Tick
    upper: Tick

    def __post_init__(self) -> None:
        assert self.lower < self.upper

    def __iter__(self) -> Iterator[Tick]:
        return iter((self.lower, self.upper))

    def contains(self, tick: Tick) -> bool:
        return self.lower <= tick < self.upper


class Position(pydantic.BaseModel, frozen=True):
    """
    A liquidity position held by the position manager.

    `tokens_owed0` and `tokens_owed1` hold principal released by a liquidity decrease that has not
    been collected yet. `fees_owed0` and `fees_owed1` hold swap fees accrued by the position.
    """

    position_id: ValidatedUint256
    owner: ChecksumAddress
    operator: ChecksumAddress | None = None
    token0: ChecksumAddress
    token1: ChecksumAddress
    fee: ValidatedUint24
    tick_lower: ValidatedInt24
    tick_upper: ValidatedInt24
    liquidity: ValidatedUint128
    fee_growth_inside0_last_x128: ValidatedUint256 = 0
    fee_growth_inside1_last_x128: ValidatedUint256 = 0
    tokens_owed0: ValidatedUint128 = 0
    tokens_owed1: ValidatedUint128 = 0
    fees_owed0: ValidatedUint128 = 0
    fees_owed1: ValidatedUint128 = 0

    @pydantic.model_validator(mode="after")
    def check_tick_order(self) -> Self:
        if self.tick_lower >= self.tick_upper:
            raise ValueError(f"tick_lower ({self.tick_lower}) must be below {self.tick_upper}")
        return self

    @property
    def is_empty(self) -> bool:
        return self.liquidity == 0 and not any(
            (self.tokens_owed0, self.tokens_owed1, self.fees_owed0, self.fees_owed1)
        )

    @property
    def amount0_owed(self) -> int:
        return self.tokens_owed0 + self.fees_owed0

    @property
    def amount1_owed(self) -> int:
        return self.tokens_owed1 + self.fees_owed1


class MintParams(pydantic.BaseModel, frozen=True):
    token0: ChecksumAddress
    token1: ChecksumAddress
    fee: ValidatedUint24
    tick_lower: ValidatedInt24
    tick_upper: ValidatedInt24
    amount0_desired: ValidatedUint256
    amount1_desired: ValidatedUint256
    amount0_min: ValidatedUint256 = 0
    amount1_min: ValidatedUint256 = 0
    recipient: ChecksumAddress
    payer: ChecksumAddress


@dataclasses.dataclass(slots=True, frozen=True)
class MintResult:
    position_id: PositionId
    liquidity: Liquidity
    amount0: int
    amount1: int
