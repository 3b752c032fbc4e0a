"""
Tick state helpers, adapted from the Uniswap V3 Tick.sol library. The functions operate on a
mapping of initialized ticks, replacing entries in place since the entries themselves are frozen.

ref: https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/Tick.sol
"""

from rebalancer.constants import MAX_UINT128, MAX_UINT256
from rebalancer.exceptions import EVMRevertError
from rebalancer.functions import evm_divide
from rebalancer.types.aliases import Liquidity, Tick
from rebalancer.uniswap.v3_libraries.functions import to_int128
from rebalancer.uniswap.v3_libraries.liquidity_math import add_delta
from rebalancer.uniswap.v3_libraries.tick_math import MAX_TICK, MIN_TICK
from rebalancer.uniswap.v3_types import LiquidityMap, UniswapV3LiquidityAtTick

_UINT256_MODULUS = MAX_UINT256 + 1


def tick_spacing_to_max_liquidity_per_tick(tick_spacing: int) -> int:
    min_tick = evm_divide(MIN_TICK, tick_spacing) * tick_spacing
    max_tick = (MAX_TICK // tick_spacing) * tick_spacing
    num_ticks = (max_tick - min_tick) // tick_spacing + 1
    return MAX_UINT128 // num_ticks


def get_fee_growth_inside(
    tick_data: LiquidityMap,
    tick_lower: Tick,
    tick_upper: Tick,
    tick_current: Tick,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
) -> tuple[int, int]:
    """
    Retrieve the all-time fee growth per unit of liquidity inside the given range. The values
    overflow like uint256, so only differences between two readings are meaningful.
    """

    empty = UniswapV3LiquidityAtTick(liquidity_net=0, liquidity_gross=0)
    lower = tick_data.get(tick_lower, empty)
    upper = tick_data.get(tick_upper, empty)

    if tick_current >= tick_lower:
        fee_growth_below0_x128 = lower.fee_growth_outside0_x128
        fee_growth_below1_x128 = lower.fee_growth_outside1_x128
    else:
        fee_growth_below0_x128 = fee_growth_global0_x128 - lower.fee_growth_outside0_x128
        fee_growth_below1_x128 = fee_growth_global1_x128 - lower.fee_growth_outside1_x128

    if tick_current < tick_upper:
        fee_growth_above0_x128 = upper.fee_growth_outside0_x128
        fee_growth_above1_x128 = upper.fee_growth_outside1_x128
    else:
        fee_growth_above0_x128 = fee_growth_global0_x128 - upper.fee_growth_outside0_x128
        fee_growth_above1_x128 = fee_growth_global1_x128 - upper.fee_growth_outside1_x128

    return (
        (fee_growth_global0_x128 - fee_growth_below0_x128 - fee_growth_above0_x128)
        % _UINT256_MODULUS,
        (fee_growth_global1_x128 - fee_growth_below1_x128 - fee_growth_above1_x128)
        % _UINT256_MODULUS,
    )


def update(
    tick_data: LiquidityMap,
    tick: Tick,
    tick_current: Tick,
    liquidity_delta: int,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
    upper: bool,
    max_liquidity: Liquidity,
) -> bool:
    """
    Apply a liquidity delta at a boundary tick. Returns True if the tick flipped between
    initialized and uninitialized.
    """

    info = tick_data.get(tick)
    liquidity_gross_before = info.liquidity_gross if info is not None else 0
    liquidity_gross_after = add_delta(liquidity_gross_before, liquidity_delta)

    if liquidity_gross_after > max_liquidity:
        raise EVMRevertError(error="LO")

    flipped = (liquidity_gross_after == 0) != (liquidity_gross_before == 0)

    if liquidity_gross_after == 0:
        tick_data.pop(tick, None)
        return flipped

    if info is None:
        # By convention, all growth before a tick was initialized happened below it
        fee_growth_outside0_x128, fee_growth_outside1_x128 = (
            (fee_growth_global0_x128, fee_growth_global1_x128) if tick <= tick_current else (0, 0)
        )
        liquidity_net = 0
    else:
        fee_growth_outside0_x128 = info.fee_growth_outside0_x128
        fee_growth_outside1_x128 = info.fee_growth_outside1_x128
        liquidity_net = info.liquidity_net

    tick_data[tick] = UniswapV3LiquidityAtTick(
        liquidity_net=to_int128(
            liquidity_net - liquidity_delta if upper else liquidity_net + liquidity_delta
        ),
        liquidity_gross=liquidity_gross_after,
        fee_growth_outside0_x128=fee_growth_outside0_x128,
        fee_growth_outside1_x128=fee_growth_outside1_x128,
    )
    return flipped


def cross(
    tick_data: LiquidityMap,
    tick: Tick,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
) -> int:
    """
    Transition to the next tick during a swap, flipping its outside fee growth. Returns the
    liquidity net of the crossed tick.
    """

    info = tick_data[tick]
    tick_data[tick] = info.model_copy(
        update={
            "fee_growth_outside0_x128": (fee_growth_global0_x128 - info.fee_growth_outside0_x128)
            % _UINT256_MODULUS,
            "fee_growth_outside1_x128": (fee_growth_global1_x128 - info.fee_growth_outside1_x128)
            % _UINT256_MODULUS,
        }
    )
    return info.liquidity_net
