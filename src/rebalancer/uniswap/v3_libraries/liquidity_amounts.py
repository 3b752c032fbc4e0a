"""
Conversions between token amounts and liquidity for a price range, adapted from the Uniswap V3
periphery library.

ref: https://github.com/Uniswap/v3-periphery/blob/main/contracts/libraries/LiquidityAmounts.sol

Amounts are allocated by the position of the current price relative to the range:
    - at or below the lower bound, the position holds only token0
    - at or above the upper bound, the position holds only token1
    - inside the range, the position holds both

All results round down, so converting amounts to liquidity and back never returns more than the
amounts supplied. For a single-sided position, the shortfall after a round trip is at most the
value of one unit of liquidity in that token (rounded up) plus `ROUNDING_TOLERANCE` wei. For a
two-sided position the non-binding token can lose more, since liquidity is bounded by the scarcer
side.
"""

from rebalancer.types.aliases import Liquidity, SqrtPriceX96
from rebalancer.uniswap.v3_libraries.constants import Q96, Q96_RESOLUTION
from rebalancer.uniswap.v3_libraries.full_math import muldiv
from rebalancer.uniswap.v3_libraries.functions import to_uint128

ROUNDING_TOLERANCE = 2


def _sorted(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int) -> tuple[int, int]:
    return (
        (sqrt_ratio_b_x96, sqrt_ratio_a_x96)
        if sqrt_ratio_a_x96 > sqrt_ratio_b_x96
        else (sqrt_ratio_a_x96, sqrt_ratio_b_x96)
    )


def get_liquidity_for_amount0(
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    amount0: int,
) -> Liquidity:
    """
    Compute the liquidity received for a given amount of token0 and price range.

    Calculates amount0 * (sqrt(upper) * sqrt(lower)) / (sqrt(upper) - sqrt(lower))
    """

    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)
    intermediate = muldiv(sqrt_ratio_a_x96, sqrt_ratio_b_x96, Q96)
    return to_uint128(muldiv(amount0, intermediate, sqrt_ratio_b_x96 - sqrt_ratio_a_x96))


def get_liquidity_for_amount1(
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    amount1: int,
) -> Liquidity:
    """
    Compute the liquidity received for a given amount of token1 and price range.

    Calculates amount1 / (sqrt(upper) - sqrt(lower))
    """

    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)
    return to_uint128(muldiv(amount1, Q96, sqrt_ratio_b_x96 - sqrt_ratio_a_x96))


def get_liquidity_for_amounts(
    sqrt_ratio_x96: SqrtPriceX96,
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    amount0: int,
    amount1: int,
) -> Liquidity:
    """
    Compute the maximum liquidity received for the given amounts of token0 and token1, the current
    pool price and the prices at the tick boundaries.
    """

    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)

    if sqrt_ratio_x96 <= sqrt_ratio_a_x96:
        return get_liquidity_for_amount0(sqrt_ratio_a_x96, sqrt_ratio_b_x96, amount0)
    if sqrt_ratio_x96 < sqrt_ratio_b_x96:
        return min(
            get_liquidity_for_amount0(sqrt_ratio_x96, sqrt_ratio_b_x96, amount0),
            get_liquidity_for_amount1(sqrt_ratio_a_x96, sqrt_ratio_x96, amount1),
        )
    return get_liquidity_for_amount1(sqrt_ratio_a_x96, sqrt_ratio_b_x96, amount1)


def get_amount0_for_liquidity(
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    liquidity: Liquidity,
) -> int:
    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)
    return (
        muldiv(
            liquidity << Q96_RESOLUTION,
            sqrt_ratio_b_x96 - sqrt_ratio_a_x96,
            sqrt_ratio_b_x96,
        )
        // sqrt_ratio_a_x96
    )


def get_amount1_for_liquidity(
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    liquidity: Liquidity,
) -> int:
    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)
    return muldiv(liquidity, sqrt_ratio_b_x96 - sqrt_ratio_a_x96, Q96)


def get_amounts_for_liquidity(
    sqrt_ratio_x96: SqrtPriceX96,
    sqrt_ratio_a_x96: SqrtPriceX96,
    sqrt_ratio_b_x96: SqrtPriceX96,
    liquidity: Liquidity,
) -> tuple[int, int]:
    """
    Compute the token0 and token1 value for a given amount of liquidity, the current pool price and
    the prices at the tick boundaries.
    """

    sqrt_ratio_a_x96, sqrt_ratio_b_x96 = _sorted(sqrt_ratio_a_x96, sqrt_ratio_b_x96)

    if sqrt_ratio_x96 <= sqrt_ratio_a_x96:
        return get_amount0_for_liquidity(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity), 0
    if sqrt_ratio_x96 < sqrt_ratio_b_x96:
        return (
            get_amount0_for_liquidity(sqrt_ratio_x96, sqrt_ratio_b_x96, liquidity),
            get_amount1_for_liquidity(sqrt_ratio_a_x96, sqrt_ratio_x96, liquidity),
        )
    return 0, get_amount1_for_liquidity(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity)
