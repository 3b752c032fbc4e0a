from decimal import Decimal
from fractions import Fraction
from math import isqrt

from rebalancer.exceptions import InvalidRange, RebalancerValueError
from rebalancer.types.aliases import SqrtPriceX96, Tick
from rebalancer.uniswap.v3_libraries.tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)
from rebalancer.uniswap.v3_types import TickRange

# Tick spacing enabled by the factory for each fee tier (pips). The original deployment enables
# 500, 3000 and 10000, and the 100 tier was added later by governance.
FEE_TIER_TICK_SPACING: dict[int, int] = {
    100: 1,
    500: 10,
    3000: 60,
    10000: 200,
}


def exchange_rate_from_sqrt_price_x96(sqrt_price_x96: SqrtPriceX96) -> Fraction:
    # ref: https://blog.uniswap.org/uniswap-v3-math-primer
    return Fraction(sqrt_price_x96**2, 2**192)


def _to_fraction(price: int | str | Decimal | Fraction) -> Fraction:
    match price:
        case Fraction():
            return price
        case int() | Decimal():
            return Fraction(price)
        case str():
            return Fraction(Decimal(price))
        case _:
            raise RebalancerValueError(message=f"Unsupported price type {type(price).__name__}")


def encode_sqrt_price_x96(
    price: int | str | Decimal | Fraction,
    decimals0: int = 0,
    decimals1: int = 0,
) -> SqrtPriceX96:
    """
    Encode a token1/token0 price as a Q64.96 square root, rounded down.

    The price may be given in whole-token units by supplying the token decimals, e.g. a WETH/DAI
    price of 2000 DAI per WETH with 18 decimals each. The conversion is exact: no floating point
    values are used, so the result matches an on-chain computation for the same rational price.
    """

    ratio = _to_fraction(price) * Fraction(10**decimals1, 10**decimals0)
    if ratio <= 0:
        raise RebalancerValueError(message=f"Price must be positive, got {price}")

    return isqrt((ratio.numerator << 192) // ratio.denominator)


def price_to_tick(
    price: int | str | Decimal | Fraction,
    decimals0: int = 0,
    decimals1: int = 0,
) -> Tick:
    """
    Find the tick for a token1/token0 price, equal to floor(log_1.0001(price)).

    The tick is derived through the bit-exact `get_tick_at_sqrt_ratio`, so it agrees with the tick a
    pool would report at the same square root price.
    """

    sqrt_price_x96 = encode_sqrt_price_x96(price, decimals0, decimals1)
    if not (MIN_SQRT_RATIO <= sqrt_price_x96 < MAX_SQRT_RATIO):
        raise RebalancerValueError(message=f"Price {price} is outside the representable range")
    return get_tick_at_sqrt_ratio(sqrt_price_x96)


def get_sqrt_price_at_tick(tick: Tick) -> SqrtPriceX96:
    return get_sqrt_ratio_at_tick(tick)


def tick_to_price(tick: Tick) -> Fraction:
    return exchange_rate_from_sqrt_price_x96(get_sqrt_ratio_at_tick(tick))


def round_tick_to_spacing(tick: Tick, tick_spacing: int) -> Tick:
    """
    Round the tick down to the nearest multiple of the tick spacing.
    """

    return (tick // tick_spacing) * tick_spacing


def get_min_usable_tick(tick_spacing: int) -> Tick:
    return -(MAX_TICK // tick_spacing) * tick_spacing


def get_max_usable_tick(tick_spacing: int) -> Tick:
    return (MAX_TICK // tick_spacing) * tick_spacing


def normalize_range(tick_a: Tick, tick_b: Tick, tick_spacing: int) -> TickRange:
    """
    Build a range from two ticks supplied in either order.

    Raises `InvalidRange` if the ticks are equal, either tick is not a multiple of the tick spacing,
    or either tick lies outside [MIN_TICK, MAX_TICK].
    """

    tick_lower, tick_upper = min(tick_a, tick_b), max(tick_a, tick_b)

    if tick_lower == tick_upper:
        raise InvalidRange(tick_lower, tick_upper, "ticks are equal")
    if tick_lower < MIN_TICK or tick_upper > MAX_TICK:
        raise InvalidRange(tick_lower, tick_upper, f"outside [{MIN_TICK}, {MAX_TICK}]")
    if tick_lower % tick_spacing != 0 or tick_upper % tick_spacing != 0:
        raise InvalidRange(tick_lower, tick_upper, f"not aligned to tick spacing {tick_spacing}")

    return TickRange(lower=tick_lower, upper=tick_upper)
