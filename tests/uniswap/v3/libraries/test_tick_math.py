from decimal import Decimal, getcontext
from math import floor, log

import hypothesis
import hypothesis.strategies
import pytest

from rebalancer.constants import MAX_UINT160, MIN_UINT160
from rebalancer.exceptions.evm import EVMRevertError
from rebalancer.uniswap.v3_libraries.tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)

# Tests adapted from Typescript tests on Uniswap V3 Github repo
# ref: https://github.com/Uniswap/v3-core/blob/main/test/TickMath.spec.ts

getcontext().prec = 256
getcontext().rounding = "ROUND_FLOOR"


def encode_price_sqrt(reserve1: int, reserve0: int) -> int:
    """
    Returns the sqrt price as a Q64.96 value
    """
    return round((Decimal(reserve1) / Decimal(reserve0)).sqrt() * Decimal(2**96))


def test_get_sqrt_ratio_at_tick() -> None:
    with pytest.raises(EVMRevertError, match="abs_tick <= MAX_TICK"):
        get_sqrt_ratio_at_tick(MIN_TICK - 1)

    with pytest.raises(EVMRevertError, match="abs_tick <= MAX_TICK"):
        get_sqrt_ratio_at_tick(MAX_TICK + 1)

    assert get_sqrt_ratio_at_tick(MIN_TICK) == 4295128739
    assert get_sqrt_ratio_at_tick(MIN_TICK + 1) == 4295343490
    assert get_sqrt_ratio_at_tick(MAX_TICK - 1) == 1461373636630004318706518188784493106690254656249
    assert get_sqrt_ratio_at_tick(MAX_TICK) == 1461446703485210103287273052203988822378723970342

    assert get_sqrt_ratio_at_tick(MIN_TICK) < encode_price_sqrt(1, 2**127)
    assert get_sqrt_ratio_at_tick(MAX_TICK) > encode_price_sqrt(2**127, 1)

    assert get_sqrt_ratio_at_tick(0) == 2**96


def test_min_and_max_sqrt_ratio() -> None:
    assert get_sqrt_ratio_at_tick(MIN_TICK) == MIN_SQRT_RATIO
    assert get_sqrt_ratio_at_tick(MAX_TICK) == MAX_SQRT_RATIO


def test_get_tick_at_sqrt_ratio() -> None:
    for invalid_ratio in (
        MIN_UINT160 - 1,
        MAX_UINT160 + 1,
        MIN_SQRT_RATIO - 1,
        MAX_SQRT_RATIO,
    ):
        with pytest.raises(EVMRevertError, match="R"):
            get_tick_at_sqrt_ratio(invalid_ratio)

    assert get_tick_at_sqrt_ratio(MIN_SQRT_RATIO) == MIN_TICK
    assert get_tick_at_sqrt_ratio(4295343490) == MIN_TICK + 1
    assert get_tick_at_sqrt_ratio(1461373636630004318706518188784493106690254656249) == MAX_TICK - 1
    assert get_tick_at_sqrt_ratio(MAX_SQRT_RATIO - 1) == MAX_TICK - 1


@pytest.mark.parametrize(
    "ratio",
    [
        MIN_SQRT_RATIO,
        encode_price_sqrt(10**12, 1),
        encode_price_sqrt(10**6, 1),
        encode_price_sqrt(1, 64),
        encode_price_sqrt(1, 8),
        encode_price_sqrt(1, 2),
        encode_price_sqrt(1, 1),
        encode_price_sqrt(2, 1),
        encode_price_sqrt(8, 1),
        encode_price_sqrt(64, 1),
        encode_price_sqrt(1, 10**6),
        encode_price_sqrt(1, 10**12),
        MAX_SQRT_RATIO - 1,
    ],
)
def test_get_tick_at_sqrt_ratio_matches_log(ratio: int) -> None:
    tick = get_tick_at_sqrt_ratio(ratio)

    price = (Decimal(ratio) / Decimal(2**96)) ** 2
    expected = floor(log(price, 1.0001))
    assert abs(tick - expected) <= 1

    # the tick is the greatest tick whose ratio does not exceed the input
    assert get_sqrt_ratio_at_tick(tick) <= ratio
    assert get_sqrt_ratio_at_tick(tick + 1) > ratio


@hypothesis.given(tick=hypothesis.strategies.integers(min_value=MIN_TICK, max_value=MAX_TICK - 1))
def test_tick_round_trip(tick: int) -> None:
    assert get_tick_at_sqrt_ratio(get_sqrt_ratio_at_tick(tick)) == tick


@hypothesis.given(tick=hypothesis.strategies.integers(min_value=MIN_TICK, max_value=MAX_TICK - 1))
def test_sqrt_ratio_is_strictly_increasing(tick: int) -> None:
    assert get_sqrt_ratio_at_tick(tick) < get_sqrt_ratio_at_tick(tick + 1)
