from decimal import Decimal, getcontext

import pytest

from rebalancer.constants import MAX_UINT128, MAX_UINT256
from rebalancer.exceptions.evm import EVMRevertError
from rebalancer.uniswap.v3_libraries.sqrt_price_math import (
    get_amount0_delta,
    get_amount1_delta,
    get_next_sqrt_price_from_input,
    get_next_sqrt_price_from_output,
)

# Vectors from the Typescript tests on Uniswap V3 Github repo
# ref: https://github.com/Uniswap/v3-core/blob/main/test/SqrtPriceMath.spec.ts

getcontext().prec = 40
getcontext().rounding = "ROUND_FLOOR"


def expand_to_18_decimals(x: int) -> int:
    return x * 10**18


def encode_price_sqrt(reserve1: int, reserve0: int) -> int:
    """
    Returns the sqrt price as a Q64.96 value
    """
    return int((Decimal(reserve1) / Decimal(reserve0)).sqrt() * Decimal(2**96))


def test_get_next_sqrt_price_from_input() -> None:
    with pytest.raises(EVMRevertError, match="required: sqrt_price_x96 > 0"):
        get_next_sqrt_price_from_input(
            sqrt_price_x96=0,
            liquidity=1,
            amount_in=expand_to_18_decimals(1) // 10,
            zero_for_one=False,
        )

    with pytest.raises(EVMRevertError, match="required: liquidity > 0"):
        get_next_sqrt_price_from_input(
            sqrt_price_x96=1,
            liquidity=0,
            amount_in=expand_to_18_decimals(1) // 10,
            zero_for_one=True,
        )

    # input amount overflows the price
    with pytest.raises(EVMRevertError):
        get_next_sqrt_price_from_input(
            sqrt_price_x96=2**160 - 1,
            liquidity=1024,
            amount_in=1024,
            zero_for_one=False,
        )

    price = encode_price_sqrt(1, 1)
    for zero_for_one in (True, False):
        assert (
            get_next_sqrt_price_from_input(
                sqrt_price_x96=price,
                liquidity=expand_to_18_decimals(1) // 10,
                amount_in=0,
                zero_for_one=zero_for_one,
            )
            == price
        )

    # minimum price for max inputs
    sqrt_p = 2**160 - 1
    max_amount_no_overflow = MAX_UINT256 - ((MAX_UINT128 << 96) // sqrt_p)
    assert (
        get_next_sqrt_price_from_input(
            sqrt_price_x96=sqrt_p,
            liquidity=MAX_UINT128,
            amount_in=max_amount_no_overflow,
            zero_for_one=True,
        )
        == 1
    )

    # input amount of 0.1 token1
    assert (
        get_next_sqrt_price_from_input(
            sqrt_price_x96=encode_price_sqrt(1, 1),
            liquidity=expand_to_18_decimals(1),
            amount_in=expand_to_18_decimals(1) // 10,
            zero_for_one=False,
        )
        == 87150978765690771352898345369
    )

    # input amount of 0.1 token0
    assert (
        get_next_sqrt_price_from_input(
            sqrt_price_x96=encode_price_sqrt(1, 1),
            liquidity=expand_to_18_decimals(1),
            amount_in=expand_to_18_decimals(1) // 10,
            zero_for_one=True,
        )
        == 72025602285694852357767227579
    )


def test_get_next_sqrt_price_from_output() -> None:
    with pytest.raises(EVMRevertError, match="required: sqrt_price_x96 > 0"):
        get_next_sqrt_price_from_output(
            sqrt_price_x96=0,
            liquidity=1,
            amount_out=expand_to_18_decimals(1) // 10,
            zero_for_one=False,
        )

    with pytest.raises(EVMRevertError, match="required: liquidity must be > 0"):
        get_next_sqrt_price_from_output(
            sqrt_price_x96=1,
            liquidity=0,
            amount_out=expand_to_18_decimals(1) // 10,
            zero_for_one=True,
        )

    # output amount is exactly the virtual reserves of token0
    with pytest.raises(EVMRevertError):
        get_next_sqrt_price_from_output(
            sqrt_price_x96=20282409603651670423947251286016,
            liquidity=1024,
            amount_out=4,
            zero_for_one=False,
        )

    # output amount of 0.1 token1
    assert (
        get_next_sqrt_price_from_output(
            sqrt_price_x96=encode_price_sqrt(1, 1),
            liquidity=expand_to_18_decimals(1),
            amount_out=expand_to_18_decimals(1) // 10,
            zero_for_one=True,
        )
        == 71305346262837903834189555302
    )


def test_get_amount0_delta() -> None:
    assert (
        get_amount0_delta(
            sqrt_ratio_a_x96=encode_price_sqrt(1, 1),
            sqrt_ratio_b_x96=encode_price_sqrt(2, 1),
            liquidity=0,
            round_up=True,
        )
        == 0
    )

    amount0 = get_amount0_delta(
        sqrt_ratio_a_x96=encode_price_sqrt(1, 1),
        sqrt_ratio_b_x96=encode_price_sqrt(121, 100),
        liquidity=expand_to_18_decimals(1),
        round_up=True,
    )
    assert amount0 == 90909090909090910

    amount0_rounded_down = get_amount0_delta(
        sqrt_ratio_a_x96=encode_price_sqrt(1, 1),
        sqrt_ratio_b_x96=encode_price_sqrt(121, 100),
        liquidity=expand_to_18_decimals(1),
        round_up=False,
    )
    assert amount0_rounded_down == amount0 - 1


def test_get_amount1_delta() -> None:
    amount1 = get_amount1_delta(
        sqrt_ratio_a_x96=encode_price_sqrt(1, 1),
        sqrt_ratio_b_x96=encode_price_sqrt(121, 100),
        liquidity=expand_to_18_decimals(1),
        round_up=True,
    )
    assert amount1 == 100000000000000000

    amount1_rounded_down = get_amount1_delta(
        sqrt_ratio_a_x96=encode_price_sqrt(1, 1),
        sqrt_ratio_b_x96=encode_price_sqrt(121, 100),
        liquidity=expand_to_18_decimals(1),
        round_up=False,
    )
    assert amount1_rounded_down == amount1 - 1


def test_signed_deltas_round_against_the_caller() -> None:
    sqrt_a = encode_price_sqrt(1, 1)
    sqrt_b = encode_price_sqrt(121, 100)
    liquidity = expand_to_18_decimals(1)

    # adding liquidity is charged rounded up, removing it pays out rounded down
    assert get_amount0_delta(sqrt_a, sqrt_b, liquidity) == 90909090909090910
    assert get_amount0_delta(sqrt_a, sqrt_b, -liquidity) == -90909090909090909
    assert get_amount1_delta(sqrt_a, sqrt_b, liquidity) == 100000000000000000
    assert get_amount1_delta(sqrt_a, sqrt_b, -liquidity) == -99999999999999999


def test_swap_computation() -> None:
    sqrt_p = 1025574284609383690408304870162715216695788925244
    liquidity = 50015962439936049619261659728067971248
    sqrt_q = get_next_sqrt_price_from_input(
        sqrt_price_x96=sqrt_p,
        liquidity=liquidity,
        amount_in=406,
        zero_for_one=True,
    )
    assert sqrt_q == 1025574284609383582644711336373707553698163132913

    assert (
        get_amount0_delta(
            sqrt_ratio_a_x96=sqrt_q,
            sqrt_ratio_b_x96=sqrt_p,
            liquidity=liquidity,
            round_up=True,
        )
        == 406
    )
