from rebalancer.types.aliases import SqrtPriceX96
from rebalancer.uniswap.v3_libraries.full_math import muldiv, muldiv_rounding_up
from rebalancer.uniswap.v3_libraries.sqrt_price_math import (
    get_amount0_delta,
    get_amount1_delta,
    get_next_sqrt_price_from_input,
    get_next_sqrt_price_from_output,
)

"""
ref: https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/SwapMath.sol
"""

type AmountIn = int
type AmountOut = int
type FeeTaken = int

FEE_DENOMINATOR = 1_000_000


def _input_between(
    sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int, zero_for_one: bool
) -> int:
    # Input amounts round up, in favor of the pool
    delta = get_amount0_delta if zero_for_one else get_amount1_delta
    return delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity, True)


def _output_between(
    sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int, zero_for_one: bool
) -> int:
    delta = get_amount1_delta if zero_for_one else get_amount0_delta
    return delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity, False)


def compute_swap_step(
    sqrt_ratio_x96_current: int,
    sqrt_ratio_x96_target: int,
    liquidity: int,
    amount_remaining: int,
    fee_pips: int,
) -> tuple[SqrtPriceX96, AmountIn, AmountOut, FeeTaken]:
    """
    Compute the result of swapping `amount_remaining` within a single tick range, moving the price
    from `sqrt_ratio_x96_current` no further than `sqrt_ratio_x96_target`.

    A positive `amount_remaining` is an exact input (fees included), and a negative value is an
    exact output. Returns the next price, the amounts in and out, and the fee taken from the input.
    """

    assert liquidity >= 0

    zero_for_one = sqrt_ratio_x96_current >= sqrt_ratio_x96_target
    exact_in = amount_remaining >= 0

    if exact_in:
        amount_remaining_less_fee = muldiv(
            amount_remaining, FEE_DENOMINATOR - fee_pips, FEE_DENOMINATOR
        )
        amount_in = _input_between(
            sqrt_ratio_x96_target, sqrt_ratio_x96_current, liquidity, zero_for_one
        )
        sqrt_ratio_x96_next = (
            sqrt_ratio_x96_target
            if amount_remaining_less_fee >= amount_in
            else get_next_sqrt_price_from_input(
                sqrt_price_x96=sqrt_ratio_x96_current,
                liquidity=liquidity,
                amount_in=amount_remaining_less_fee,
                zero_for_one=zero_for_one,
            )
        )
        if sqrt_ratio_x96_next != sqrt_ratio_x96_target:
            amount_in = _input_between(
                sqrt_ratio_x96_next, sqrt_ratio_x96_current, liquidity, zero_for_one
            )
        amount_out = _output_between(
            sqrt_ratio_x96_next, sqrt_ratio_x96_current, liquidity, zero_for_one
        )
    else:
        amount_out = _output_between(
            sqrt_ratio_x96_target, sqrt_ratio_x96_current, liquidity, zero_for_one
        )
        sqrt_ratio_x96_next = (
            sqrt_ratio_x96_target
            if -amount_remaining >= amount_out
            else get_next_sqrt_price_from_output(
                sqrt_price_x96=sqrt_ratio_x96_current,
                liquidity=liquidity,
                amount_out=-amount_remaining,
                zero_for_one=zero_for_one,
            )
        )
        if sqrt_ratio_x96_next != sqrt_ratio_x96_target:
            amount_out = _output_between(
                sqrt_ratio_x96_next, sqrt_ratio_x96_current, liquidity, zero_for_one
            )
        amount_in = _input_between(
            sqrt_ratio_x96_next, sqrt_ratio_x96_current, liquidity, zero_for_one
        )
        # The output may not exceed the amount requested
        amount_out = min(amount_out, -amount_remaining)

    if exact_in and sqrt_ratio_x96_next != sqrt_ratio_x96_target:
        # The target was not reached, so the rest of the input is taken as the fee
        fee_amount = amount_remaining - amount_in
    else:
        fee_amount = muldiv_rounding_up(amount_in, fee_pips, FEE_DENOMINATOR - fee_pips)

    return sqrt_ratio_x96_next, amount_in, amount_out, fee_amount
