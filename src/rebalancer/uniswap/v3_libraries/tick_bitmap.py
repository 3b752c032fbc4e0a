from collections.abc import Generator
from functools import cache
from itertools import count

from rebalancer.exceptions import RebalancerValueError
from rebalancer.types.aliases import Tick
from rebalancer.uniswap.v3_types import LiquidityMap


@cache
def position(tick: int) -> tuple[int, int]:
    """
    Computes the position in the tick initialization bitmap for the given compressed tick.
    """
    return (
        tick >> 8,  # word_pos
        tick % 256,  # bit_pos
    )


def gen_ticks(
    tick_data: LiquidityMap,
    starting_tick: Tick,
    tick_spacing: int,
    less_than_or_equal: bool,
) -> Generator[tuple[Tick, bool], None, None]:
    """
    Yields the ticks a swap visits: the 256-tick word boundaries the Solidity bitmap search would
    stop at, merged with the initialized ticks found in the liquidity mapping. The ticks are yielded
    in descending order when `less_than_or_equal` is True, else ascending, each paired with its
    initialization status.

    The liquidity mapping must be complete, since any tick missing from it is treated as
    uninitialized.
    """

    if tick_spacing <= 0:
        raise RebalancerValueError(message=f"Invalid tick spacing {tick_spacing}")

    # Python rounds down to negative infinity, so use it directly instead of the abs and modulo
    # implementation of the Solidity contract
    compressed = starting_tick // tick_spacing
    word_pos, _ = position(compressed)

    # The boundary ticks for each word are at the 0th and 255th bits.
    # On the way down (less_than_or_equal=True), start at the 0th bit.
    # On the way up (less_than_or_equal=False), start at the 255th bit.
    if less_than_or_equal:
        step_distance = -256 * tick_spacing
        first_boundary_tick = tick_spacing * 256 * word_pos
    else:
        step_distance = 256 * tick_spacing
        first_boundary_tick = tick_spacing * (256 * word_pos + 255)
        if starting_tick >= first_boundary_tick:
            # Special case: starting tick on the first word boundary, begin at the next word
            first_boundary_tick += 256 * tick_spacing
    boundary_ticks_iter = count(
        start=first_boundary_tick,
        step=step_distance,
    )

    initialized_ticks_iter = iter(
        sorted((tick for tick in tick_data if tick <= starting_tick), reverse=True)
        if less_than_or_equal
        else sorted(tick for tick in tick_data if tick > starting_tick)
    )

    next_initialized_tick = next(initialized_ticks_iter, None)
    next_boundary_tick = next(boundary_ticks_iter)

    def _nearer(a: int, b: int) -> bool:
        return a > b if less_than_or_equal else a < b

    while next_initialized_tick is not None:
        if _nearer(next_initialized_tick, next_boundary_tick):
            yield (next_initialized_tick, True)
            next_initialized_tick = next(initialized_ticks_iter, None)
        elif _nearer(next_boundary_tick, next_initialized_tick):
            yield (next_boundary_tick, False)
            next_boundary_tick = next(boundary_ticks_iter)
        else:
            # The next initialized tick lies on a boundary, so advance both iterators
            yield (next_boundary_tick, True)
            next_initialized_tick = next(initialized_ticks_iter, None)
            next_boundary_tick = next(boundary_ticks_iter)

    # Then yield uninitialized boundary ticks forever
    while True:
        yield (next_boundary_tick, False)
        next_boundary_tick = next(boundary_ticks_iter)
