"""
Sizes the swap that converts withdrawn holdings into the token ratio required by a target range.

For a range [a, b] and a square root price p clamped to the range, one unit of liquidity holds
    u0 = (b - p) / (p * b)      units of token0
    u1 = (p - a)                units of token1
(with the Q96 scaling of the fixed-point prices applied). Holdings (x, y) fit the range exactly
when x * u1 == y * u0. The solver compares the two sides with exact rational arithmetic, and
measures the mismatch as the relative error |x * u1 - y * u0| / (x * u1 + y * u0).

Swapping token0 for token1 lowers x, raises y, and moves the price down, which lowers u1 and raises
u0. All four effects shrink x * u1 - y * u0, so the mismatch after a simulated swap is monotone in
the swap size, and the balancing size can be found by bisection over the source token balance. The
reverse direction is symmetric.
"""

from fractions import Fraction
from math import isqrt

from rebalancer.config import SolverSettings, settings
from rebalancer.exceptions import SlippageExceeded, SolverDidNotConverge
from rebalancer.logging import logger
from rebalancer.rebalance.types import Holdings, SwapDirection, SwapPlan
from rebalancer.types.aliases import SqrtPriceX96
from rebalancer.uniswap.v3_libraries.constants import Q96
from rebalancer.uniswap.v3_libraries.tick_math import (
    MAX_SQRT_RATIO,
    MIN_SQRT_RATIO,
    get_sqrt_ratio_at_tick,
)
from rebalancer.uniswap.v3_liquidity_pool import calculate_swap
from rebalancer.uniswap.v3_types import TickRange, UniswapV3PoolState, UniswapV3SwapResult


def amounts_per_unit_liquidity(
    sqrt_price_x96: SqrtPriceX96,
    sqrt_price_lower_x96: SqrtPriceX96,
    sqrt_price_upper_x96: SqrtPriceX96,
) -> tuple[Fraction, Fraction]:
    """
    The exact token0 and token1 amounts held by one unit of liquidity in the range at the given
    price. A price outside the range is clamped to the nearest boundary.
    """

    sqrt_price_x96 = min(max(sqrt_price_x96, sqrt_price_lower_x96), sqrt_price_upper_x96)
    return (
        Fraction(
            Q96 * (sqrt_price_upper_x96 - sqrt_price_x96),
            sqrt_price_x96 * sqrt_price_upper_x96,
        ),
        Fraction(sqrt_price_x96 - sqrt_price_lower_x96, Q96),
    )


def ratio_mismatch(
    holdings: Holdings,
    unit0: Fraction,
    unit1: Fraction,
) -> tuple[Fraction, Fraction]:
    """
    Return the signed excess (x * u1 - y * u0) and the relative error of the holdings against the
    per-unit-liquidity amounts. A positive excess means too much token0.
    """

    token0_side = holdings.amount0 * unit1
    token1_side = holdings.amount1 * unit0
    total = token0_side + token1_side
    if total == 0:
        return Fraction(0), Fraction(1)
    excess = token0_side - token1_side
    return excess, abs(excess) / total


class RebalanceSolver:
    def __init__(self, solver_settings: SolverSettings | None = None) -> None:
        self.settings = solver_settings if solver_settings is not None else settings.solver

    @property
    def tolerance(self) -> Fraction:
        return Fraction(self.settings.convergence_tolerance)

    @property
    def slippage_tolerance(self) -> Fraction:
        return Fraction(self.settings.slippage_tolerance)

    def solve(
        self,
        holdings: Holdings,
        pool_state: UniswapV3PoolState,
        tick_range: TickRange,
    ) -> SwapPlan | None:
        """
        Find the swap that brings the holdings to the ratio required by the range, evaluated at
        the price after the swap. Returns None if no swap is needed.

        A range that lies entirely on one side of the current price accepts a single token, so the
        plan converts the full balance of the other token without a search.

        Raises `SolverDidNotConverge` if the search does not finish within the iteration cap.
        Raises `SlippageExceeded` if the swap moves the price or the execution price outside the
        slippage band.
        """

        if not holdings:
            logger.debug("Nothing to balance, holdings are empty")
            return None

        sqrt_price_lower_x96 = get_sqrt_ratio_at_tick(tick_range.lower)
        sqrt_price_upper_x96 = get_sqrt_ratio_at_tick(tick_range.upper)
        sqrt_price_x96 = pool_state.sqrt_price_x96

        single_sided_direction: SwapDirection | None = None
        if sqrt_price_x96 <= sqrt_price_lower_x96:
            # Only token0 is accepted
            if holdings.amount1 == 0:
                return None
            single_sided_direction = SwapDirection.ONE_FOR_ZERO
            source_balance = holdings.amount1
        elif sqrt_price_x96 >= sqrt_price_upper_x96:
            # Only token1 is accepted
            if holdings.amount0 == 0:
                return None
            single_sided_direction = SwapDirection.ZERO_FOR_ONE
            source_balance = holdings.amount0

        if single_sided_direction is not None:
            result = self._simulate(pool_state, single_sided_direction, source_balance)
            final_sqrt_price_x96 = result.final_state.sqrt_price_x96
            if (
                final_sqrt_price_x96 <= sqrt_price_lower_x96
                if single_sided_direction is SwapDirection.ONE_FOR_ZERO
                else final_sqrt_price_x96 >= sqrt_price_upper_x96
            ):
                logger.debug(
                    f"Range [{tick_range.lower}, {tick_range.upper}] is single-sided, converting "
                    f"the full balance of {source_balance}"
                )
                return self._build_plan(pool_state, single_sided_direction, result)
            # The conversion itself moves the price into or past the range, so the range needs both
            # tokens at the execution price
            logger.debug("Full conversion moves the price into the range, searching instead")

        unit0, unit1 = amounts_per_unit_liquidity(
            sqrt_price_x96, sqrt_price_lower_x96, sqrt_price_upper_x96
        )
        excess, error = ratio_mismatch(holdings, unit0, unit1)
        if error <= self.tolerance:
            logger.debug(f"Holdings {holdings} already match the range (error {float(error):.3e})")
            return None

        direction = SwapDirection.ZERO_FOR_ONE if excess > 0 else SwapDirection.ONE_FOR_ZERO
        amount_in = self._bisect(
            holdings,
            pool_state,
            direction,
            sqrt_price_lower_x96,
            sqrt_price_upper_x96,
        )
        return self._build_plan(
            pool_state, direction, self._simulate(pool_state, direction, amount_in)
        )

    @staticmethod
    def _simulate(
        pool_state: UniswapV3PoolState,
        direction: SwapDirection,
        amount_in: int,
    ) -> UniswapV3SwapResult:
        return calculate_swap(
            pool_state,
            zero_for_one=direction.zero_for_one,
            amount_specified=amount_in,
        )

    def _bisect(
        self,
        holdings: Holdings,
        pool_state: UniswapV3PoolState,
        direction: SwapDirection,
        sqrt_price_lower_x96: SqrtPriceX96,
        sqrt_price_upper_x96: SqrtPriceX96,
    ) -> int:
        source_balance = holdings.amount0 if direction.zero_for_one else holdings.amount1
        if source_balance == 0:
            raise SolverDidNotConverge(
                message=f"No balance of the source token to swap {direction.name}"
            )

        # The excess starts positive for ZERO_FOR_ONE and negative for ONE_FOR_ZERO, and moves
        # toward zero as the swap grows
        sign = 1 if direction.zero_for_one else -1

        def evaluate(amount_in: int) -> tuple[Fraction, Fraction]:
            result = self._simulate(pool_state, direction, amount_in)
            swapped = (
                Holdings(
                    holdings.amount0 - result.amount_in,
                    holdings.amount1 + result.amount_out,
                )
                if direction.zero_for_one
                else Holdings(
                    holdings.amount0 + result.amount_out,
                    holdings.amount1 - result.amount_in,
                )
            )
            unit0, unit1 = amounts_per_unit_liquidity(
                result.final_state.sqrt_price_x96,
                sqrt_price_lower_x96,
                sqrt_price_upper_x96,
            )
            return ratio_mismatch(swapped, unit0, unit1)

        # Converting the whole balance leaves none of the source token in range, or pushes the
        # price past the range where only the target token counts, so the excess at the upper end
        # of the interval never has the starting sign and the bisection always brackets a root
        upper_error = evaluate(source_balance)[1]
        if upper_error <= self.tolerance:
            return source_balance

        low, high = 0, source_balance
        errors: dict[int, Fraction] = {high: upper_error}
        iterations = 0
        while high - low > 1:
            if iterations == self.settings.max_iterations:
                raise SolverDidNotConverge(
                    message=(
                        f"Solver did not converge within {iterations} iterations "
                        f"(interval [{low}, {high}])"
                    )
                )
            iterations += 1

            mid = (low + high) // 2
            excess, error = evaluate(mid)
            errors[mid] = error
            logger.debug(
                f"Solver iteration {iterations}: amount_in={mid}, error={float(error):.3e}"
            )

            if error <= self.tolerance:
                return mid
            if sign * excess > 0:
                low = mid
            else:
                high = mid

        # The interval collapsed to adjacent integers, so take the better of the two
        candidates = [amount for amount in (low, high) if amount > 0 and amount in errors]
        return min(candidates, key=lambda amount: errors[amount])

    def _build_plan(
        self,
        pool_state: UniswapV3PoolState,
        direction: SwapDirection,
        result: UniswapV3SwapResult,
    ) -> SwapPlan:
        tolerance = self.slippage_tolerance
        initial_sqrt_price_x96 = pool_state.sqrt_price_x96
        final_sqrt_price_x96 = result.final_state.sqrt_price_x96

        price_move = abs(Fraction(final_sqrt_price_x96**2, initial_sqrt_price_x96**2) - 1)
        if price_move > tolerance:
            raise SlippageExceeded(
                message=(
                    f"Swapping {result.amount_in} {direction.name} moves the price by "
                    f"{float(price_move):.4%}, above the tolerance of {float(tolerance):.4%}"
                )
            )

        # Value of the input at the pre-swap price, in units of the output token
        spot_value = (
            result.amount_in * Fraction(initial_sqrt_price_x96**2, Q96**2)
            if direction.zero_for_one
            else result.amount_in * Fraction(Q96**2, initial_sqrt_price_x96**2)
        )
        if spot_value > 0 and 1 - result.amount_out / spot_value > tolerance:
            raise SlippageExceeded(
                message=(
                    f"Swapping {result.amount_in} {direction.name} returns {result.amount_out}, "
                    f"below the tolerance band around the spot value {float(spot_value):.0f}"
                )
            )

        if direction.zero_for_one:
            sqrt_price_limit_x96 = max(
                isqrt(int(initial_sqrt_price_x96**2 * (1 - tolerance))),
                MIN_SQRT_RATIO + 1,
            )
        else:
            sqrt_price_limit_x96 = min(
                isqrt(int(initial_sqrt_price_x96**2 * (1 + tolerance))),
                MAX_SQRT_RATIO - 1,
            )

        plan = SwapPlan(
            direction=direction,
            amount_in=result.amount_in,
            min_amount_out=int(result.amount_out * (1 - tolerance)),
            expected_amount_out=result.amount_out,
            sqrt_price_limit_x96=sqrt_price_limit_x96,
            expected_sqrt_price_x96=final_sqrt_price_x96,
        )
        logger.debug(f"Solver plan: {plan}")
        return plan
