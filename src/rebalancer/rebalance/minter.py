from rebalancer.checksum_cache import get_checksum_address
from rebalancer.config import MinterSettings, settings
from rebalancer.exceptions import InsufficientLiquidity, RebalanceError
from rebalancer.logging import logger
from rebalancer.rebalance.protocols import PoolStateReader, PositionLedger
from rebalancer.rebalance.types import Holdings
from rebalancer.uniswap.v3_libraries.liquidity_amounts import (
    get_amounts_for_liquidity,
    get_liquidity_for_amounts,
)
from rebalancer.uniswap.v3_libraries.tick_math import get_sqrt_ratio_at_tick
from rebalancer.uniswap.v3_types import MintParams, Position, TickRange


class PositionMinter:
    """
    Deposits holdings into a new position, paying from `payer`. The amounts left over after the
    deposit are reported as a refund; moving them to the owner is left to the caller.
    """

    def __init__(
        self,
        ledger: PositionLedger,
        pool: PoolStateReader,
        payer: str,
        minter_settings: MinterSettings | None = None,
    ) -> None:
        self.ledger = ledger
        self.pool = pool
        self.payer = get_checksum_address(payer)
        self.settings = minter_settings if minter_settings is not None else settings.minter

    def deposit(
        self,
        amounts: Holdings,
        tick_range: TickRange,
        owner: str,
    ) -> tuple[Position, Holdings]:
        """
        Mint a position owned by `owner` with the largest liquidity the amounts allow in the range,
        and return it with the refund. The refund and the amounts consumed by the mint add up to
        the amounts supplied.
        """

        # Always size the deposit against a fresh read of the pool
        pool_state = self.pool.state

        sqrt_price_lower_x96 = get_sqrt_ratio_at_tick(tick_range.lower)
        sqrt_price_upper_x96 = get_sqrt_ratio_at_tick(tick_range.upper)

        liquidity = get_liquidity_for_amounts(
            sqrt_ratio_x96=pool_state.sqrt_price_x96,
            sqrt_ratio_a_x96=sqrt_price_lower_x96,
            sqrt_ratio_b_x96=sqrt_price_upper_x96,
            amount0=amounts.amount0,
            amount1=amounts.amount1,
        )
        if liquidity == 0:
            raise InsufficientLiquidity(amounts.amount0, amounts.amount1)

        amount0_min, amount1_min = get_amounts_for_liquidity(
            sqrt_ratio_x96=pool_state.sqrt_price_x96,
            sqrt_ratio_a_x96=sqrt_price_lower_x96,
            sqrt_ratio_b_x96=sqrt_price_upper_x96,
            liquidity=liquidity,
        )

        result = self.ledger.mint(
            MintParams(
                token0=pool_state.token0,
                token1=pool_state.token1,
                fee=pool_state.fee,
                tick_lower=tick_range.lower,
                tick_upper=tick_range.upper,
                amount0_desired=amounts.amount0,
                amount1_desired=amounts.amount1,
                amount0_min=amount0_min,
                amount1_min=amount1_min,
                recipient=get_checksum_address(owner),
                payer=self.payer,
            )
        )

        # The ledger must take at least the minimums it was given and no more than was supplied
        if not (
            amount0_min <= result.amount0 <= amounts.amount0
            and amount1_min <= result.amount1 <= amounts.amount1
        ):
            raise RebalanceError(
                message=(
                    f"Mint consumed ({result.amount0}, {result.amount1}), outside the expected "
                    f"({amount0_min}, {amount1_min}) to ({amounts.amount0}, {amounts.amount1})"
                )
            )

        consumed = Holdings(result.amount0, result.amount1)
        refund = amounts - consumed

        if max(refund.amount0, refund.amount1) > self.settings.dust_threshold:
            logger.warning(
                f"Refund ({refund.amount0}, {refund.amount1}) for position {result.position_id} "
                f"exceeds the dust threshold of {self.settings.dust_threshold}"
            )

        logger.info(
            f"Deposited ({consumed.amount0}, {consumed.amount1}) as {result.liquidity} liquidity "
            f"in [{tick_range.lower}, {tick_range.upper}], position {result.position_id}"
        )
        return self.ledger.positions(result.position_id), refund
