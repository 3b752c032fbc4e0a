from collections.abc import Iterable

from eth_typing import ChecksumAddress

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.exceptions import EVMRevertError, IncompleteSwap, RebalancerValueError
from rebalancer.logging import logger
from rebalancer.types.aliases import Pip, SqrtPriceX96
from rebalancer.uniswap.v3_liquidity_pool import UniswapV3Pool, calculate_swap


class UniswapV3Router:
    """
    An in-memory single-pool router modeled on `exactInputSingle` from the SwapRouter contract at
    https://github.com/Uniswap/v3-periphery/blob/main/contracts/SwapRouter.sol

    Unlike the contract, a swap that stops at the price limit before consuming the full input is
    rejected with `IncompleteSwap` instead of executing partially.
    """

    def __init__(self, address: str, pools: Iterable[UniswapV3Pool] = ()) -> None:
        self.address = get_checksum_address(address)
        self._pools: dict[tuple[ChecksumAddress, ChecksumAddress], list[UniswapV3Pool]] = {}
        for pool in pools:
            self.add_pool(pool)

    def add_pool(self, pool: UniswapV3Pool) -> None:
        self._pools.setdefault((pool.token0, pool.token1), []).append(pool)

    def get_pool(self, token_a: str, token_b: str, fee: Pip | None = None) -> UniswapV3Pool:
        token_a, token_b = get_checksum_address(token_a), get_checksum_address(token_b)
        token0, token1 = sorted((token_a, token_b), key=lambda token: int(token, 16))

        candidates = [
            pool
            for pool in self._pools.get((token0, token1), [])
            if fee is None or pool.fee == fee
        ]
        match candidates:
            case [pool]:
                return pool
            case []:
                raise RebalancerValueError(message=f"No pool registered for {token0}/{token1}")
            case _:
                raise RebalancerValueError(
                    message=f"Multiple pools registered for {token0}/{token1}, specify the fee"
                )

    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        sqrt_price_limit_x96: SqrtPriceX96 | None,
        payer: str,
        recipient: str,
        fee: Pip | None = None,
    ) -> int:
        """
        Swap an exact amount of `token_in` for `token_out`, returning the amount received by
        `recipient`.
        """

        if amount_in <= 0:
            raise EVMRevertError(error="AS")

        pool = self.get_pool(token_in, token_out, fee)
        zero_for_one = get_checksum_address(token_in) == pool.token0

        # Check the outcome first, so a rejected swap leaves no trace on the pool or the balances
        result = calculate_swap(
            pool.state,
            zero_for_one=zero_for_one,
            amount_specified=amount_in,
            sqrt_price_limit_x96=sqrt_price_limit_x96,
        )
        if result.amount_in != amount_in:
            raise IncompleteSwap(amount_in=result.amount_in, amount_out=result.amount_out)
        if result.amount_out < min_amount_out:
            raise EVMRevertError(error="Too little received")

        amount0, amount1 = pool.swap(
            recipient=recipient,
            zero_for_one=zero_for_one,
            amount_specified=amount_in,
            sqrt_price_limit_x96=sqrt_price_limit_x96,
            payer=payer,
        )
        amount_out = -(amount1 if zero_for_one else amount0)

        logger.debug(f"Router swapped {amount_in} {token_in} for {amount_out} {token_out}")
        return amount_out
