from typing import cast

from eth_typing import ChecksumAddress
from web3 import Web3
from web3.types import BlockIdentifier

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.functions import encode_function_calldata, raw_call
from rebalancer.logging import logger
from rebalancer.uniswap.v3_types import UniswapV3PoolState

SLOT0_TYPES = ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"]


def fetch_pool_state(
    w3: Web3,
    address: str,
    block_identifier: BlockIdentifier | None = None,
) -> UniswapV3PoolState:
    """
    Read the current state of a deployed Uniswap V3 pool.

    The tick map is not fetched, so a swap simulated against the returned state assumes the
    in-range liquidity stays constant.
    """

    pool_address = get_checksum_address(address)
    if block_identifier is None:
        block_identifier = w3.eth.block_number

    def _call(function_prototype: str, return_types: list[str]) -> tuple[object, ...]:
        return raw_call(
            w3=w3,
            address=pool_address,
            calldata=encode_function_calldata(
                function_prototype=function_prototype,
                function_arguments=None,
            ),
            return_types=return_types,
            block_identifier=block_identifier,
        )

    sqrt_price_x96, tick, *_ = _call("slot0()", SLOT0_TYPES)
    (liquidity,) = _call("liquidity()", ["uint128"])
    (fee,) = _call("fee()", ["uint24"])
    (tick_spacing,) = _call("tickSpacing()", ["int24"])
    (token0,) = _call("token0()", ["address"])
    (token1,) = _call("token1()", ["address"])
    (fee_growth_global0_x128,) = _call("feeGrowthGlobal0X128()", ["uint256"])
    (fee_growth_global1_x128,) = _call("feeGrowthGlobal1X128()", ["uint256"])

    logger.debug(f"Fetched state for pool {pool_address} at block {block_identifier}")

    return UniswapV3PoolState(
        address=pool_address,
        block=block_identifier if isinstance(block_identifier, int) else None,
        token0=get_checksum_address(cast("str", token0)),
        token1=get_checksum_address(cast("str", token1)),
        fee=cast("int", fee),
        tick_spacing=cast("int", tick_spacing),
        liquidity=cast("int", liquidity),
        sqrt_price_x96=cast("int", sqrt_price_x96),
        tick=cast("int", tick),
        fee_growth_global0_x128=cast("int", fee_growth_global0_x128),
        fee_growth_global1_x128=cast("int", fee_growth_global1_x128),
    )


class UniswapV3PoolReader:
    """
    Provides fresh state for a deployed pool on every read.
    """

    def __init__(self, w3: Web3, address: str) -> None:
        self.w3 = w3
        self.address: ChecksumAddress = get_checksum_address(address)

    @property
    def state(self) -> UniswapV3PoolState:
        return fetch_pool_state(self.w3, self.address)
