"""
Bounds of the Solidity integer types used by the Uniswap V3 contracts.
"""

__all__ = (
    "MAX_INT24",
    "MAX_INT128",
    "MAX_INT256",
    "MAX_UINT24",
    "MAX_UINT128",
    "MAX_UINT160",
    "MAX_UINT256",
    "MIN_INT24",
    "MIN_INT128",
    "MIN_INT256",
    "MIN_UINT24",
    "MIN_UINT128",
    "MIN_UINT160",
    "MIN_UINT256",
)


def _signed_bounds(bits: int) -> tuple[int, int]:
    return -(2 ** (bits - 1)), 2 ** (bits - 1) - 1


def _unsigned_bounds(bits: int) -> tuple[int, int]:
    return 0, 2**bits - 1


MIN_INT24, MAX_INT24 = _signed_bounds(24)
MIN_INT128, MAX_INT128 = _signed_bounds(128)
MIN_INT256, MAX_INT256 = _signed_bounds(256)

MIN_UINT24, MAX_UINT24 = _unsigned_bounds(24)
MIN_UINT128, MAX_UINT128 = _unsigned_bounds(128)
MIN_UINT160, MAX_UINT160 = _unsigned_bounds(160)
MIN_UINT256, MAX_UINT256 = _unsigned_bounds(256)
