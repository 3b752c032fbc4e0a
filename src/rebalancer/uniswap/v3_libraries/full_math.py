from rebalancer.constants import MAX_UINT256, MIN_UINT256
from rebalancer.exceptions import EVMRevertError
from rebalancer.uniswap.v3_libraries.functions import mulmod

"""
ref: https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/FullMath.sol
"""


def _require_uint256(name: str, value: int) -> None:
    if not (MIN_UINT256 <= value <= MAX_UINT256):
        raise EVMRevertError(error=f"{name} = {value} is not a uint256 value")


def muldiv(a: int, b: int, denominator: int) -> int:
    """
    Calculate floor(a * b / denominator).

    The contract uses 512-bit intermediate math to avoid overflow. Python integers are unbounded,
    so only the uint256 bounds of the inputs and the result are enforced.
    """

    _require_uint256("a", a)
    _require_uint256("b", b)
    _require_uint256("denominator", denominator)
    if denominator == 0:
        raise EVMRevertError(error="DIVISION BY ZERO")

    result = a * b // denominator
    _require_uint256("result", result)
    return result


def muldiv_rounding_up(a: int, b: int, denominator: int) -> int:
    result = muldiv(a, b, denominator)
    if mulmod(a, b, denominator) == 0:
        return result

    # Rounding up must not overflow
    if result == MAX_UINT256:
        raise EVMRevertError(error="muldiv_rounding_up result overflows uint256")
    return result + 1
