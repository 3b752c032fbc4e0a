from collections.abc import Sequence
from typing import Any

import eth_abi.abi
from eth_typing import ChecksumAddress
from eth_utils.crypto import keccak
from web3 import Web3
from web3.types import BlockIdentifier, TxParams


def get_function_argument_types(function_prototype: str) -> list[str]:
    """
    The argument types of a function prototype, e.g. ['address', 'uint256'] for
    'transfer(address,uint256)'.
    """

    arguments = function_prototype[function_prototype.find("(") + 1 : function_prototype.rfind(")")]
    return arguments.split(",") if arguments else []


def encode_function_calldata(
    function_prototype: str,
    function_arguments: Sequence[Any] | None = None,
) -> bytes:
    """
    Build the calldata for a call to `function_prototype`: the 4-byte selector followed by the
    ABI-encoded arguments.
    """

    selector = keccak(text=function_prototype)[:4]
    return selector + eth_abi.abi.encode(
        types=get_function_argument_types(function_prototype),
        args=function_arguments or (),
    )


def evm_divide(numerator: int, denominator: int) -> int:
    # Solidity division truncates toward zero
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator < 0) == (denominator < 0) else -quotient


def raw_call(
    w3: Web3,
    address: ChecksumAddress,
    calldata: bytes,
    return_types: list[str],
    block_identifier: BlockIdentifier | None = None,
) -> tuple[Any, ...]:
    """
    Execute an `eth_call` against `address` and decode the response as `return_types`.
    """

    response = w3.eth.call(
        transaction=TxParams(to=address, data=calldata),
        block_identifier=block_identifier,
    )
    return eth_abi.abi.decode(types=return_types, data=response)
