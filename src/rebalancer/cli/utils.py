from json import JSONDecodeError
from pathlib import Path
from typing import TYPE_CHECKING, cast

from pydantic import HttpUrl, WebsocketUrl
from ujson import loads as ujson_loads
from web3 import HTTPProvider, IPCProvider, JSONBaseProvider, LegacyWebSocketProvider, Web3
from web3.types import RPCResponse

from rebalancer.config import CONFIG_FILE, settings
from rebalancer.exceptions import RebalancerValueError


def _fast_decode_rpc_response(raw_response: bytes) -> RPCResponse:
    """
    Decode the JSON-RPC response using ujson.
    """

    try:
        return cast("RPCResponse", ujson_loads(raw_response))
    except ValueError:
        # Re-raise as a dummy JSONDecodeError so web3py's exception handling works as intended.
        msg = "JSON failure"
        raise JSONDecodeError(msg, "[]", 0) from None


def get_web3_from_config(*, chain_id: int, optimize: bool = True) -> Web3:
    match endpoint := settings.rpc.get(chain_id):
        case HttpUrl():
            w3 = Web3(HTTPProvider(str(endpoint)))
        case WebsocketUrl():
            w3 = Web3(LegacyWebSocketProvider(str(endpoint)))
        case Path():
            w3 = Web3(IPCProvider(str(endpoint)))
        case None:
            raise RebalancerValueError(
                message=(
                    f"Chain ID {chain_id} does not have an RPC defined in config file "
                    f"{CONFIG_FILE}"
                )
            )

    if w3.eth.chain_id != chain_id:
        raise RebalancerValueError(
            message=(
                f"The chain ID ({w3.eth.chain_id}) at endpoint {endpoint} does not match "
                f"the chain ID ({chain_id}) defined in the config file."
            )
        )

    if optimize:
        # Remove all middleware and monkey-patch the JSON decoding for RPC responses
        w3.middleware_onion.clear()
        if TYPE_CHECKING:
            assert isinstance(w3.provider, JSONBaseProvider)
        w3.provider.decode_rpc_response = _fast_decode_rpc_response  # type:ignore[method-assign]

    return w3
