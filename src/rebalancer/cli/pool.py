from decimal import Decimal

import click
import ujson
from web3.exceptions import Web3Exception

from rebalancer.cli import cli
from rebalancer.cli.utils import get_web3_from_config
from rebalancer.exceptions import RebalancerError
from rebalancer.uniswap.v3_functions import exchange_rate_from_sqrt_price_x96
from rebalancer.uniswap.v3_pool_reader import fetch_pool_state


@cli.group()
def pool() -> None:
    """
    Read deployed Uniswap V3 pools.
    """


@pool.command("show")
@click.option("--chain-id", type=int, required=True, help="Chain ID of the configured RPC.")
@click.option("--address", required=True, help="Address of the pool contract.")
@click.option("--json", "as_json", is_flag=True, help="Print the pool state as JSON.")
def pool_show(chain_id: int, address: str, as_json: bool) -> None:
    """
    Print the current price, tick and in-range liquidity of a pool.
    """

    try:
        w3 = get_web3_from_config(chain_id=chain_id)
        state = fetch_pool_state(w3, address)
    except RebalancerError as exc:
        raise click.ClickException(str(exc)) from exc
    except (Web3Exception, OSError) as exc:
        # Connection failures from the HTTP and IPC providers are OSError subclasses
        raise click.ClickException(f"Could not read pool {address}: {exc}") from exc

    exchange_rate = exchange_rate_from_sqrt_price_x96(state.sqrt_price_x96)
    pool_info = {
        "address": state.address,
        "block": state.block,
        "token0": state.token0,
        "token1": state.token1,
        "fee": state.fee,
        "tick_spacing": state.tick_spacing,
        "liquidity": str(state.liquidity),
        "sqrt_price_x96": str(state.sqrt_price_x96),
        "tick": state.tick,
        "price": str(Decimal(exchange_rate.numerator) / Decimal(exchange_rate.denominator)),
    }

    if as_json:
        click.echo(ujson.dumps(pool_info, indent=2))
        return

    for key, value in pool_info.items():
        click.echo(f"{key}: {value}")
