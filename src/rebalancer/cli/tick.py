from decimal import Decimal, InvalidOperation

import click

from rebalancer.cli import cli
from rebalancer.exceptions import RebalancerError
from rebalancer.uniswap.v3_functions import (
    get_max_usable_tick,
    get_min_usable_tick,
    normalize_range,
    price_to_tick,
    round_tick_to_spacing,
    tick_to_price,
)


def _parse_price(price: str) -> Decimal:
    try:
        value = Decimal(price)
    except InvalidOperation:
        raise click.BadParameter(f"{price!r} is not a number") from None
    if not value.is_finite() or value <= 0:
        raise click.BadParameter(f"{price!r} is not a positive price")
    return value


def _display_price(tick: int, decimals0: int, decimals1: int) -> Decimal:
    raw_price = tick_to_price(tick) * 10**decimals0 / 10**decimals1
    return Decimal(raw_price.numerator) / Decimal(raw_price.denominator)


@cli.group()
def tick() -> None:
    """
    Convert between prices and ticks.
    """


@tick.command("from-price")
@click.argument("price")
@click.option("--decimals0", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--decimals1", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--tick-spacing", type=click.IntRange(min=1), default=None)
def tick_from_price(
    price: str,
    decimals0: int,
    decimals1: int,
    tick_spacing: int | None,
) -> None:
    """
    Print the tick for a token1/token0 PRICE given in whole-token units.

    With --tick-spacing, the tick is also rounded down to the nearest usable tick.
    """

    try:
        price_tick = price_to_tick(_parse_price(price), decimals0, decimals1)
    except RebalancerError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Tick: {price_tick}")
    if tick_spacing is not None:
        rounded = round_tick_to_spacing(price_tick, tick_spacing)
        click.echo(f"Usable tick (spacing {tick_spacing}): {rounded}")
        click.echo(f"Price at usable tick: {_display_price(rounded, decimals0, decimals1):.6g}")


@tick.command("range")
@click.argument("price_a")
@click.argument("price_b")
@click.option("--tick-spacing", type=click.IntRange(min=1), required=True)
@click.option("--decimals0", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--decimals1", type=click.IntRange(min=0), default=0, show_default=True)
def tick_range(
    price_a: str,
    price_b: str,
    tick_spacing: int,
    decimals0: int,
    decimals1: int,
) -> None:
    """
    Print the usable tick range covering the prices PRICE_A and PRICE_B, given in either order.

    The lower bound is rounded down and the upper bound is rounded up to the tick spacing, so the
    range always contains both prices.
    """

    try:
        tick_a = price_to_tick(_parse_price(price_a), decimals0, decimals1)
        tick_b = price_to_tick(_parse_price(price_b), decimals0, decimals1)
        lower = max(
            round_tick_to_spacing(min(tick_a, tick_b), tick_spacing),
            get_min_usable_tick(tick_spacing),
        )
        upper = min(
            -round_tick_to_spacing(-max(tick_a, tick_b), tick_spacing),
            get_max_usable_tick(tick_spacing),
        )
        if lower == upper:
            upper += tick_spacing
        normalized = normalize_range(lower, upper, tick_spacing)
    except RebalancerError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Lower tick: {normalized.lower}")
    click.echo(f"Upper tick: {normalized.upper}")
    click.echo(
        f"Price range: {_display_price(normalized.lower, decimals0, decimals1):.6g} - "
        f"{_display_price(normalized.upper, decimals0, decimals1):.6g}"
    )
