from pathlib import Path

import click
import tomlkit
import ujson

from rebalancer.cli import cli
from rebalancer.config import CONFIG_FILE, Settings, save_config_to_file, settings


@cli.group()
def config() -> None:
    """
    Inspect and create the configuration file.
    """


@config.command("show")
@click.option(
    "--json",
    "output_format",
    flag_value="json",
    help="Print the active settings as JSON.",
)
@click.option(
    "--toml",
    "output_format",
    flag_value="toml",
    default=True,
    help="Print the active settings as TOML (default).",
)
def config_show(output_format: str) -> None:
    """
    Print the active settings, including any environment overrides.
    """

    config_dict = settings.model_dump(mode="json")
    # TOML table keys must be strings
    config_dict["rpc"] = {
        str(chain_id): endpoint for chain_id, endpoint in config_dict["rpc"].items()
    }

    if output_format == "json":
        click.echo(ujson.dumps(config_dict, indent=2))
    else:
        click.echo(tomlkit.dumps(config_dict))


@config.command("init")
@click.option(
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=CONFIG_FILE,
    show_default=True,
    help="Location of the configuration file to create.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing configuration file.")
def config_init(config_file: Path, force: bool) -> None:
    """
    Write a configuration file populated with the default settings.
    """

    if config_file.exists() and not force:
        raise click.ClickException(
            f"Configuration file {config_file} already exists, use --force to overwrite it."
        )

    save_config_to_file(Settings(), config_file)
    click.echo(f"Wrote default configuration to {config_file}.")
