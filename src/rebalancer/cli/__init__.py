import click

from rebalancer.version import __version__


@click.group()
@click.version_option(version=__version__)
def cli() -> None: ...


from . import config, pool, tick  # noqa: F401, E402
