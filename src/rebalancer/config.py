import tomllib
from decimal import Decimal
from pathlib import Path

import tomlkit
from pydantic import BaseModel, Field, HttpUrl, WebsocketUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rebalancer.logging import logger
from rebalancer.types.aliases import ChainId

CONFIG_DIR = Path.home() / ".config" / "rebalancer"
CONFIG_FILE = CONFIG_DIR / "config.toml"


class SolverSettings(BaseModel):
    # Relative error |x - y| / (x + y) between the holdings and the target range ratio
    convergence_tolerance: Decimal = Field(default=Decimal("1e-9"), gt=0, lt=1)
    max_iterations: int = Field(default=256, gt=0)
    # Largest fractional price move allowed for the rebalancing swap
    slippage_tolerance: Decimal = Field(default=Decimal("0.01"), gt=0, lt=1)


class MinterSettings(BaseModel):
    # Refunds above this amount (in either token) are reported as a warning
    dust_threshold: int = Field(default=1_000_000, ge=0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_",
        env_nested_delimiter="__",
    )

    solver: SolverSettings = SolverSettings()
    minter: MinterSettings = MinterSettings()
    rpc: dict[
        ChainId,
        HttpUrl | WebsocketUrl | Path,
    ] = {}

    @field_validator("rpc", mode="after")
    def validate_paths(
        cls,  # noqa: N805
        rpc_dict: dict[ChainId, HttpUrl | WebsocketUrl | Path],
    ) -> dict[ChainId, HttpUrl | WebsocketUrl | Path]:
        """
        Validate the endpoints.

        This will convert all file paths to an absolute reference, leaving HTTP and WS URLs as-is.
        """

        return {
            chain_id: endpoint.expanduser().absolute() if isinstance(endpoint, Path) else endpoint
            for chain_id, endpoint in rpc_dict.items()
        }


def load_config_from_file(config_path: Path) -> Settings:
    return Settings.model_validate(
        tomllib.loads(
            config_path.read_text(),
        ),
    )


def save_config_to_file(config: Settings, config_path: Path = CONFIG_FILE) -> None:
    # Decimal and URL values need a string form, and TOML table keys must be strings
    config_dict = config.model_dump(mode="json")
    config_dict["rpc"] = {
        str(chain_id): endpoint for chain_id, endpoint in config_dict["rpc"].items()
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        tomlkit.dumps(config_dict),
    )
    logger.info(f"Saved configuration to {config_path}.")


if CONFIG_FILE.exists():
    settings = load_config_from_file(CONFIG_FILE)
else:
    settings = Settings()
