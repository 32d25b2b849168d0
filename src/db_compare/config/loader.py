"""TOML configuration loader for connection profiles."""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_compare.config.models import CompareConfig, CompareSettings, ConnectionProfile

CONFIG_ENV_VAR = "DB_COMPARE_CONFIG"


def default_config_path() -> Path:
    """Resolve the config path from ``DB_COMPARE_CONFIG`` or the cwd."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.cwd() / "db.toml"


def load_compare_config(config_path: Path | None = None) -> CompareConfig:
    """Load connection profiles and comparison settings from TOML.

    Args:
        config_path: Path to db.toml (default: ``DB_COMPARE_CONFIG`` or
            ``./db.toml``)

    Returns:
        CompareConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] table per connection."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path.name}: {e}") from e

    try:
        profiles = {
            name: ConnectionProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        settings = CompareSettings(**data.get("compare", {}))
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid configuration in {config_path.name}: {e}") from e

    return CompareConfig(profiles=profiles, compare=settings)
