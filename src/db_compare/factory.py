"""Factory for connection providers and comparison sessions.

Builds the SQL Server provider and a ``ComparisonSession`` from db.toml.

Usage:
    from db_compare.factory import create_session

    session, provider = create_session()
    try:
        result = await session.start_comparison("prod", "Sales", "staging", "Sales")
    finally:
        await provider.dispose()
"""

from pathlib import Path
from typing import Any

from db_compare.adapters.mssql import ProfileConnectionProvider
from db_compare.comparison import ComparisonSession
from db_compare.config.loader import load_compare_config
from db_compare.config.models import CompareConfig


def get_provider(
    config: CompareConfig | None = None,
    **engine_kwargs: Any,
) -> ProfileConnectionProvider:
    """Create a connection provider for every profile in *config*.

    Args:
        config: Loaded configuration (default: ``load_compare_config()``)
        **engine_kwargs: Forwarded to every ``create_async_engine`` call

    Raises:
        FileNotFoundError: If no config is given and db.toml is missing
        ValueError: If a profile uses an unsupported provider
    """
    if config is None:
        config = load_compare_config()

    unsupported = sorted(
        name for name, profile in config.profiles.items() if profile.provider != "mssql"
    )
    if unsupported:
        raise ValueError(
            f"Unsupported provider for profile(s): {', '.join(unsupported)}. "
            f"Only 'mssql' profiles can be compared."
        )

    return ProfileConnectionProvider(config.profiles, **engine_kwargs)


def create_session(
    config_path: Path | None = None,
    **engine_kwargs: Any,
) -> tuple[ComparisonSession, ProfileConnectionProvider]:
    """Load db.toml and build a ``ComparisonSession`` over its profiles.

    The provider is returned too so the caller can ``dispose()`` it.
    """
    config = load_compare_config(config_path)
    provider = get_provider(config, **engine_kwargs)
    return ComparisonSession(provider, config.compare), provider
