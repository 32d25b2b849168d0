"""Pydantic models for connection profiles and comparison settings."""

from typing import Literal

from pydantic import BaseModel, Field


EXCLUDED_SCHEMAS_DEFAULT: tuple[str, ...] = ("sys", "INFORMATION_SCHEMA")


# ============================================================================
# Configuration Models
# ============================================================================


class ConnectionProfile(BaseModel):
    """Connection profile from db.toml.

    The profile name is the connection id used by the comparison API.
    """

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "mssql"
    # "server": all online databases are listed; "database": only the URL's database
    connection_type: Literal["server", "database"] = "server"


class CompareSettings(BaseModel):
    """Comparison behaviour from the ``[compare]`` table of db.toml."""

    excluded_schemas: list[str] = Field(
        default_factory=lambda: list(EXCLUDED_SCHEMAS_DEFAULT)
    )
    concurrent_extraction: bool = True


class CompareConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, ConnectionProfile]
    compare: CompareSettings = Field(default_factory=CompareSettings)
