"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_compare.config import load_compare_config, ConnectionProfile, CompareConfig
"""

from db_compare.config.loader import load_compare_config
from db_compare.config.models import CompareConfig, CompareSettings, ConnectionProfile

__all__ = ["load_compare_config", "CompareConfig", "CompareSettings", "ConnectionProfile"]
