"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_lifecycle.config import load_db_config, LifecycleConfig, DatabaseConfig
"""

from db_lifecycle.config.loader import (
    ProfileNotFoundError,
    get_active_profile_name,
    load_db_config,
    load_model_descriptors,
    resolve_url,
)
from db_lifecycle.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    Environment,
    LifecycleConfig,
)

__all__ = [
    "load_db_config",
    "load_model_descriptors",
    "get_active_profile_name",
    "resolve_url",
    "ProfileNotFoundError",
    "DatabaseConfig",
    "DatabaseProfile",
    "Environment",
    "LifecycleConfig",
]
