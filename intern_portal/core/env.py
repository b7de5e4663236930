"""
Centralized environment detection utilities.

All functions check ENV only. Code paths that expose secrets (stub notifier
logging, debug echo of recovery codes) must gate on these helpers.
"""
import os
from functools import lru_cache


@lru_cache(maxsize=1)
def get_env_name() -> str:
    """
    Get the current environment name from ENV variable.

    Returns:
        Environment name (lowercase): 'local', 'dev', 'staging', 'prod', etc.
        Defaults to 'dev' if not set.
    """
    return os.getenv("ENV", "dev").lower()


@lru_cache(maxsize=1)
def is_local_env() -> bool:
    """True if ENV is 'local' or 'dev'."""
    return get_env_name() in {"local", "dev", "development"}


@lru_cache(maxsize=1)
def is_production_env() -> bool:
    """True if ENV is 'prod' or 'production'."""
    return get_env_name() in {"prod", "production"}


def clear_env_cache() -> None:
    """Reset cached lookups (tests flip ENV between cases)."""
    get_env_name.cache_clear()
    is_local_env.cache_clear()
    is_production_env.cache_clear()
