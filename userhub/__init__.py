"""Core utilities for the user directory service."""

from __future__ import annotations

from typing import Any

from .config import ConfigurationError, DatabaseSettings, load_database_settings
from .database import Database, StoreError, UserNotFoundError, ValidationError
from .pool import ConnectionPool, get_pool, reset_pool


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the combined API + UI application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


def create_api_app(*args: Any, **kwargs: Any):
    """Factory function for the API-only application."""

    from .api import create_app as _create_api_app

    return _create_api_app(*args, **kwargs)


__all__ = [
    "ConfigurationError",
    "ConnectionPool",
    "Database",
    "DatabaseSettings",
    "StoreError",
    "UserNotFoundError",
    "ValidationError",
    "create_api_app",
    "create_app",
    "get_pool",
    "load_database_settings",
    "reset_pool",
]
