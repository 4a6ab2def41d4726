"""Application factory that serves both the JSON API and the browser UI."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import DatabaseSettings, load_database_settings
from .database import Database
from .pool import ConnectionPool, get_pool
from .web import register_ui_routes

logger = logging.getLogger("userhub.application")


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def build_database(
    *,
    settings: Optional[DatabaseSettings] = None,
    config_path: Optional[Path] = None,
) -> Database:
    """Create a :class:`Database` from explicit settings or the process-wide pool.

    Incomplete settings raise :class:`~userhub.config.ConfigurationError`
    here, before any request is served.
    """

    if settings is None and config_path is None:
        return Database(get_pool())
    if settings is None:
        settings = load_database_settings(config_path)
    return Database(ConnectionPool(settings))


def create_application(
    *,
    database: Optional[Database] = None,
    initialize_database: Optional[bool] = None,
) -> FastAPI:
    """Create the combined ASGI application."""

    if database is None:
        database = build_database()
    if initialize_database is None:
        initialize_database = _env_flag(os.getenv("USERHUB_INIT_DB"), False)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            yield
        finally:
            database.close()

    app = create_api_app(
        database=database,
        initialize_database=initialize_database,
        lifespan=lifespan,
    )
    register_ui_routes(app, database)

    logger.info("User directory application created")
    return app


__all__ = ["build_database", "create_application"]
