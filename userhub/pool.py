"""Lazily created, process-wide connection pool."""
from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from .config import DatabaseSettings, load_database_settings, resolve_config_path

logger = logging.getLogger("userhub.pool")


class ConnectionPool:
    """Owns one SQLAlchemy engine and hands out pooled connections.

    The engine is only built the first time a connection is requested, so
    constructing a pool never touches the network.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings.validate()
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        url = self._settings.sqlalchemy_url()
        if url.get_backend_name() == "sqlite":
            engine = create_engine(url, connect_args={"check_same_thread": False})
        else:
            engine = create_engine(
                url,
                pool_size=self._settings.pool_size,
                pool_pre_ping=True,
            )
        logger.info("Connection pool created for %s", url.render_as_string(hide_password=True))
        return engine

    def connect(self) -> Connection:
        """Check out a connection; callers must close it."""
        return self.engine.connect()

    def begin(self):
        """Return a context manager wrapping one connection in a transaction."""
        return self.engine.begin()

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def dispose(self) -> None:
        """Close every pooled connection. The pool can be reused afterwards."""
        with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()
            logger.info("Connection pool disposed")


_default_pool: Optional[ConnectionPool] = None
_default_lock = threading.Lock()


def get_pool() -> ConnectionPool:
    """Return the process-wide pool, loading settings from the environment."""

    global _default_pool
    if _default_pool is None:
        with _default_lock:
            if _default_pool is None:
                config_path = resolve_config_path(os.getenv("USERHUB_CONFIG"))
                _default_pool = ConnectionPool(load_database_settings(config_path))
    return _default_pool


def reset_pool() -> None:
    """Dispose of and forget the process-wide pool."""

    global _default_pool
    with _default_lock:
        pool, _default_pool = _default_pool, None
    if pool is not None:
        pool.dispose()


__all__ = ["ConnectionPool", "get_pool", "reset_pool"]
