"""Configuration management for the user directory database."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml
from sqlalchemy.engine import URL, make_url


DEFAULT_DRIVER = "mysql+pymysql"
DEFAULT_POOL_SIZE = 10

_REQUIRED_ENV = ("DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME")


class ConfigurationError(ValueError):
    """Raised when the database connection settings are incomplete."""


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for the relational store."""

    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    port: Optional[int] = None
    driver: str = DEFAULT_DRIVER
    pool_size: int = DEFAULT_POOL_SIZE
    url: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "DatabaseSettings":
        """Create :class:`DatabaseSettings` from raw mapping data."""

        def _text(key: str) -> Optional[str]:
            value = data.get(key)
            if value is None:
                return None
            return str(value)

        port = data.get("port")
        pool_size = data.get("pool_size")
        try:
            return DatabaseSettings(
                host=_text("host"),
                user=_text("user"),
                password=_text("password"),
                name=_text("name"),
                port=int(port) if port not in (None, "") else None,
                driver=_text("driver") or DEFAULT_DRIVER,
                pool_size=int(pool_size) if pool_size not in (None, "") else DEFAULT_POOL_SIZE,
                url=_text("url") or None,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid database configuration: {exc}") from exc

    def validate(self) -> "DatabaseSettings":
        if self.url:
            return self

        missing = []
        for env_name, value in zip(_REQUIRED_ENV, (self.host, self.user, self.password, self.name)):
            # An empty password is allowed, an unset one is not.
            if value is None or (env_name != "DB_PASSWORD" and not value.strip()):
                missing.append(env_name)
        if missing:
            raise ConfigurationError(
                f"Missing required database settings: {', '.join(missing)} "
                "(or set DATABASE_URL)"
            )
        if self.pool_size < 1:
            raise ConfigurationError("DB_POOL_SIZE must be at least 1")
        return self

    def sqlalchemy_url(self) -> URL:
        """Return the SQLAlchemy URL described by these settings."""

        if self.url:
            return make_url(self.url)
        self.validate()
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.name,
        )


def _load_yaml_section(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    section = raw.get("database") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("The 'database' key must contain a mapping")
    return dict(section)


def load_database_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DatabaseSettings:
    """Resolve database settings from an optional YAML file and the environment.

    Environment variables win over values found in the file. The result is
    validated so that incomplete settings fail at startup.
    """

    env = os.environ if environ is None else environ
    data: Dict[str, object] = {}
    if config_path is not None:
        data.update(_load_yaml_section(config_path))

    overrides = {
        "host": env.get("DB_HOST"),
        "user": env.get("DB_USER"),
        "password": env.get("DB_PASSWORD"),
        "name": env.get("DB_NAME"),
        "port": env.get("DB_PORT"),
        "driver": env.get("DB_DRIVER"),
        "pool_size": env.get("DB_POOL_SIZE"),
        "url": env.get("DATABASE_URL"),
    }
    data.update({key: value for key, value in overrides.items() if value is not None})

    return DatabaseSettings.from_dict(data).validate()


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""
    if not env_value:
        return None
    candidate = Path(env_value).expanduser().resolve(strict=False)
    if not candidate.exists():
        raise ConfigurationError(f"Configuration file {candidate} does not exist")
    return candidate


__all__ = [
    "ConfigurationError",
    "DatabaseSettings",
    "load_database_settings",
    "resolve_config_path",
]
