"""Configuration management for the tally service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger("tally.config")

DEFAULT_JWT_SECRET = "tally-secret-key-change-in-production"
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "password"
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")

_ENV_KEYS = {
    "database_path": "TALLY_DB_PATH",
    "jwt_secret": "TALLY_JWT_SECRET",
    "jwt_expire_hours": "TALLY_JWT_EXPIRE_HOURS",
    "default_username": "TALLY_DEFAULT_USERNAME",
    "default_password": "TALLY_DEFAULT_PASSWORD",
    "api_prefix": "TALLY_API_PREFIX",
    "cors_origins": "TALLY_CORS_ORIGINS",
    "static_dir": "TALLY_STATIC_DIR",
    "host": "TALLY_HOST",
    "port": "PORT",
}


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "tally.sqlite3").resolve(strict=False)


def _split_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError("cors_origins must be a comma separated string or a list")
    return tuple(item.strip() for item in items if item.strip())


def _normalize_prefix(value: str) -> str:
    cleaned = value.strip().rstrip("/")
    if not cleaned:
        return ""
    if not cleaned.startswith("/"):
        cleaned = "/" + cleaned
    return cleaned


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the service and the CLI."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expire_hours: int = 24 * 7
    default_username: str = DEFAULT_USERNAME
    default_password: str = DEFAULT_PASSWORD
    api_prefix: str = "/api"
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS
    static_dir: Optional[Path] = None
    host: str = "0.0.0.0"
    port: int = 8080

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw mapping data, ignoring unset keys."""

        unknown = set(data.keys()) - set(_ENV_KEYS.keys())
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        if data.get("database_path"):
            values["database_path"] = _resolve_path(str(data["database_path"]), base_path)
        if data.get("jwt_secret"):
            values["jwt_secret"] = str(data["jwt_secret"])
        if data.get("jwt_expire_hours") is not None:
            hours = int(str(data["jwt_expire_hours"]))
            if hours <= 0:
                raise ValueError("jwt_expire_hours must be positive")
            values["jwt_expire_hours"] = hours
        if data.get("default_username"):
            values["default_username"] = str(data["default_username"]).strip()
        if data.get("default_password"):
            values["default_password"] = str(data["default_password"])
        if data.get("api_prefix") is not None:
            values["api_prefix"] = _normalize_prefix(str(data["api_prefix"]))
        if data.get("cors_origins") is not None:
            values["cors_origins"] = _split_origins(data["cors_origins"])
        if data.get("static_dir"):
            values["static_dir"] = _resolve_path(str(data["static_dir"]), base_path)
        if data.get("host"):
            values["host"] = str(data["host"])
        if data.get("port") is not None:
            values["port"] = int(str(data["port"]))

        return replace(Settings(), **values)

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET


def _resolve_path(value: str, base_path: Path | None) -> Path:
    raw = Path(value).expanduser()
    if raw.is_absolute() or base_path is None:
        return raw.resolve(strict=False)
    return (base_path / raw).resolve(strict=False)


def _read_config_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ

    if config_path is None and env.get("TALLY_CONFIG"):
        config_path = Path(env["TALLY_CONFIG"]).expanduser()

    data: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        data.update(_read_config_file(config_path))
        base_path = config_path.resolve(strict=False).parent

    for key, env_name in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is not None and value != "":
            data[key] = value

    settings = Settings.from_dict(data, base_path=base_path)
    if settings.uses_default_secret:
        logger.warning(
            "TALLY_JWT_SECRET is not set; tokens are signed with the built-in development secret."
        )
    return settings


__all__ = ["Settings", "load_settings", "resolve_database_path"]
