"""
Centralized configuration for credmirror.

All configuration is loaded from environment variables with sensible defaults.
A ``.env`` file in the working directory is honoured when present.

Usage:
    from credmirror.config import get_config
    cfg = get_config()
    print(cfg.auth_dir)      # "/home/user/.credmirror/auths" or $CREDMIRROR_AUTH_DIR
    print(cfg.db.table)      # "provider_credentials"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_TABLE = "provider_credentials"


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    dsn_override: str = ""  # CREDMIRROR_DB_DSN wins over the individual fields
    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "credmirror"
    user: str = "credmirror"
    password: str = ""
    schema: str = ""
    table: str = DEFAULT_TABLE
    pool_min: int = 1
    pool_max: int = 8

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        if self.dsn_override:
            return self.dsn_override
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)


@dataclass(frozen=True)
class Config:
    """Top-level credmirror configuration."""

    auth_dir: Path = field(default_factory=lambda: Path.home() / ".credmirror" / "auths")
    db: DatabaseConfig = field(default_factory=DatabaseConfig)

    # CRUD surface
    management_key: str = ""
    host: str = "127.0.0.1"
    port: int = 8080

    rebuild_on_start: bool = False
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    db = DatabaseConfig(
        dsn_override=os.environ.get("CREDMIRROR_DB_DSN", "").strip(),
        host=os.environ.get("CREDMIRROR_DB_HOST", ""),
        port=int(os.environ.get("CREDMIRROR_DB_PORT", "5432")),
        name=os.environ.get("CREDMIRROR_DB_NAME", "credmirror"),
        user=os.environ.get("CREDMIRROR_DB_USER", os.environ.get("USER", "credmirror")),
        password=os.environ.get("CREDMIRROR_DB_PASSWORD", ""),
        schema=os.environ.get("CREDMIRROR_DB_SCHEMA", "").strip(),
        table=os.environ.get("CREDMIRROR_DB_TABLE", "").strip() or DEFAULT_TABLE,
        pool_min=int(os.environ.get("CREDMIRROR_DB_POOL_MIN", "1")),
        pool_max=int(os.environ.get("CREDMIRROR_DB_POOL_MAX", "8")),
    )

    auth_dir = Path(
        os.environ.get("CREDMIRROR_AUTH_DIR", Path.home() / ".credmirror" / "auths")
    ).expanduser()

    return Config(
        auth_dir=auth_dir,
        db=db,
        management_key=os.environ.get("MANAGEMENT_PASSWORD", "").strip(),
        host=os.environ.get("CREDMIRROR_HOST", "127.0.0.1"),
        port=int(os.environ.get("CREDMIRROR_PORT", "8080")),
        rebuild_on_start=_env_bool("CREDMIRROR_REBUILD_ON_START"),
        log_level=os.environ.get("CREDMIRROR_LOG_LEVEL", "INFO").upper(),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
