"""Centralised settings for libmirror.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("LIBMIRROR_HOME", Path.home() / ".libmirror")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite cache database file."""
        return self.workspace_dir / "library_cache.db"

    @property
    def content_dir(self) -> Path:
        """Root directory of the raw JSON payload (blob) store."""
        return self.workspace_dir / "content"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    default_workspace: str = field(
        default_factory=lambda: os.environ.get("LIBMIRROR_WORKSPACE", "default")
    )

    # ------------------------------------------------------------------
    # Remote content API
    # ------------------------------------------------------------------
    remote_endpoint: str = field(
        default_factory=lambda: os.environ.get("LIBMIRROR_ENDPOINT", "us1")
    )
    remote_access_id: str = field(
        default_factory=lambda: os.environ.get("LIBMIRROR_ACCESS_ID", "")
    )
    remote_access_key: str = field(
        default_factory=lambda: os.environ.get("LIBMIRROR_ACCESS_KEY", "")
    )
    remote_admin_mode: bool = field(
        default_factory=lambda: _env_bool("LIBMIRROR_ADMIN_MODE")
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )
    export_poll_interval: float = field(
        default_factory=lambda: float(os.environ.get("EXPORT_POLL_INTERVAL", "1.0"))
    )
    export_timeout: float = field(
        default_factory=lambda: float(os.environ.get("EXPORT_TIMEOUT", "300.0"))
    )

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------
    sync_max_concurrency: int = field(
        default_factory=lambda: int(os.environ.get("SYNC_MAX_CONCURRENCY", "4"))
    )
    stale_after_seconds: float = field(
        default_factory=lambda: float(os.environ.get("STALE_AFTER_SECONDS", "1800"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LIBMIRROR_LOG_LEVEL", "WARNING")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from libmirror.config import settings
settings = Settings()
