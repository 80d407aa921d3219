"""Runtime configuration.

All settings come from environment variables. Services are constructed
from a Settings object, so tests can build their own.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_MODEL = "claude-sonnet-4-6"


class Settings(BaseModel):
    """Service configuration."""

    data_dir: Path = Field(
        default=Path("var"),
        description="Root for sessions, artifacts, packages and the SQLite file",
    )
    database_url: str = Field(
        default="",
        description="postgres://... for Postgres, empty for SQLite in data_dir",
    )
    session_backend: str = Field(
        default="database",
        description="'database' (owned sessions) or 'file' (anonymous sessions)",
    )
    model: str = DEFAULT_MODEL
    llm_timeout_seconds: float = 300.0
    llm_max_tokens: int = 16_000
    package_ttl_seconds: int = 3600
    download_retention_seconds: int = 60
    sweep_interval_seconds: int = 30

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "planforge.db"

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def artifacts_dir(self) -> Path:
        return self.data_dir / "artifacts"

    @property
    def packages_dir(self) -> Path:
        return self.data_dir / "packages"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            data_dir=Path(env.get("PLANFORGE_DATA_DIR", "var")),
            database_url=env.get("PLANFORGE_DATABASE_URL", ""),
            session_backend=env.get("PLANFORGE_SESSION_BACKEND", "database"),
            model=env.get("PLANFORGE_MODEL", DEFAULT_MODEL),
            llm_timeout_seconds=float(env.get("PLANFORGE_LLM_TIMEOUT_SECONDS", "300")),
            llm_max_tokens=int(env.get("PLANFORGE_LLM_MAX_TOKENS", "16000")),
            package_ttl_seconds=int(env.get("PLANFORGE_PACKAGE_TTL_SECONDS", "3600")),
            download_retention_seconds=int(
                env.get("PLANFORGE_DOWNLOAD_RETENTION_SECONDS", "60")
            ),
            sweep_interval_seconds=int(env.get("PLANFORGE_SWEEP_INTERVAL_SECONDS", "30")),
        )
