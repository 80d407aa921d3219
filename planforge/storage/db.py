"""Database layer for sessions and package records.

Supports two backends:
- PostgreSQL (production, set PLANFORGE_DATABASE_URL to a postgres:// URL)
- SQLite (local development, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite) for simplicity.
No ORM.

Thread-safety: Postgres uses a ThreadedConnectionPool for connection reuse.
SQLite uses per-call connections with check_same_thread=False.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def json_dumps(data: Any) -> str:
    """Serialize data to JSON string for storage."""
    if data is None:
        return "{}"
    return json.dumps(data, ensure_ascii=False, default=str)


def json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if not text:
        return {}
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def normalize_timestamps(row: dict, keys: tuple[str, ...]) -> dict:
    """Convert datetime objects to ISO strings (Postgres returns datetimes)."""
    for key in keys:
        val = row.get(key)
        if val is not None and isinstance(val, datetime):
            row[key] = val.isoformat()
    return row


class Database:
    """Connection factory plus a tiny execute() helper.

    Placeholders are always written as %s and adapted to ? for SQLite.
    """

    def __init__(self, database_url: str = "", sqlite_path: Optional[Path] = None):
        self.database_url = database_url
        self.sqlite_path = sqlite_path or Path("planforge.db")
        self._pg_pool = None
        self._initialized = False

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgres")

    @property
    def backend_name(self) -> str:
        return "PostgreSQL" if self.is_postgres else f"SQLite ({self.sqlite_path})"

    def _get_pg_pool(self):
        """Get or create the Postgres connection pool."""
        if self._pg_pool is None:
            import psycopg2.pool
            self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=5,
                dsn=self.database_url,
            )
            logger.info("PostgreSQL connection pool initialized (1-5 connections)")
        return self._pg_pool

    @contextmanager
    def get_connection(self):
        """Get a database connection (Postgres or SQLite).

        Usage:
            with db.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(...)
                conn.commit()
        """
        if self.is_postgres:
            pool = self._get_pg_pool()
            conn = pool.getconn()
            try:
                yield conn
            finally:
                pool.putconn(conn)
        else:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.sqlite_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            try:
                yield conn
            finally:
                conn.close()

    def execute(self, sql: str, params: tuple = (), fetch: str = "none") -> Any:
        """Execute a SQL statement.

        Args:
            sql: SQL statement using %s placeholders
            params: Parameters tuple
            fetch: "none", "one", "all", or "rowcount"

        Returns:
            None for "none", dict for "one", list[dict] for "all",
            int for "rowcount"
        """
        adapted_sql = sql if self.is_postgres else sql.replace("%s", "?")

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(adapted_sql, params)

            if fetch == "none":
                conn.commit()
                return None
            if fetch == "rowcount":
                conn.commit()
                return cursor.rowcount
            if fetch == "one":
                row = cursor.fetchone()
                if row is None:
                    return None
                if self.is_postgres:
                    columns = [desc[0] for desc in cursor.description]
                    return dict(zip(columns, row))
                return dict(row)
            if fetch == "all":
                rows = cursor.fetchall()
                if self.is_postgres:
                    columns = [desc[0] for desc in cursor.description]
                    return [dict(zip(columns, row)) for row in rows]
                return [dict(row) for row in rows]

            conn.commit()
            return None

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        if self._initialized:
            return

        if self.is_postgres:
            self._init_postgres()
        else:
            self._init_sqlite()

        self._initialized = True
        logger.info(f"Planforge database initialized: {self.backend_name}")

    def _init_postgres(self) -> None:
        ddl = """
        CREATE TABLE IF NOT EXISTS planning_sessions (
            id VARCHAR(100) PRIMARY KEY,
            project_name VARCHAR(200) NOT NULL,
            current_phase VARCHAR(30) NOT NULL DEFAULT 'analyst',
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            phases JSONB NOT NULL DEFAULT '{}',
            global_data JSONB NOT NULL DEFAULT '{}',
            generated_files JSONB NOT NULL DEFAULT '[]',
            revision INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            completed_at TIMESTAMPTZ
        );

        CREATE INDEX IF NOT EXISTS idx_planning_sessions_status
            ON planning_sessions(status);

        CREATE TABLE IF NOT EXISTS packages (
            package_id VARCHAR(100) PRIMARY KEY,
            session_id VARCHAR(100) NOT NULL,
            project_name VARCHAR(200) NOT NULL,
            archive_path TEXT NOT NULL,
            files JSONB NOT NULL DEFAULT '[]',
            size_bytes INTEGER DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            downloaded_at TIMESTAMPTZ
        );

        CREATE INDEX IF NOT EXISTS idx_packages_expires
            ON packages(expires_at);
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(ddl)
            conn.commit()

    def _init_sqlite(self) -> None:
        ddl = """
        CREATE TABLE IF NOT EXISTS planning_sessions (
            id TEXT PRIMARY KEY,
            project_name TEXT NOT NULL,
            current_phase TEXT NOT NULL DEFAULT 'analyst',
            status TEXT NOT NULL DEFAULT 'active',
            phases TEXT NOT NULL DEFAULT '{}',
            global_data TEXT NOT NULL DEFAULT '{}',
            generated_files TEXT NOT NULL DEFAULT '[]',
            revision INTEGER NOT NULL DEFAULT 0,
            created_at TEXT,
            updated_at TEXT,
            completed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_planning_sessions_status
            ON planning_sessions(status);

        CREATE TABLE IF NOT EXISTS packages (
            package_id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            project_name TEXT NOT NULL,
            archive_path TEXT NOT NULL,
            files TEXT NOT NULL DEFAULT '[]',
            size_bytes INTEGER DEFAULT 0,
            created_at TEXT,
            expires_at TEXT NOT NULL,
            downloaded_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_packages_expires
            ON packages(expires_at);
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.executescript(ddl)
            conn.commit()


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (the storage format everywhere)."""
    return datetime.now(timezone.utc).isoformat()
