"""Session persistence.

One repository interface, two interchangeable backings selected when the
service is constructed:
- SqlSessionRepository: owned sessions in the planning_sessions table
- FileSessionRepository: anonymous sessions as one JSON file each

Both implement optimistic concurrency: update() only succeeds when the
stored revision still equals the revision the caller read.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from planforge.errors import StaleRevision, ValidationError
from planforge.sessions.schemas import Session, SessionStatus
from planforge.storage.db import Database, json_dumps, json_loads, normalize_timestamps

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,100}$")


def check_session_id(session_id: str) -> str:
    """Reject ids that could escape a storage directory."""
    if not isinstance(session_id, str) or not _SAFE_ID.match(session_id):
        raise ValidationError(f"Malformed session id: {session_id!r}")
    return session_id


@runtime_checkable
class SessionRepository(Protocol):
    """Storage interface for sessions."""

    def insert(self, session: Session) -> None: ...

    def get(self, session_id: str) -> Optional[Session]: ...

    def list(self, limit: int = 50) -> list[Session]: ...

    def update(self, session: Session, expected_revision: int) -> Session: ...

    def delete(self, session_id: str) -> bool: ...


class SqlSessionRepository:
    """Sessions stored in SQLite or PostgreSQL."""

    _TIMESTAMPS = ("created_at", "updated_at", "completed_at")

    def __init__(self, db: Database):
        self.db = db
        self.db.init_db()

    def _row_to_session(self, row: dict) -> Session:
        normalize_timestamps(row, self._TIMESTAMPS)
        return Session(
            id=row["id"],
            project_name=row["project_name"],
            current_phase=row["current_phase"],
            status=row["status"],
            phases=json_loads(row["phases"]),
            global_data=json_loads(row["global_data"]),
            generated_files=json_loads(row["generated_files"]) or [],
            revision=row["revision"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row.get("completed_at"),
        )

    def insert(self, session: Session) -> None:
        payload = session.model_dump(mode="json")
        self.db.execute(
            """INSERT INTO planning_sessions
               (id, project_name, current_phase, status, phases, global_data,
                generated_files, revision, created_at, updated_at, completed_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                session.id, session.project_name, payload["current_phase"],
                payload["status"], json_dumps(payload["phases"]),
                json_dumps(payload["global_data"]),
                json_dumps(payload["generated_files"]), session.revision,
                session.created_at, session.updated_at, session.completed_at,
            ),
        )
        logger.info(f"Stored session {session.id} ('{session.project_name}') in {self.db.backend_name}")

    def get(self, session_id: str) -> Optional[Session]:
        row = self.db.execute(
            "SELECT * FROM planning_sessions WHERE id = %s",
            (session_id,),
            fetch="one",
        )
        return self._row_to_session(row) if row else None

    def list(self, limit: int = 50) -> list[Session]:
        rows = self.db.execute(
            """SELECT * FROM planning_sessions
               WHERE status != %s
               ORDER BY updated_at DESC LIMIT %s""",
            (SessionStatus.DELETED.value, limit),
            fetch="all",
        )
        return [self._row_to_session(row) for row in rows]

    def update(self, session: Session, expected_revision: int) -> Session:
        """Write `session` if the stored revision is still `expected_revision`.

        The stored revision becomes expected_revision + 1.
        """
        stored = session.model_copy(update={"revision": expected_revision + 1})
        payload = stored.model_dump(mode="json")
        changed = self.db.execute(
            """UPDATE planning_sessions
               SET project_name = %s, current_phase = %s, status = %s,
                   phases = %s, global_data = %s, generated_files = %s,
                   revision = %s, updated_at = %s, completed_at = %s
               WHERE id = %s AND revision = %s""",
            (
                stored.project_name, payload["current_phase"], payload["status"],
                json_dumps(payload["phases"]), json_dumps(payload["global_data"]),
                json_dumps(payload["generated_files"]), stored.revision,
                stored.updated_at, stored.completed_at,
                stored.id, expected_revision,
            ),
            fetch="rowcount",
        )
        if changed == 0:
            current = self.get(session.id)
            actual = current.revision if current else -1
            raise StaleRevision(session.id, expected_revision, actual)
        return stored

    def delete(self, session_id: str) -> bool:
        removed = self.db.execute(
            "DELETE FROM planning_sessions WHERE id = %s",
            (session_id,),
            fetch="rowcount",
        )
        return bool(removed)


class FileSessionRepository:
    """Sessions stored as <sessions_dir>/<id>.json."""

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{check_session_id(session_id)}.json"

    def _write(self, session: Session) -> None:
        path = self._path(session.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(session.model_dump(mode="json"), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    def insert(self, session: Session) -> None:
        self._write(session)
        logger.info(f"Stored session {session.id} ('{session.project_name}') in {self.sessions_dir}")

    def get(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        return Session.model_validate_json(path.read_text(encoding="utf-8"))

    def list(self, limit: int = 50) -> list[Session]:
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                session = Session.model_validate_json(path.read_text(encoding="utf-8"))
            except ValueError as e:
                logger.error(f"Skipping unreadable session file {path.name}: {e}")
                continue
            if session.status is not SessionStatus.DELETED:
                sessions.append(session)
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions[:limit]

    def update(self, session: Session, expected_revision: int) -> Session:
        current = self.get(session.id)
        actual = current.revision if current else -1
        if actual != expected_revision:
            raise StaleRevision(session.id, expected_revision, actual)
        stored = session.model_copy(update={"revision": expected_revision + 1})
        self._write(stored)
        return stored

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True
