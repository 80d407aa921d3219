"""Session service: the state machine plus persistence.

Every read-modify-write for a session runs under that session's lock, and
the repository re-checks the revision on write, so concurrent completions
of the same session cannot silently overwrite each other.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Optional

from planforge.errors import NotFound, StaleRevision, ValidationError
from planforge.sessions import state_machine
from planforge.sessions.repository import SessionRepository, check_session_id
from planforge.sessions.schemas import (
    ChecklistResult,
    Output,
    Phase,
    Session,
    SessionStatus,
    SessionSummary,
)
from planforge.storage.db import utc_now_iso

logger = logging.getLogger(__name__)


class _SessionLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class SessionService:
    """Creates sessions, completes phases, and reports progress."""

    def __init__(
        self,
        repository: SessionRepository,
        on_delete: Optional[Callable[[str], Any]] = None,
    ):
        self.repository = repository
        self._on_delete = on_delete
        # session_id -> lock, present only while some caller holds or awaits it
        self._locks: dict[str, _SessionLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _session_lock(self, session_id: str):
        """Hold one session's lock. The entry is dropped once nobody uses it."""
        check_session_id(session_id)
        with self._locks_guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _SessionLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[session_id]

    def create_session(self, project_name: str) -> Session:
        session = state_machine.new_session(project_name)
        self.repository.insert(session)
        logger.info(f"Created session {session.id} for project '{session.project_name}'")
        return session

    def get_session(self, session_id: str) -> Session:
        """Load a session or raise NotFound."""
        check_session_id(session_id)
        session = self.repository.get(session_id)
        if session is None or session.status is SessionStatus.DELETED:
            raise NotFound("Session", session_id)
        return session

    def find_session(self, session_id: Optional[str]) -> Optional[Session]:
        """Like get_session, but returns None for unknown or malformed ids."""
        if not session_id:
            return None
        try:
            return self.get_session(session_id)
        except (NotFound, ValidationError):
            return None

    def list_sessions(self, limit: int = 50) -> list[SessionSummary]:
        return [
            SessionSummary(
                id=s.id,
                project_name=s.project_name,
                current_phase=s.current_phase,
                status=s.status,
                completed_phases=state_machine.completed_phases(s),
                progress=state_machine.get_progress(s),
                created_at=s.created_at,
                updated_at=s.updated_at,
            )
            for s in self.repository.list(limit=limit)
        ]

    def _mutate(
        self,
        session_id: str,
        change: Callable[[Session], Session],
        expected_revision: Optional[int] = None,
    ) -> Session:
        """Serialized read-modify-write for one session."""
        with self._session_lock(session_id):
            current = self.get_session(session_id)
            if expected_revision is None:
                expected_revision = current.revision
            elif expected_revision != current.revision:
                raise StaleRevision(session_id, expected_revision, current.revision)
            updated = change(current)
            return self.repository.update(updated, expected_revision)

    def complete_phase(
        self,
        session_id: str,
        phase: str,
        data: Optional[dict[str, Any]] = None,
        outputs: Optional[list[Output]] = None,
        checklist_results: Optional[dict[str, ChecklistResult]] = None,
        expected_revision: Optional[int] = None,
    ) -> tuple[Session, Phase]:
        """Complete a phase. Returns (session, next_phase).

        InvalidPhase is raised before the session is touched.
        """
        state_machine.next_phase_after(phase)

        result: dict[str, Phase] = {}

        def change(session: Session) -> Session:
            updated, next_phase = state_machine.complete_phase(
                session, phase, data, outputs, checklist_results,
            )
            result["next_phase"] = next_phase
            return updated

        session = self._mutate(session_id, change, expected_revision)
        return session, result["next_phase"]

    def update_session(
        self,
        session_id: str,
        project_name: Optional[str] = None,
        status: Optional[SessionStatus] = None,
        expected_revision: Optional[int] = None,
    ) -> Session:
        """Rename a session or change its status (e.g. archive it)."""
        name = state_machine.validate_project_name(project_name) if project_name is not None else None

        def change(session: Session) -> Session:
            updated = session.model_copy(deep=True)
            if name is not None:
                updated.project_name = name
            if status is not None:
                updated.status = status
            updated.updated_at = utc_now_iso()
            return updated

        return self._mutate(session_id, change, expected_revision)

    def register_generated_file(self, session_id: str, filename: str) -> Session:
        """Record an artifact filename on the session (no duplicates)."""

        def change(session: Session) -> Session:
            updated = session.model_copy(deep=True)
            if filename not in updated.generated_files:
                updated.generated_files.append(filename)
            updated.updated_at = utc_now_iso()
            return updated

        return self._mutate(session_id, change)

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and, through the on_delete hook, its artifacts."""
        with self._session_lock(session_id):
            self.get_session(session_id)
            deleted = self.repository.delete(session_id)
        if deleted and self._on_delete is not None:
            self._on_delete(session_id)
        logger.info(f"Deleted session {session_id}")
        return deleted

    def get_progress(self, session_id: str) -> int:
        return state_machine.get_progress(self.get_session(session_id))
