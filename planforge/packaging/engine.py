"""Packaging engine: bundles a session's completed work into a zip.

Build flow for one session:
1. Render every package entry into a working tree under packages_dir
   (docs/, agent-prompts/, checklists/, README.md)
2. Zip the tree into <package_id>.zip.partial
3. Atomically rename to <package_id>.zip and record it in the packages table

The working tree and any .partial file are always removed, so a failed or
cancelled build never leaves an archive that could be downloaded.

Lifecycle: each archive has an expires_at. Undownloaded archives expire
after package_ttl_seconds; the first download shortens that to
download_retention_seconds. sweep_expired() deletes whatever has expired
and is run at startup and by PackageJanitor, so cleanup survives restarts.

Only one build per session may run at a time; a second request is
rejected with PackageBuildInProgress. cancel_build() stops a running build
between files.
"""

import logging
import os
import re
import shutil
import threading
import uuid
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from planforge.errors import (
    ArtifactIOError,
    NotFound,
    PackageBuildCancelled,
    PackageBuildInProgress,
    ValidationError,
)
from planforge.packaging import prompts
from planforge.sessions.schemas import Session
from planforge.sessions.service import SessionService
from planforge.sessions.state_machine import PHASE_ORDER
from planforge.storage.db import Database, json_dumps, json_loads, normalize_timestamps

logger = logging.getLogger(__name__)

PACKAGE_SUBDIRS = ("docs", "agent-prompts", "checklists")
ESTIMATED_EXTRA_FILES = len(prompts.AGENT_PROMPT_ROLES) + 1  # prompts + README

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_SAFE_PACKAGE_ID = re.compile(r"^[A-Za-z0-9_-]{1,160}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _safe_component(name: str, fallback: str) -> str:
    """A single path component: no separators, no leading dots."""
    cleaned = _UNSAFE_CHARS.sub("-", name or "").strip(".-")
    return cleaned or fallback


def _unique(name: str, ext: str, taken: set[str]) -> str:
    """name+ext, or name-2+ext, name-3+ext... whichever is free."""
    candidate = f"{name}{ext}"
    counter = 2
    while candidate in taken:
        candidate = f"{name}-{counter}{ext}"
        counter += 1
    taken.add(candidate)
    return candidate


def project_slug(project_name: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]", "-", project_name).lower()
    return slug[:80] or "project"


class PackageRecord(BaseModel):
    """A built archive and its expiry."""

    package_id: str
    session_id: str
    project_name: str
    archive_path: str
    files: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    created_at: str
    expires_at: str
    downloaded_at: Optional[str] = None


class PhasePreview(BaseModel):
    completed: bool
    outputs: int
    output_types: list[str] = Field(default_factory=list)


class PackagePreview(BaseModel):
    """What build_package would include right now."""

    session_id: str
    project_name: str
    phases: dict[str, PhasePreview]
    estimated_files: int


class PackagingEngine:
    """Builds, serves and expires session packages."""

    _TIMESTAMPS = ("created_at", "expires_at", "downloaded_at")

    def __init__(
        self,
        sessions: SessionService,
        db: Database,
        packages_dir: Path,
        package_ttl_seconds: int = 3600,
        download_retention_seconds: int = 60,
    ):
        self.sessions = sessions
        self.db = db
        self.packages_dir = Path(packages_dir)
        self.package_ttl = timedelta(seconds=package_ttl_seconds)
        self.download_retention = timedelta(seconds=download_retention_seconds)
        self.db.init_db()
        self.packages_dir.mkdir(parents=True, exist_ok=True)

        # session_id -> cancel flag for builds in flight
        self._active_builds: dict[str, threading.Event] = {}
        self._builds_lock = threading.Lock()

    # -- package contents ------------------------------------------------

    def package_entries(self, session: Session, generated_at: str) -> list[tuple[str, str]]:
        """(relative path, text) for every file in the package, in build order."""
        entries: list[tuple[str, str]] = []

        taken_docs: set[str] = set()
        for phase in PHASE_ORDER:
            record = session.phases[phase]
            if not record.completed:
                continue
            for output in record.outputs:
                name = _unique(_safe_component(output.type, "document"), ".md", taken_docs)
                entries.append((f"docs/{name}", output.content))

        for role in prompts.AGENT_PROMPT_ROLES:
            entries.append((
                f"agent-prompts/{role}-agent-prompt.md",
                prompts.render_agent_prompt(role, session),
            ))

        taken_checklists: set[str] = set()
        for phase in PHASE_ORDER:
            record = session.phases[phase]
            if not record.completed:
                continue
            for checklist_name, result in record.checklist_results.items():
                name = _unique(
                    f"completed-{_safe_component(checklist_name, 'checklist')}",
                    "",
                    taken_checklists,
                )
                entries.append((
                    f"checklists/{name}",
                    prompts.render_checklist(
                        checklist_name,
                        result.completion_percentage,
                        result.timestamp,
                        result.responses,
                    ),
                ))

        entries.append(("README.md", prompts.render_readme(session, generated_at)))
        return entries

    # -- build -----------------------------------------------------------

    def build_package(self, session_id: str) -> PackageRecord:
        """Build and register a package for a session.

        Raises NotFound, PackageBuildInProgress, PackageBuildCancelled,
        ArtifactIOError.
        """
        session = self.sessions.get_session(session_id)

        with self._builds_lock:
            if session_id in self._active_builds:
                raise PackageBuildInProgress(
                    f"A package build for session {session_id} is already running"
                )
            cancel_flag = threading.Event()
            self._active_builds[session_id] = cancel_flag

        try:
            return self._build(session, cancel_flag)
        finally:
            with self._builds_lock:
                self._active_builds.pop(session_id, None)

    def cancel_build(self, session_id: str) -> bool:
        """Request cancellation of a running build. True if one was running."""
        with self._builds_lock:
            flag = self._active_builds.get(session_id)
        if flag is None:
            return False
        flag.set()
        logger.info(f"Cancellation requested for package build of session {session_id}")
        return True

    def is_building(self, session_id: str) -> bool:
        with self._builds_lock:
            return session_id in self._active_builds

    def _check_cancelled(self, session_id: str, cancel_flag: threading.Event) -> None:
        if cancel_flag.is_set():
            raise PackageBuildCancelled(f"Package build for session {session_id} was cancelled")

    def _build(self, session: Session, cancel_flag: threading.Event) -> PackageRecord:
        now = _utc_now()
        package_id = f"{project_slug(session.project_name)}-{uuid.uuid4().hex[:12]}"
        work_dir = self.packages_dir / f"{package_id}.work"
        archive_path = self.packages_dir / f"{package_id}.zip"
        partial_path = self.packages_dir / f"{package_id}.zip.partial"

        logger.info(f"Building package {package_id} for session {session.id}")
        files: list[str] = []
        try:
            for subdir in PACKAGE_SUBDIRS:
                (work_dir / subdir).mkdir(parents=True, exist_ok=True)

            for rel_path, text in self.package_entries(session, now.isoformat()):
                self._check_cancelled(session.id, cancel_flag)
                (work_dir / rel_path).write_text(text, encoding="utf-8")
                files.append(rel_path)

            with zipfile.ZipFile(
                partial_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
            ) as zf:
                for rel_path in files:
                    self._check_cancelled(session.id, cancel_flag)
                    zf.write(work_dir / rel_path, arcname=rel_path)

            self._check_cancelled(session.id, cancel_flag)
            os.replace(partial_path, archive_path)
        except OSError as e:
            logger.error(f"Package build {package_id} failed: {e}")
            raise ArtifactIOError(f"Failed to build package for session {session.id}: {e}") from e
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
            partial_path.unlink(missing_ok=True)

        record = PackageRecord(
            package_id=package_id,
            session_id=session.id,
            project_name=session.project_name,
            archive_path=str(archive_path),
            files=files,
            size_bytes=archive_path.stat().st_size,
            created_at=now.isoformat(),
            expires_at=(now + self.package_ttl).isoformat(),
        )
        try:
            self._insert_record(record)
        except Exception:
            archive_path.unlink(missing_ok=True)
            raise

        logger.info(
            f"Package {package_id} ready: {len(files)} files, "
            f"{record.size_bytes:,} bytes, expires {record.expires_at}"
        )
        return record

    # -- preview ---------------------------------------------------------

    def preview_package(self, session_id: str) -> PackagePreview:
        """Summarize what a build would contain. No side effects."""
        session = self.sessions.get_session(session_id)
        phases: dict[str, PhasePreview] = {}
        estimated = 0
        for phase in PHASE_ORDER:
            record = session.phases[phase]
            phases[phase] = PhasePreview(
                completed=record.completed,
                outputs=len(record.outputs),
                output_types=[o.type for o in record.outputs],
            )
            if record.completed:
                estimated += len(record.outputs)

        return PackagePreview(
            session_id=session.id,
            project_name=session.project_name,
            phases=phases,
            estimated_files=estimated + ESTIMATED_EXTRA_FILES,
        )

    # -- records and downloads ------------------------------------------

    def _insert_record(self, record: PackageRecord) -> None:
        self.db.execute(
            """INSERT INTO packages
               (package_id, session_id, project_name, archive_path, files,
                size_bytes, created_at, expires_at, downloaded_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                record.package_id, record.session_id, record.project_name,
                record.archive_path, json_dumps(record.files), record.size_bytes,
                record.created_at, record.expires_at, record.downloaded_at,
            ),
        )

    def _row_to_record(self, row: dict) -> PackageRecord:
        normalize_timestamps(row, self._TIMESTAMPS)
        row["files"] = json_loads(row["files"]) or []
        return PackageRecord(**row)

    def get_package(self, package_id: str) -> Optional[PackageRecord]:
        if not _SAFE_PACKAGE_ID.match(package_id or ""):
            raise ValidationError(f"Malformed package id: {package_id!r}")
        row = self.db.execute(
            "SELECT * FROM packages WHERE package_id = %s",
            (package_id,),
            fetch="one",
        )
        return self._row_to_record(row) if row else None

    def open_download(self, package_id: str) -> PackageRecord:
        """Resolve a package for download and start its retention window.

        The first download moves expires_at to now + download_retention
        (never later than the existing expiry). Raises NotFound when the
        package is unknown, expired, or its archive is gone.
        """
        record = self.get_package(package_id)
        now = _utc_now()
        if (
            record is None
            or datetime.fromisoformat(record.expires_at) <= now
            or not Path(record.archive_path).is_file()
        ):
            raise NotFound("Package", package_id)

        if record.downloaded_at is None:
            expires_at = min(
                datetime.fromisoformat(record.expires_at),
                now + self.download_retention,
            )
            record = record.model_copy(update={
                "downloaded_at": now.isoformat(),
                "expires_at": expires_at.isoformat(),
            })
            self.db.execute(
                """UPDATE packages SET downloaded_at = %s, expires_at = %s
                   WHERE package_id = %s""",
                (record.downloaded_at, record.expires_at, package_id),
            )
            logger.info(f"Package {package_id} downloaded, expires {record.expires_at}")
        return record

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired archives and their records. Returns the count removed."""
        cutoff = (now or _utc_now()).isoformat()
        rows = self.db.execute(
            "SELECT * FROM packages WHERE expires_at <= %s",
            (cutoff,),
            fetch="all",
        )
        for row in rows:
            record = self._row_to_record(row)
            Path(record.archive_path).unlink(missing_ok=True)
            self.db.execute(
                "DELETE FROM packages WHERE package_id = %s",
                (record.package_id,),
            )
            logger.info(f"Expired package {record.package_id} removed")
        return len(rows)

    def remove_stale_build_files(self) -> int:
        """Remove working trees and .partial files left by an interrupted process.

        Only safe when no build is running, i.e. at startup.
        """
        removed = 0
        for path in self.packages_dir.iterdir():
            if path.name.endswith(".work") and path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
                removed += 1
            elif path.name.endswith(".partial"):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.warning(f"Removed {removed} stale package build file(s)")
        return removed


class PackageJanitor:
    """Daemon thread that runs sweep_expired() every interval seconds."""

    def __init__(self, engine: PackagingEngine, interval_seconds: float = 30.0):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="package-janitor",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Package janitor started (every {self.interval_seconds}s)")

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.engine.sweep_expired()
            except Exception as e:
                logger.error(f"Package sweep failed: {e}")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
