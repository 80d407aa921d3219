"""Tests for the packaging engine.

Tests cover:
- Package contents for partially and fully completed sessions
- Agent prompt interpolation (developer prompt joins every story)
- Atomic archive creation: no working tree or .partial left behind
- Duplicate concurrent builds rejected, running builds cancellable
- preview_package() estimate and lack of side effects
- Download retention and sweep_expired()
"""

import threading
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from planforge.errors import (
    ArtifactIOError,
    NotFound,
    PackageBuildCancelled,
    PackageBuildInProgress,
)
from planforge.packaging.engine import PackagingEngine
from planforge.sessions.schemas import ChecklistResult, Output
from planforge.sessions.state_machine import PHASE_ORDER

AGENT_PROMPTS = [
    "agent-prompts/analyst-agent-prompt.md",
    "agent-prompts/pm-agent-prompt.md",
    "agent-prompts/architect-agent-prompt.md",
    "agent-prompts/developer-agent-prompt.md",
]


@pytest.fixture
def engine(services):
    return services.packaging


@pytest.fixture
def session(services):
    return services.sessions.create_session("Acme Widget")


def complete(services, session_id, phase, outputs=(), checklists=None):
    services.sessions.complete_phase(
        session_id,
        phase,
        data={},
        outputs=[Output(type=t, content=c) for t, c in outputs],
        checklist_results=checklists,
    )


def leftovers(engine: PackagingEngine) -> list[str]:
    return [
        p.name for p in engine.packages_dir.iterdir()
        if p.name.endswith((".work", ".partial"))
    ]


class TestBuildContents:
    """What goes into the archive."""

    def test_two_completed_phases(self, services, engine, session):
        complete(services, session.id, "analyst", [("project-brief", "# Brief")])
        complete(services, session.id, "pm", [("prd", "# PRD")])

        record = engine.build_package(session.id)

        assert sorted(record.files) == sorted(
            ["docs/project-brief.md", "docs/prd.md", *AGENT_PROMPTS, "README.md"]
        )
        assert not any(f.startswith("checklists/") for f in record.files)

        with zipfile.ZipFile(record.archive_path) as zf:
            assert sorted(zf.namelist()) == sorted(record.files)
            assert zf.read("docs/prd.md").decode() == "# PRD"
            readme = zf.read("README.md").decode()
        assert readme.startswith("# Acme Widget")
        assert session.id in readme
        assert record.size_bytes == Path(record.archive_path).stat().st_size
        assert leftovers(engine) == []

    def test_empty_session_still_has_prompts_and_readme(self, engine, session):
        record = engine.build_package(session.id)
        assert sorted(record.files) == sorted([*AGENT_PROMPTS, "README.md"])

    def test_agent_prompts_use_completed_outputs(self, services, engine, session):
        complete(services, session.id, "analyst", [("project-brief", "BRIEF TEXT")])
        complete(services, session.id, "architect", [("architecture", "ARCH TEXT")])
        complete(
            services,
            session.id,
            "sm",
            [("story", "STORY ONE"), ("story", "STORY TWO")],
        )

        record = engine.build_package(session.id)
        with zipfile.ZipFile(record.archive_path) as zf:
            analyst = zf.read("agent-prompts/analyst-agent-prompt.md").decode()
            pm = zf.read("agent-prompts/pm-agent-prompt.md").decode()
            developer = zf.read("agent-prompts/developer-agent-prompt.md").decode()

        assert "**Project Name:** Acme Widget" in analyst
        assert "BRIEF TEXT" in analyst
        assert "No PRD available" in pm
        assert "ARCH TEXT" in developer
        assert "STORY ONE\n\n---\n\nSTORY TWO" in developer

    def test_repeated_output_types_get_suffixes(self, services, engine, session):
        complete(
            services,
            session.id,
            "sm",
            [("story", "one"), ("story", "two"), ("story", "three")],
        )
        record = engine.build_package(session.id)
        docs = [f for f in record.files if f.startswith("docs/")]
        assert docs == ["docs/story.md", "docs/story-2.md", "docs/story-3.md"]

    def test_checklists_only_for_completed_phases(self, services, engine, session):
        result = ChecklistResult(responses={"a": True, "b": True, "c": False, "d": True})
        complete(services, session.id, "po", checklists={"po-master-checklist": result})

        record = engine.build_package(session.id)
        assert "checklists/completed-po-master-checklist" in record.files
        with zipfile.ZipFile(record.archive_path) as zf:
            text = zf.read("checklists/completed-po-master-checklist").decode()
        assert text.startswith("# po-master-checklist - Completed")
        assert "**Completion:** 75%" in text
        assert '"a": true' in text

    def test_unknown_session(self, engine):
        with pytest.raises(NotFound):
            engine.build_package("missing")


class TestBuildFailures:
    """Failed, duplicate and cancelled builds expose no archive."""

    def test_compression_failure_leaves_nothing(self, engine, session, monkeypatch):
        def broken_write(self, *args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(zipfile.ZipFile, "write", broken_write)
        with pytest.raises(ArtifactIOError):
            engine.build_package(session.id)

        assert list(engine.packages_dir.iterdir()) == []
        assert engine.is_building(session.id) is False

    def _blocked_build(self, engine, session_id, monkeypatch):
        """Start a build that waits inside package_entries until released."""
        started = threading.Event()
        release = threading.Event()
        outcome = {}
        original = engine.package_entries

        def slow_entries(session, generated_at):
            started.set()
            release.wait(5)
            return original(session, generated_at)

        monkeypatch.setattr(engine, "package_entries", slow_entries)

        def run():
            try:
                outcome["record"] = engine.build_package(session_id)
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=run)
        thread.start()
        assert started.wait(5)
        return thread, release, outcome

    def test_duplicate_build_rejected(self, engine, session, monkeypatch):
        thread, release, outcome = self._blocked_build(engine, session.id, monkeypatch)
        try:
            with pytest.raises(PackageBuildInProgress):
                engine.build_package(session.id)
        finally:
            release.set()
            thread.join(5)
        assert "record" in outcome

    def test_cancelled_build_exposes_no_archive(self, engine, session, monkeypatch):
        thread, release, outcome = self._blocked_build(engine, session.id, monkeypatch)
        assert engine.cancel_build(session.id) is True
        release.set()
        thread.join(5)

        assert isinstance(outcome.get("error"), PackageBuildCancelled)
        assert list(engine.packages_dir.iterdir()) == []
        assert engine.cancel_build(session.id) is False


class TestPreview:
    """Tests for preview_package()."""

    def test_estimate_and_no_side_effects(self, services, engine, session):
        complete(services, session.id, "analyst", [("project-brief", "x")])
        complete(services, session.id, "pm", [("prd", "y"), ("epics", "z")])

        preview = engine.preview_package(session.id)

        assert preview.estimated_files == 3 + 5
        assert list(preview.phases) == list(PHASE_ORDER)
        assert preview.phases["pm"].completed is True
        assert preview.phases["pm"].output_types == ["prd", "epics"]
        assert preview.phases["sm"].outputs == 0
        assert list(engine.packages_dir.iterdir()) == []


class TestLifecycle:
    """Download retention and expiry sweeps."""

    def test_first_download_shortens_expiry(self, engine, session):
        record = engine.build_package(session.id)
        assert record.downloaded_at is None

        opened = engine.open_download(record.package_id)
        assert opened.downloaded_at is not None
        expires = datetime.fromisoformat(opened.expires_at)
        assert expires <= datetime.now(timezone.utc) + engine.download_retention
        assert engine.get_package(record.package_id).expires_at == opened.expires_at

    def test_sweep_removes_expired_archives(self, engine, session):
        record = engine.build_package(session.id)
        assert engine.sweep_expired() == 0
        assert Path(record.archive_path).exists()

        later = datetime.now(timezone.utc) + engine.package_ttl + timedelta(seconds=1)
        assert engine.sweep_expired(now=later) == 1
        assert not Path(record.archive_path).exists()
        assert engine.get_package(record.package_id) is None
        with pytest.raises(NotFound):
            engine.open_download(record.package_id)

    def test_downloaded_package_swept_after_retention(self, engine, session):
        record = engine.build_package(session.id)
        engine.open_download(record.package_id)
        later = datetime.now(timezone.utc) + engine.download_retention + timedelta(seconds=1)
        assert engine.sweep_expired(now=later) == 1

    def test_records_survive_a_new_engine(self, services, engine, session):
        record = engine.build_package(session.id)
        restarted = PackagingEngine(services.sessions, services.db, engine.packages_dir)
        later = datetime.now(timezone.utc) + timedelta(hours=2)
        assert restarted.sweep_expired(now=later) == 1
        assert not Path(record.archive_path).exists()

    def test_stale_build_files_removed(self, engine):
        (engine.packages_dir / "old.work" / "docs").mkdir(parents=True)
        (engine.packages_dir / "old.zip.partial").write_bytes(b"")
        assert engine.remove_stale_build_files() == 2
        assert list(engine.packages_dir.iterdir()) == []

    def test_unknown_package(self, engine):
        with pytest.raises(NotFound):
            engine.open_download("no-such-package")
