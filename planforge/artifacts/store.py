"""Per-session store for generated documents.

Each artifact is one markdown file under <artifacts_dir>/<session_id>/,
prefixed with a fixed metadata comment block. Writes replace by filename;
there is no versioning.
"""

import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from planforge.errors import ArtifactIOError, ValidationError
from planforge.sessions.repository import check_session_id
from planforge.storage.db import utc_now_iso

logger = logging.getLogger(__name__)

HEADER_TITLE = "Planforge Generated Document"

# Anchored: strips exactly one leading header block
_HEADER_RE = re.compile(r"\A<!--[\s\S]*?-->\s*?\n\n")

_SAFE_FILENAME = re.compile(r"^[^/\\\x00]{1,255}$")


class ArtifactDescriptor(BaseModel):
    """Where an artifact lives and how big it is."""

    session_id: str
    filename: str
    path: str
    size: int
    created_at: str
    modified_at: str


class ArtifactContent(BaseModel):
    """An artifact read back from the store."""

    session_id: str
    filename: str
    content: str = Field(description="Body with the metadata header removed")
    raw_content: str = Field(description="File content including the header")
    size: int = 0


def render_header(metadata: dict[str, Any]) -> str:
    """Build the fixed metadata block written before every artifact."""
    return (
        "<!--\n"
        f"{HEADER_TITLE}\n"
        f"Generated: {metadata.get('generated_at')}\n"
        f"Session: {metadata.get('session_id')}\n"
        f"Phase: {metadata.get('phase') or 'unknown'}\n"
        f"Agent: {metadata.get('agent_id') or 'unknown'}\n"
        f"Template: {metadata.get('template_name') or 'unknown'}\n"
        "-->\n"
        "\n"
    )


def strip_header(raw: str) -> str:
    """Remove one leading metadata block, if present."""
    return _HEADER_RE.sub("", raw, count=1)


def check_filename(filename: str) -> str:
    if (
        not isinstance(filename, str)
        or not _SAFE_FILENAME.match(filename)
        or filename in (".", "..")
    ):
        raise ValidationError(f"Malformed artifact filename: {filename!r}")
    return filename


class ArtifactStore:
    """Filesystem-backed document store, one directory per session."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def session_dir(self, session_id: str) -> Path:
        return self.base_dir / check_session_id(session_id)

    def _path(self, session_id: str, filename: str) -> Path:
        return self.session_dir(session_id) / check_filename(filename)

    def save(
        self,
        session_id: str,
        filename: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ArtifactDescriptor:
        """Write an artifact with its metadata header. Replaces any same-named file."""
        path = self._path(session_id, filename)
        header = render_header({
            **(metadata or {}),
            "generated_at": utc_now_iso(),
            "session_id": session_id,
        })
        body = header + content

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(body)
        except OSError as e:
            logger.error(f"Failed to save artifact {filename} for session {session_id}: {e}")
            raise ArtifactIOError(f"Failed to save artifact {filename}: {e}") from e

        logger.info(
            f"Saved artifact {filename} for session {session_id}, "
            f"{len(content):,} chars"
        )
        return self._describe(session_id, path)

    def _describe(self, session_id: str, path: Path) -> ArtifactDescriptor:
        stats = path.stat()
        created = getattr(stats, "st_birthtime", stats.st_mtime)
        return ArtifactDescriptor(
            session_id=session_id,
            filename=path.name,
            path=str(path),
            size=stats.st_size,
            created_at=datetime.fromtimestamp(created, timezone.utc).isoformat(),
            modified_at=datetime.fromtimestamp(stats.st_mtime, timezone.utc).isoformat(),
        )

    def read(self, session_id: str, filename: str) -> Optional[ArtifactContent]:
        """Read an artifact. Returns None when it does not exist."""
        path = self._path(session_id, filename)
        if not path.is_file():
            return None
        try:
            raw = path.read_bytes().decode("utf-8")
        except OSError as e:
            raise ArtifactIOError(f"Failed to read artifact {filename}: {e}") from e
        return ArtifactContent(
            session_id=session_id,
            filename=filename,
            content=strip_header(raw),
            raw_content=raw,
            size=len(raw.encode("utf-8")),
        )

    def list(self, session_id: str) -> list[ArtifactDescriptor]:
        """List a session's markdown artifacts, most recently written first."""
        directory = self.session_dir(session_id)
        if not directory.is_dir():
            return []
        descriptors = [
            self._describe(session_id, path)
            for path in directory.glob("*.md")
            if path.is_file()
        ]
        # By last write; an overwritten document sorts as new
        descriptors.sort(key=lambda d: (d.modified_at, d.filename), reverse=True)
        return descriptors

    def get_context(self, session_id: str) -> dict[str, str]:
        """Map of filename (without .md) -> content for every listed artifact.

        Insertion order follows list(): newest first.
        """
        context: dict[str, str] = {}
        for descriptor in self.list(session_id):
            artifact = self.read(session_id, descriptor.filename)
            if artifact is not None:
                context[descriptor.filename[: -len(".md")]] = artifact.content
        return context

    def delete(self, session_id: str, filename: str) -> bool:
        """Delete one artifact. Returns True if it existed."""
        path = self._path(session_id, filename)
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted artifact {filename} for session {session_id}")
        return True

    def delete_all(self, session_id: str) -> bool:
        """Delete every artifact for a session. Returns True if any existed."""
        directory = self.session_dir(session_id)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info(f"Deleted all artifacts for session {session_id}")
        return True
