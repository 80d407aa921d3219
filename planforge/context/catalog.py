"""Prompt catalog - loads persona and template text from definition files.

Layout under planforge/context/definitions/:
- personas/<agent_id>.md     role text injected into every prompt
- templates/<file>.md        document skeletons the model fills in
- templates.yaml             template aliases and saved-file suffixes
"""

import logging
import re
from pathlib import Path
from typing import Optional

import yaml

from planforge.errors import NotFound

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.()-]*$")


def slugify(project_name: str) -> str:
    """Lowercase, whitespace and path separators collapsed to dashes."""
    return re.sub(r"[\s/\\]+", "-", project_name.strip().lower())


class PromptCatalog:
    """Persona and template text, plus the template filename table."""

    def __init__(self, definitions_dir: Optional[Path] = None):
        if definitions_dir is None:
            definitions_dir = Path(__file__).parent / "definitions"
        self.definitions_dir = Path(definitions_dir)
        self.personas_dir = self.definitions_dir / "personas"
        self.templates_dir = self.definitions_dir / "templates"
        self._templates: dict[str, dict] = {}
        self._loaded = False

    def load(self) -> None:
        """Load the template index from templates.yaml."""
        if self._loaded:
            return

        index_path = self.definitions_dir / "templates.yaml"
        if index_path.exists():
            with open(index_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self._templates = data.get("templates", {}) or {}
        else:
            logger.warning(f"Template index not found: {index_path}")

        self._loaded = True
        logger.info(f"Loaded {len(self._templates)} template definitions")

    def load_persona(self, agent_id: str) -> str:
        """Persona text for an agent. Raises NotFound."""
        if not agent_id or not _SAFE_NAME.match(agent_id):
            raise NotFound("Persona", str(agent_id))
        path = self.personas_dir / f"{agent_id}.md"
        if not path.is_file():
            raise NotFound("Persona", agent_id)
        return path.read_text(encoding="utf-8")

    def load_template(self, template_name: str) -> str:
        """Template body by id or filename.

        Tries the catalogued file for a known id, then the name as given,
        then the name with '.md' appended. Raises NotFound.
        """
        self.load()
        entry = self._templates.get(template_name) or {}
        actual = entry.get("file", template_name)

        if not actual or not _SAFE_NAME.match(actual):
            raise NotFound("Template", str(template_name))

        path = self.templates_dir / actual
        if not path.is_file() and not actual.endswith(".md"):
            path = self.templates_dir / f"{actual}.md"
        if not path.is_file():
            raise NotFound("Template", template_name, hint=f"looked for: {actual}")

        return path.read_text(encoding="utf-8")

    def output_filename(self, template_name: str, project_name: str) -> str:
        """Filename a filled template is saved under for a session.

        Known templates use their catalogued suffix; anything else becomes
        <project-slug>-<template name>, always ending in .md.
        """
        self.load()
        slug = slugify(project_name)
        entry = self._templates.get(template_name) or {}
        suffix = entry.get("output_suffix") or template_name
        if not suffix.endswith(".md"):
            suffix = f"{suffix}.md"
        return f"{slug}-{suffix}"

    def template_names(self) -> list[str]:
        self.load()
        return list(self._templates.keys())
