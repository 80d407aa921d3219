"""Persona/template catalog and grounded prompt assembly."""

from planforge.context.assembler import (
    ChatResult,
    ContextAssembler,
    GeneratedDocument,
    Suggestion,
)
from planforge.context.catalog import PromptCatalog, slugify

__all__ = [
    "ChatResult",
    "ContextAssembler",
    "GeneratedDocument",
    "PromptCatalog",
    "Suggestion",
    "slugify",
]
