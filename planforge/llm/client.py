"""Helpers for reading structured data out of model responses."""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from an LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    # Strip leading markdown fence (```json or ```)
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    # Strip trailing fence
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    return json.loads(content.strip())
