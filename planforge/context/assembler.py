"""Grounded prompt assembly for planning agents.

Every prompt the assembler builds carries the agent's persona, the current
phase and project, and the full text of every document already generated
for the session. Nothing is truncated: later phases are expected to stay
consistent with earlier documents, so they must see all of them.

The assembler is a pure reader of the Document Store except for
generate_document(), which writes the filled template back when the
context names both a session and a project.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, Field

from planforge.artifacts.store import ArtifactDescriptor, ArtifactStore
from planforge.context.catalog import PromptCatalog
from planforge.errors import GatewayUnavailable
from planforge.llm.backends import GenerationGateway
from planforge.llm.client import parse_llm_json_response

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTION_TITLE = "AI Guidance"


class Suggestion(BaseModel):
    """One next-step suggestion for the current phase."""

    title: str
    description: str = ""
    priority: str = Field(default="medium", description="high | medium | low")


class ChatResult(BaseModel):
    response: str
    agent_id: str
    phase: str
    timestamp: str


class GeneratedDocument(BaseModel):
    """A filled template, plus where it was saved (if it was)."""

    content: str
    template_name: str
    agent_id: str
    timestamp: str
    saved_file: Optional[ArtifactDescriptor] = None


def document_heading(name: str) -> str:
    """'acme-widget-prd' -> 'Acme Widget Prd'."""
    return " ".join(word.capitalize() for word in name.replace("-", " ").split(" "))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContextAssembler:
    """Builds prompts from persona, template, history and session documents."""

    def __init__(
        self,
        catalog: PromptCatalog,
        artifacts: ArtifactStore,
        gateway: Optional[GenerationGateway] = None,
    ):
        self.catalog = catalog
        self.artifacts = artifacts
        self.gateway = gateway

    def is_ready(self) -> bool:
        return self.gateway is not None and self.gateway.is_ready()

    def _require_gateway(self) -> GenerationGateway:
        if not self.is_ready():
            raise GatewayUnavailable("AI service not available")
        return self.gateway

    # -- prompt building -------------------------------------------------

    def _documents_section(self, session_id: Optional[str], title: str) -> list[str]:
        if not session_id:
            return []
        documents = self.artifacts.get_context(session_id)
        if not documents:
            return []

        lines = ["", f"## {title}", ""]
        for name, content in documents.items():
            lines.extend([f"### {document_heading(name)}", content, "", "---", ""])
        logger.debug(f"Inlined {len(documents)} documents for session {session_id}")
        return lines

    def build_chat_prompt(
        self,
        agent_id: str,
        phase: str,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """Prompt for one conversational turn with an agent.

        Raises NotFound when the agent has no persona.
        """
        context = context or {}
        persona = self.catalog.load_persona(agent_id)
        project_name = context.get("project_name") or ""
        prior = context.get("prior_phase_data")

        lines = [
            "# Planning Agent Session",
            "",
            "## Your Role",
            persona,
            "",
            f"## Current Phase: {phase.upper()}",
            "",
            "## Project Context",
            f"**Project Name:** {project_name or 'Not specified'}",
            "",
            "**Project Brief:**",
            context.get("project_brief") or "No project brief available yet",
            "",
            "## Previous Phase Outputs",
            json.dumps(prior, indent=2, default=str) if prior else "No previous phases completed",
        ]

        lines.extend(
            self._documents_section(context.get("session_id"), "Generated Documents (Full Content)")
        )

        history = context.get("chat_history") or []
        if history:
            lines.extend(["", "## Chat History"])
            for message in history:
                if message.get("type") == "user":
                    lines.append(f"**User:** {message.get('content', '')}")
                elif message.get("type") == "ai":
                    lines.append(f"**You:** {message.get('content', '')}")

        lines.extend([
            "",
            "## Current User Message",
            context.get("user_input") or "User is starting this phase",
            "",
            "## Instructions",
            "1. Act as the specified agent persona consistently",
            "2. Remember the conversation history and maintain context",
            f'3. The project name is "{project_name}" - always use this exact name',
            "4. Help the user complete the current planning phase",
            "5. Ask clarifying questions to gather necessary information",
            "6. Provide expert guidance based on your role",
            "7. Generate structured outputs that can be used in templates",
            "8. Be conversational but professional",
            "9. Focus on the specific phase requirements",
            "10. When the user is ready, offer to generate templates for this phase",
            "",
            "## Response Format",
            "Please respond in a conversational manner, maintaining context from "
            "our previous conversation. If you need specific information to "
            "proceed, ask for it clearly. Always use the correct project name "
            f'"{project_name}".',
        ])
        return "\n".join(lines)

    def build_template_prompt(
        self,
        persona: str,
        template_body: str,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """Prompt asking the model to fill one template and nothing else."""
        context = context or {}
        lines = [
            "# Template Generation Task",
            "",
            "## Your Role",
            persona,
            "",
            "## Template to Fill",
            template_body,
            "",
            "## Project Context",
            json.dumps(context, indent=2, default=str),
        ]

        lines.extend(
            self._documents_section(
                context.get("session_id"), "Previously Generated Documents (Full Content)"
            )
        )

        lines.extend([
            "",
            "## Instructions",
            "1. Fill out the template completely based on the project context "
            "and previously generated documents",
            "2. Use your expertise as the specified agent",
            "3. Replace all placeholders with appropriate content",
            "4. Ensure consistency with previously generated documents",
            "5. Ensure the output is professional and comprehensive",
            "6. Return only the filled template content, no additional commentary",
            "",
            "Generate the completed template:",
        ])
        return "\n".join(lines)

    def build_suggestions_prompt(
        self,
        agent_id: str,
        phase: str,
        current_data: Optional[dict[str, Any]] = None,
    ) -> str:
        persona = self.catalog.load_persona(agent_id)
        return "\n".join([
            "# Agent Suggestions Request",
            "",
            "## Your Role",
            persona,
            "",
            f"## Current Phase: {phase}",
            "",
            "## Current Data",
            json.dumps(current_data or {}, indent=2, default=str),
            "",
            "## Instructions",
            "Provide 3-5 specific, actionable suggestions for what the user "
            "should do next in this phase. Be concise and practical.",
            "",
            "Format your response as a JSON array of suggestion objects:",
            "[",
            "  {",
            '    "title": "Suggestion title",',
            '    "description": "Brief description",',
            '    "priority": "high|medium|low"',
            "  }",
            "]",
        ])

    # -- generation ------------------------------------------------------

    def chat(
        self,
        agent_id: str,
        phase: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> ChatResult:
        """One chat turn. Raises GatewayUnavailable, NotFound, UpstreamServiceError."""
        gateway = self._require_gateway()
        prompt = self.build_chat_prompt(
            agent_id, phase, {**(context or {}), "user_input": message}
        )
        logger.info(f"Chat with {agent_id} in phase {phase}, prompt {len(prompt):,} chars")
        response = gateway.generate(prompt)
        return ChatResult(response=response, agent_id=agent_id, phase=phase, timestamp=_now())

    def fill_template(
        self,
        template_name: str,
        agent_id: str,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """Model call only: the filled template text. Nothing is written.

        The template and persona are resolved before the model is called,
        so a missing one costs no generation.
        """
        gateway = self._require_gateway()
        context = context or {}
        template_body = self.catalog.load_template(template_name)
        persona = self.catalog.load_persona(agent_id)

        prompt = self.build_template_prompt(persona, template_body, context)
        logger.info(
            f"Generating {template_name} as {agent_id}, prompt {len(prompt):,} chars"
        )
        return gateway.generate(prompt)

    def save_document(
        self,
        template_name: str,
        agent_id: str,
        context: Optional[dict[str, Any]],
        content: str,
    ) -> GeneratedDocument:
        """Store filled template text when the context names a session and project."""
        context = context or {}
        saved_file = None
        session_id = context.get("session_id")
        project_name = context.get("project_name")
        if session_id and project_name:
            filename = self.catalog.output_filename(template_name, project_name)
            saved_file = self.artifacts.save(
                session_id,
                filename,
                content,
                {
                    "phase": context.get("phase"),
                    "agent_id": agent_id,
                    "template_name": template_name,
                },
            )

        return GeneratedDocument(
            content=content,
            template_name=template_name,
            agent_id=agent_id,
            timestamp=_now(),
            saved_file=saved_file,
        )

    def generate_document(
        self,
        template_name: str,
        agent_id: str,
        context: Optional[dict[str, Any]] = None,
    ) -> GeneratedDocument:
        """Fill a template and, for a named session and project, save it."""
        content = self.fill_template(template_name, agent_id, context)
        return self.save_document(template_name, agent_id, context, content)

    def get_suggestions(
        self,
        agent_id: str,
        phase: str,
        current_data: Optional[dict[str, Any]] = None,
    ) -> list[Suggestion]:
        """Ask for next-step suggestions.

        A failed model call propagates. A response that is not a JSON list
        of suggestion objects becomes a single medium-priority suggestion
        carrying the raw text.
        """
        gateway = self._require_gateway()
        prompt = self.build_suggestions_prompt(agent_id, phase, current_data)
        text = gateway.generate(prompt)

        try:
            parsed = parse_llm_json_response(text)
            if not isinstance(parsed, list):
                raise ValueError(f"expected a JSON array, got {type(parsed).__name__}")
            return [Suggestion.model_validate(item) for item in parsed]
        except (json.JSONDecodeError, pydantic.ValidationError, ValueError) as e:
            logger.info(f"Suggestions for {agent_id}/{phase} were not structured ({e}), using raw text")
            return [Suggestion(title=FALLBACK_SUGGESTION_TITLE, description=text, priority="medium")]
