"""AI routes: agent chat, template generation, suggestions, session documents.

Endpoints:
    POST   /v1/ai/chat                                   Chat with a phase agent
    POST   /v1/ai/generate-template                      Fill and save a template
    POST   /v1/ai/suggestions                            Next-step suggestions
    GET    /v1/ai/status                                 Gateway readiness
    POST   /v1/ai/initialize                             Configure the gateway at runtime
    GET    /v1/ai/sessions/{session_id}/files            List generated documents
    GET    /v1/ai/sessions/{session_id}/files/{filename} Read one document
    DELETE /v1/ai/sessions/{session_id}/files/{filename} Delete one document
    GET    /v1/ai/sessions/{session_id}/context          Every document's content by name

Model calls are blocking SDK calls. They run in the thread pool under
asyncio.wait_for, so a slow generation for one session never holds up
requests for another, and no call outlives llm_timeout_seconds.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from planforge.api.deps import Services, build_gateway, get_services
from planforge.artifacts.store import ArtifactContent, ArtifactDescriptor
from planforge.context.assembler import ChatResult, GeneratedDocument, Suggestion
from planforge.errors import NotFound, UpstreamServiceError, ValidationError
from planforge.sessions.state_machine import completed_phases

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


# ============================================================================
# Request/Response Schemas
# ============================================================================


class ChatMessage(BaseModel):
    type: str = Field(..., description="'user' or 'ai'")
    content: str = ""


class ChatRequest(BaseModel):
    """One user message to a phase agent."""

    agent_id: str = Field(..., min_length=1, description="Persona id, e.g. 'analyst'")
    phase: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="project_name, project_brief, prior_phase_data overrides",
    )
    chat_history: list[ChatMessage] = Field(default_factory=list)


class GenerateTemplateRequest(BaseModel):
    """Fill a template for a session; the result is saved as a document."""

    template_name: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


class GenerateTemplateResponse(GeneratedDocument):
    message: str


class SuggestionsRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)
    phase: str = Field(..., min_length=1)
    current_data: dict[str, Any] = Field(default_factory=dict)


class SuggestionsResponse(BaseModel):
    agent_id: str
    phase: str
    suggestions: list[Suggestion]


class InitializeRequest(BaseModel):
    api_key: str = Field(..., min_length=1)
    model: Optional[str] = Field(
        default=None,
        description="Model id; defaults to the configured PLANFORGE_MODEL",
    )


# ============================================================================
# Helpers
# ============================================================================


async def _call_model(services: Services, label: str, func: Callable, *args) -> Any:
    """Run a blocking model-backed call in the thread pool with a deadline."""
    timeout = services.settings.llm_timeout_seconds
    try:
        return await asyncio.wait_for(run_in_threadpool(func, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"{label} timed out after {timeout}s")
        raise UpstreamServiceError(f"{label} timed out after {timeout}s") from e


def _session_context(
    services: Services,
    session_id: Optional[str],
    context: dict[str, Any],
) -> dict[str, Any]:
    """Request context, filled in from the stored session where it is silent."""
    merged = dict(context)
    if not session_id:
        return merged
    merged["session_id"] = session_id
    session = services.sessions.find_session(session_id)
    if session is not None:
        merged.setdefault("project_name", session.project_name)
        merged.setdefault("phase", session.current_phase.value)
        merged.setdefault(
            "prior_phase_data",
            {p: session.phases[p].data for p in completed_phases(session)},
        )
    return merged


def _chat(services: Services, request: ChatRequest) -> ChatResult:
    context = _session_context(services, request.session_id, request.context)
    context["chat_history"] = [m.model_dump() for m in request.chat_history]
    return services.assembler.chat(request.agent_id, request.phase, request.message, context)


def _template_context(services: Services, request: GenerateTemplateRequest) -> dict[str, Any]:
    """Context for a template fill. The session must exist."""
    services.sessions.get_session(request.session_id)
    return _session_context(services, request.session_id, request.context)


def _store(
    services: Services,
    request: GenerateTemplateRequest,
    context: dict[str, Any],
    content: str,
) -> GeneratedDocument:
    document = services.assembler.save_document(
        request.template_name, request.agent_id, context, content
    )
    if document.saved_file is not None:
        services.sessions.register_generated_file(
            request.session_id, document.saved_file.filename
        )
    return document


def _gateway_status(services: Services) -> dict:
    gateway = services.gateway
    ready = services.assembler.is_ready()
    return {
        "ready": ready,
        "model": gateway.model_id if gateway else None,
        "message": "AI service ready" if ready else "Set an API key to enable AI features",
    }


# ============================================================================
# Generation
# ============================================================================


@router.post("/chat", response_model=ChatResult)
async def chat(request: ChatRequest, services: Services = Depends(get_services)) -> ChatResult:
    """Send a message to a phase agent.

    The prompt includes every document generated so far for the session.
    """
    return await _call_model(services, f"Chat with {request.agent_id}", _chat, services, request)


@router.post("/generate-template", response_model=GenerateTemplateResponse)
async def generate_template(
    request: GenerateTemplateRequest,
    services: Services = Depends(get_services),
) -> GenerateTemplateResponse:
    """Fill a template and save it to the session's documents.

    Only the model call runs under the deadline. The document is saved
    after it returns, so a timed-out request writes nothing.
    """
    context = await run_in_threadpool(_template_context, services, request)
    content = await _call_model(
        services,
        f"Template {request.template_name}",
        services.assembler.fill_template,
        request.template_name,
        request.agent_id,
        context,
    )
    document = await run_in_threadpool(_store, services, request, context, content)
    message = (
        f"Template generated and saved as {document.saved_file.filename}"
        if document.saved_file
        else "Template generated"
    )
    return GenerateTemplateResponse(**document.model_dump(), message=message)


@router.post("/suggestions", response_model=SuggestionsResponse)
async def suggestions(
    request: SuggestionsRequest,
    services: Services = Depends(get_services),
) -> SuggestionsResponse:
    """Next-step suggestions; unstructured model output becomes one suggestion."""
    items = await _call_model(
        services,
        f"Suggestions for {request.agent_id}",
        services.assembler.get_suggestions,
        request.agent_id,
        request.phase,
        request.current_data,
    )
    return SuggestionsResponse(agent_id=request.agent_id, phase=request.phase, suggestions=items)


@router.get("/status")
async def status(services: Services = Depends(get_services)) -> dict:
    """Check if the generation gateway is available."""
    return _gateway_status(services)


@router.post("/initialize")
async def initialize(
    request: InitializeRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Install a gateway for the supplied API key."""
    settings = services.settings
    if request.model:
        settings = settings.model_copy(update={"model": request.model})
    try:
        gateway = build_gateway(settings, api_key=request.api_key)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    services.install_gateway(gateway)
    return _gateway_status(services)


# ============================================================================
# Session documents
# ============================================================================


@router.get("/sessions/{session_id}/files")
def list_files(session_id: str, services: Services = Depends(get_services)) -> dict:
    files: list[ArtifactDescriptor] = services.artifacts.list(session_id)
    return {"session_id": session_id, "files": files, "count": len(files)}


@router.get("/sessions/{session_id}/files/{filename}", response_model=ArtifactContent)
def read_file(
    session_id: str,
    filename: str,
    services: Services = Depends(get_services),
) -> ArtifactContent:
    artifact = services.artifacts.read(session_id, filename)
    if artifact is None:
        raise NotFound("File", filename)
    return artifact


@router.delete("/sessions/{session_id}/files/{filename}")
def delete_file(
    session_id: str,
    filename: str,
    services: Services = Depends(get_services),
) -> dict:
    if not services.artifacts.delete(session_id, filename):
        raise NotFound("File", filename)
    return {"session_id": session_id, "filename": filename, "deleted": True}


@router.get("/sessions/{session_id}/context")
def get_context(session_id: str, services: Services = Depends(get_services)) -> dict:
    documents = services.artifacts.get_context(session_id)
    return {
        "session_id": session_id,
        "documents": documents,
        "document_count": len(documents),
    }
