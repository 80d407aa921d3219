"""Session API routes.

Endpoints:
    POST   /v1/sessions                                   Create a session
    GET    /v1/sessions                                   List sessions
    GET    /v1/sessions/{session_id}                      Get a session
    PUT    /v1/sessions/{session_id}                      Rename / change status
    DELETE /v1/sessions/{session_id}                      Delete session and its artifacts
    POST   /v1/sessions/{session_id}/phases/{phase}/complete
                                                          Complete a phase
    GET    /v1/sessions/{session_id}/progress             Completion percentage

Handlers are plain functions: FastAPI runs them in its thread pool, so
database and file I/O never blocks the event loop.
"""

import logging

from fastapi import APIRouter, Depends, Query

from planforge.api.deps import Services, get_services
from planforge.sessions import state_machine
from planforge.sessions.schemas import (
    CompletePhaseRequest,
    CompletePhaseResponse,
    CreateSessionRequest,
    Session,
    SessionSummary,
    UpdateSessionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=Session, status_code=201)
def create_session(
    request: CreateSessionRequest,
    services: Services = Depends(get_services),
) -> Session:
    """Create a session with all six phases incomplete."""
    return services.sessions.create_session(request.project_name)


@router.get("", response_model=list[SessionSummary])
def list_sessions(
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> list[SessionSummary]:
    """List sessions, most recently updated first."""
    return services.sessions.list_sessions(limit=limit)


@router.get("/{session_id}", response_model=Session)
def get_session(session_id: str, services: Services = Depends(get_services)) -> Session:
    return services.sessions.get_session(session_id)


@router.put("/{session_id}", response_model=Session)
def update_session(
    session_id: str,
    request: UpdateSessionRequest,
    services: Services = Depends(get_services),
) -> Session:
    return services.sessions.update_session(
        session_id,
        project_name=request.project_name,
        status=request.status,
        expected_revision=request.expected_revision,
    )


@router.delete("/{session_id}")
def delete_session(session_id: str, services: Services = Depends(get_services)) -> dict:
    """Delete a session together with every artifact generated for it."""
    services.sessions.delete_session(session_id)
    return {"session_id": session_id, "deleted": True}


@router.post(
    "/{session_id}/phases/{phase}/complete",
    response_model=CompletePhaseResponse,
)
def complete_phase(
    session_id: str,
    phase: str,
    request: CompletePhaseRequest,
    services: Services = Depends(get_services),
) -> CompletePhaseResponse:
    """Record a phase's data and outputs and advance the session.

    Pass expected_revision to reject the write if the session changed
    since it was read.
    """
    session, next_phase = services.sessions.complete_phase(
        session_id,
        phase,
        data=request.data,
        outputs=request.outputs,
        checklist_results=request.checklist_results,
        expected_revision=request.expected_revision,
    )
    return CompletePhaseResponse(
        session=session,
        next_phase=next_phase,
        progress=state_machine.get_progress(session),
    )


@router.get("/{session_id}/progress")
def get_progress(session_id: str, services: Services = Depends(get_services)) -> dict:
    session = services.sessions.get_session(session_id)
    return {
        "session_id": session.id,
        "current_phase": session.current_phase.value,
        "completed_phases": state_machine.completed_phases(session),
        "progress": state_machine.get_progress(session),
    }
