"""Phase state machine.

Pure functions over Session objects. No I/O: the SessionService wraps
these with persistence and per-session locking.

States: analyst -> pm -> architect -> designArchitect -> po -> sm -> completed.
The single transition, complete(phase), moves current_phase to the
successor of *that* phase. Predecessors are not required to be complete,
so completing an earlier phase after later ones moves current_phase back.
"""

import logging
from typing import Any, Iterable, Optional

from planforge.errors import InvalidPhase, ValidationError
from planforge.sessions.schemas import (
    ChecklistResult,
    Output,
    Phase,
    PhaseRecord,
    Session,
    SessionStatus,
)
from planforge.storage.db import utc_now_iso

logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[str, ...] = (
    Phase.ANALYST.value,
    Phase.PM.value,
    Phase.ARCHITECT.value,
    Phase.DESIGN_ARCHITECT.value,
    Phase.PO.value,
    Phase.SM.value,
)

MAX_PROJECT_NAME_LENGTH = 200


def validate_project_name(project_name: Any) -> str:
    """Return the trimmed project name or raise ValidationError."""
    if not isinstance(project_name, str) or not project_name.strip():
        raise ValidationError("Project name is required")
    name = project_name.strip()
    if len(name) > MAX_PROJECT_NAME_LENGTH:
        raise ValidationError(
            f"Project name must be at most {MAX_PROJECT_NAME_LENGTH} characters "
            f"(got {len(name)})"
        )
    return name


def new_session(project_name: str) -> Session:
    """Build a fresh session with all six phases incomplete."""
    return Session(project_name=validate_project_name(project_name))


def next_phase_after(phase: str) -> Phase:
    """Successor of `phase` in the fixed order, or COMPLETED after the last."""
    if phase not in PHASE_ORDER:
        raise InvalidPhase(phase)
    index = PHASE_ORDER.index(phase)
    if index < len(PHASE_ORDER) - 1:
        return Phase(PHASE_ORDER[index + 1])
    return Phase.COMPLETED


def complete_phase(
    session: Session,
    phase: str,
    data: Optional[dict[str, Any]] = None,
    outputs: Optional[Iterable[Output]] = None,
    checklist_results: Optional[dict[str, ChecklistResult]] = None,
) -> tuple[Session, Phase]:
    """Record a phase as completed and advance the state.

    Returns a new Session (the input is not mutated) and the next phase.
    Raises InvalidPhase for a key that is not one of the six phases.
    """
    if phase not in PHASE_ORDER:
        raise InvalidPhase(phase)

    now = utc_now_iso()
    updated = session.model_copy(deep=True)

    updated.phases[phase] = PhaseRecord(
        completed=True,
        data=dict(data or {}),
        outputs=list(outputs or []),
        checklist_results=dict(checklist_results or {}),
        completed_at=now,
    )

    # Shallow merge, later completions override overlapping keys
    if data:
        updated.global_data.update(data)

    next_phase = next_phase_after(phase)
    updated.current_phase = next_phase
    if next_phase is Phase.COMPLETED:
        updated.status = SessionStatus.COMPLETED
        updated.completed_at = now

    updated.updated_at = now

    logger.info(
        f"Session {session.id}: completed phase '{phase}' "
        f"({len(updated.phases[phase].outputs)} outputs) -> {next_phase.value}"
    )
    return updated, next_phase


def completed_phases(session: Session) -> list[str]:
    """Names of completed phases, in the fixed order."""
    return [p for p in PHASE_ORDER if session.phases[p].completed]


def get_progress(session: Session) -> int:
    """Completion percentage: round(100 * completed / 6)."""
    done = len(completed_phases(session))
    return round(100 * done / len(PHASE_ORDER))
