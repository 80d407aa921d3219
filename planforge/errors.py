"""Error taxonomy shared by every planforge service.

Services raise these; the API layer maps them to HTTP status codes.
"""


class PlanforgeError(Exception):
    """Base class for all planforge errors."""

    status_code = 500


class ValidationError(PlanforgeError):
    """Missing or malformed input. Raised before any mutation."""

    status_code = 400


class InvalidPhase(PlanforgeError):
    """Unknown phase key."""

    status_code = 400

    def __init__(self, phase: str):
        super().__init__(f"Invalid phase: {phase}")
        self.phase = phase


class NotFound(PlanforgeError):
    """Session, persona, template, package or artifact does not exist."""

    status_code = 404

    def __init__(self, kind: str, key: str, hint: str = ""):
        message = f"{kind} not found: {key}"
        if hint:
            message += f" ({hint})"
        super().__init__(message)
        self.kind = kind
        self.key = key


class StaleRevision(PlanforgeError):
    """A write was based on an outdated session revision."""

    status_code = 409

    def __init__(self, session_id: str, expected: int, actual: int):
        super().__init__(
            f"Session {session_id} is at revision {actual}, "
            f"caller expected {expected}"
        )
        self.session_id = session_id
        self.expected = expected
        self.actual = actual


class UpstreamServiceError(PlanforgeError):
    """The generation backend failed, timed out, or was rate-limited."""

    status_code = 502


class GatewayUnavailable(PlanforgeError):
    """No generation backend is configured."""

    status_code = 503


class PackageBuildInProgress(PlanforgeError):
    """A package build for this session is already running."""

    status_code = 409


class PackageBuildCancelled(PlanforgeError):
    """A running package build was cancelled before the archive was exposed."""

    status_code = 409


class ArtifactIOError(PlanforgeError):
    """Reading or writing an artifact or archive failed."""

    status_code = 500
