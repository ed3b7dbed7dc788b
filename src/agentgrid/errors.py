"""Error taxonomy for AgentGrid.

Every failure surfaced to a caller derives from AgentGridError and carries the
HTTP status and machine-readable code used by the REST and WebSocket layers.
"""

from __future__ import annotations


class AgentGridError(Exception):
    """Base class for all expected AgentGrid failures."""

    status_code = 500
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.message, "code": self.code}


class ValidationError(AgentGridError):
    """Input rejected before any process interaction."""

    status_code = 400
    code = "invalid"


class NameInvalidError(ValidationError):
    code = "name_invalid"


class DirectoryInvalidError(ValidationError):
    code = "directory_invalid"


class NotFoundError(AgentGridError):
    """Unknown session id or missing process."""

    status_code = 404
    code = "not_found"


class ConflictError(AgentGridError):
    """Duplicate name or external id, or an action invalid in the current state."""

    status_code = 409
    code = "conflict"


class AlreadyExistsError(ConflictError):
    code = "already_exists"


class NotOfflineError(ConflictError):
    code = "not_offline"


class OfflineError(AgentGridError):
    """Action attempted on a session whose process is gone."""

    status_code = 409
    code = "offline"


class ProcessError(AgentGridError):
    """External process invocation failed."""

    status_code = 502
    code = "process_error"


class ProcessTimeoutError(ProcessError):
    """External process invocation exceeded its time bound."""

    status_code = 504
    code = "timeout"
