"""Typed failures raised by the task, agent and sprint engines.

Every error carries a ``kind`` (the failure category), a stable ``code``
and the HTTP status the API layer should answer with, so callers can
render either a one-line CLI message or a structured JSON body.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskmasterError(Exception):
    """Base class for all core failures."""

    kind = "internal"
    code = "internal_error"
    http_status = 500

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "kind": self.kind, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


# ---------------------------------------------------------------------------
# InvalidInput
# ---------------------------------------------------------------------------

class InvalidInputError(TaskmasterError, ValueError):
    kind = "invalid_input"
    code = "invalid_input"
    http_status = 400


class InvalidStatusError(InvalidInputError):
    code = "invalid_status"


class InvalidTaskIdError(InvalidInputError):
    code = "invalid_task_id"


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------

class NotFoundError(TaskmasterError, LookupError):
    kind = "not_found"
    code = "not_found"
    http_status = 404


class TaskNotFoundError(NotFoundError):
    code = "task_not_found"


# ---------------------------------------------------------------------------
# PreconditionFailed / Conflict
# ---------------------------------------------------------------------------

class PreconditionFailedError(TaskmasterError):
    kind = "precondition_failed"
    code = "precondition_failed"
    http_status = 409


class NoAgentsError(PreconditionFailedError):
    code = "no_agents"


class NoAvailableAgentsError(PreconditionFailedError):
    code = "no_available_agents"


class TransitionNotAllowedError(PreconditionFailedError):
    code = "transition_not_allowed"


class ConflictError(TaskmasterError):
    """The store on disk advanced since it was loaded."""

    kind = "conflict"
    code = "conflict"
    http_status = 409


# ---------------------------------------------------------------------------
# IOFailure
# ---------------------------------------------------------------------------

class IOFailureError(TaskmasterError):
    kind = "io_failure"
    code = "io_failure"
    http_status = 500
