"""
Workflow error taxonomy.

Every case operation either returns the updated case or raises one of these.
The HTTP layer renders them as {"success": false, "error": {...}} and surfaces
the message verbatim, since it is the only sequencing guidance users get.
"""

from typing import Optional


class CaseWorkflowError(Exception):
    """Base class for failures reported by case operations"""

    kind = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.current_state = getattr(current_state, "value", current_state)

    def to_dict(self) -> dict:
        error = {"kind": self.kind, "message": self.message}
        if self.current_state is not None:
            error["currentState"] = self.current_state
        return error


class GateViolation(CaseWorkflowError):
    """Transition not allowed from the current state, or a prerequisite is missing"""

    kind = "GATE_VIOLATION"
    status_code = 400


class NotFoundError(CaseWorkflowError):
    """Referenced record does not exist or is outside the caller's scope"""

    kind = "NOT_FOUND"
    status_code = 404


class CaseValidationError(CaseWorkflowError):
    """Missing or malformed input"""

    kind = "VALIDATION"
    status_code = 400


class ConflictError(CaseWorkflowError):
    """Duplicate creation of an at-most-one resource"""

    kind = "CONFLICT"
    status_code = 409
