from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for errors the engine reports back to its caller."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(WorkflowError):
    """Entity is absent or belongs to another organization."""

    status_code = 404


class ValidationError(WorkflowError):
    status_code = 400


class InvalidTransitionError(WorkflowError):
    status_code = 409

    def __init__(self, entity: str, current: str, requested: str, reason: Optional[str] = None):
        message = f"Cannot move {entity} from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"current": current, "requested": requested})
        self.entity = entity
        self.current = current
        self.requested = requested


class ConflictError(WorkflowError):
    """A structural change is blocked by existing dependents."""

    status_code = 409
