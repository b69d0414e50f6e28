from typing import Any, Dict, List, Optional


class MaintenanceError(Exception):
    """Base class for errors the API maps onto an HTTP status."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(MaintenanceError):
    status_code = 422


class NotFoundError(MaintenanceError):
    status_code = 404


class StateConflictError(MaintenanceError):
    status_code = 409


class IncompleteExecutionError(StateConflictError):
    """Raised when an execution is completed while required tasks are unanswered."""

    def __init__(self, missing_tasks: List[Dict[str, Any]]):
        super().__init__(
            "Required tasks are missing responses",
            {"missing_required_tasks": missing_tasks},
        )
        self.missing_tasks = missing_tasks


class AuthorizationError(MaintenanceError):
    status_code = 403


class TransactionFailure(MaintenanceError):
    status_code = 500
