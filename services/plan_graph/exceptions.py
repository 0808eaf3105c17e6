"""
Domain Exceptions for the Plan Graph Engine

Every failure the engine reports is a BasePlanException carrying the ids and
the violated rule in ``details``, so the HTTP layer can render a specific
message instead of a generic failure.

Three families:
- NotFoundError: an id does not resolve (or is outside the caller's scope)
- ValidationError: well-formed request that breaks an invariant
- AuthorizationError: acting user missing at the HTTP boundary
"""


class BasePlanException(Exception):
    """Base exception for all plan graph business errors"""

    code = "PLAN_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialize for API response"""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Not found
# =============================================================================

class NotFoundError(BasePlanException):
    code = "NOT_FOUND"


class PlanNotFound(NotFoundError):
    code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id=None, analysis_id=None):
        details = {}
        if plan_id is not None:
            details["plan_id"] = str(plan_id)
        if analysis_id is not None:
            details["analysis_id"] = str(analysis_id)
        super().__init__(message="Action plan not found", details=details)


class PhaseNotFound(NotFoundError):
    code = "PHASE_NOT_FOUND"

    def __init__(self, phase_id, plan_id=None):
        details = {"phase_id": str(phase_id)}
        if plan_id is not None:
            details["plan_id"] = str(plan_id)
        super().__init__(message="Phase not found", details=details)


class TaskNotFound(NotFoundError):
    code = "TASK_NOT_FOUND"

    def __init__(self, task_id):
        super().__init__(
            message="Task not found",
            details={"task_id": str(task_id)}
        )


class DependencyNotFound(NotFoundError):
    code = "DEPENDENCY_NOT_FOUND"

    def __init__(self, dependency_id):
        super().__init__(
            message="Dependency not found",
            details={"dependency_id": str(dependency_id)}
        )


# =============================================================================
# Validation
# =============================================================================

class ValidationError(BasePlanException):
    code = "VALIDATION_ERROR"


class SelfDependency(ValidationError):
    code = "DEP_SELF_REFERENCE"

    def __init__(self, task_id):
        super().__init__(
            message="A task cannot depend on itself",
            details={"task_id": str(task_id), "invariant": "acyclic"}
        )


class CircularDependency(ValidationError):
    code = "DEP_CIRCULAR_DEPENDENCY"

    def __init__(self, task_id, prerequisite_task_id, cycle_path: list = None):
        super().__init__(
            message="This would create a circular dependency",
            details={
                "task_id": str(task_id),
                "prerequisite_task_id": str(prerequisite_task_id),
                "cycle_path": [str(node) for node in (cycle_path or [])],
                "invariant": "acyclic",
            }
        )


class CrossPlanReference(ValidationError):
    code = "DEP_DIFFERENT_PLANS"

    def __init__(self, message: str, details: dict):
        super().__init__(message=message, details={**details, "invariant": "same_plan"})


class DuplicateDependency(ValidationError):
    code = "DEP_ALREADY_EXISTS"

    def __init__(self, task_id, prerequisite_task_id, dependency_id):
        super().__init__(
            message="Dependency already exists",
            details={
                "task_id": str(task_id),
                "prerequisite_task_id": str(prerequisite_task_id),
                "dependency_id": str(dependency_id),
            }
        )


class IncompletePrerequisites(ValidationError):
    code = "TASK_INCOMPLETE_PREREQUISITES"

    def __init__(self, task_id, incomplete: list):
        super().__init__(
            message="Task has incomplete prerequisites",
            details={
                "task_id": str(task_id),
                "incomplete_prerequisites": incomplete,
                "invariant": "prerequisites_complete",
            }
        )


class InvalidReorder(ValidationError):
    code = "TASK_INVALID_REORDER"

    def __init__(self, message: str, details: dict):
        super().__init__(message=message, details=details)


class InvalidStatus(ValidationError):
    code = "INVALID_STATUS"

    def __init__(self, status, allowed: list):
        super().__init__(
            message=f"Invalid status: {status}",
            details={"status": str(status), "allowed": allowed}
        )


class InvalidField(ValidationError):
    code = "INVALID_FIELD"

    def __init__(self, field: str, reason: str, value=None):
        super().__init__(
            message=f"Invalid value for {field}: {reason}",
            details={"field": field, "reason": reason, "value": value}
        )


class PlanAlreadyExists(ValidationError):
    code = "PLAN_ALREADY_EXISTS"

    def __init__(self, plan_id, analysis_id):
        super().__init__(
            message="Action plan already exists for this analysis",
            details={"plan_id": str(plan_id), "analysis_id": str(analysis_id)}
        )


class UnsupportedExportFormat(ValidationError):
    code = "EXPORT_UNSUPPORTED_FORMAT"

    def __init__(self, export_format: str, allowed: list):
        super().__init__(
            message=f"Unsupported export format: {export_format}",
            details={"format": export_format, "allowed": allowed}
        )


# =============================================================================
# Authorization
# =============================================================================

class AuthorizationError(BasePlanException):
    code = "UNAUTHORIZED"


class AccessDenied(AuthorizationError):
    code = "FORBIDDEN"

    def __init__(self, user_id, resource: str):
        super().__init__(
            message="Access denied",
            details={"user_id": str(user_id), "resource": resource}
        )


# =============================================================================
# HTTP mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    PlanAlreadyExists: 409,
    DuplicateDependency: 409,
    NotFoundError: 404,
    ValidationError: 422,
    AccessDenied: 403,
    AuthorizationError: 401,
    BasePlanException: 400,
}


def status_for(exc: BasePlanException) -> int:
    """Most specific status registered for the exception's class hierarchy."""
    for klass in type(exc).__mro__:
        if klass in EXCEPTION_TO_STATUS:
            return EXCEPTION_TO_STATUS[klass]
    return 500
