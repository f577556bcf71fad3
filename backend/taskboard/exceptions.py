"""Domain exceptions.

Every failure surfaced by the engine derives from ``TaskboardError`` and
carries a stable ``code`` plus a ``kind`` that the API layer maps onto an
HTTP status.
"""

from uuid import UUID


class TaskboardError(Exception):
    """Base exception for domain errors."""

    kind = "transient"

    def __init__(self, message: str, code: str = "TASKBOARD_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# =============================================================================
# Forbidden / NotFound
# =============================================================================


class ForbiddenError(TaskboardError):
    """Actor lacks the role required for the operation."""

    kind = "forbidden"

    def __init__(self, message: str = "Insufficient permissions", code: str = "FORBIDDEN"):
        super().__init__(message=message, code=code)


class NotFoundError(TaskboardError):
    """Referenced entity does not exist or is not visible to the actor."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: UUID | str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message=message, code="NOT_FOUND")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(TaskboardError):
    """Uniqueness or state-machine violation."""

    kind = "conflict"


class NotPendingError(ConflictError):
    """Approval decision requested for a task that is not awaiting approval."""

    def __init__(self, task_id: UUID, approval_status: str):
        self.task_id = task_id
        self.approval_status = approval_status
        super().__init__(
            message=f"Task {task_id} is not pending approval (status: {approval_status})",
            code="NOT_PENDING",
        )


class DuplicateDependencyError(ConflictError):
    """The dependency edge already exists."""

    def __init__(self, blocking_task_id: UUID, blocked_task_id: UUID):
        self.blocking_task_id = blocking_task_id
        self.blocked_task_id = blocked_task_id
        super().__init__(
            message=f"Dependency {blocking_task_id} -> {blocked_task_id} already exists",
            code="DUPLICATE_DEPENDENCY",
        )


class WIPLimitExceededError(ConflictError):
    """A strict WIP limit rejects the move."""

    def __init__(self, stage_id: str, limit: int, current: int):
        self.stage_id = stage_id
        self.limit = limit
        self.current = current
        super().__init__(
            message=f"Stage '{stage_id}' is at its WIP limit ({current}/{limit})",
            code="WIP_LIMIT_EXCEEDED",
        )


class StageInUseByTasksError(ConflictError):
    """A stage removed from the configuration still holds tasks."""

    def __init__(self, stage_ids: list[str]):
        self.stage_ids = stage_ids
        super().__init__(
            message=f"Stages still hold tasks: {', '.join(stage_ids)}",
            code="STAGE_IN_USE_BY_TASKS",
        )


class LastOwnerError(ConflictError):
    """An organization must keep at least one owner."""

    def __init__(self, organization_id: UUID):
        self.organization_id = organization_id
        super().__init__(
            message=f"Organization {organization_id} must keep at least one owner",
            code="LAST_OWNER",
        )


class DuplicateMemberError(ConflictError):
    """The user already holds a membership."""

    def __init__(self, message: str = "User is already a member"):
        super().__init__(message=message, code="DUPLICATE_MEMBER")


# =============================================================================
# Invalid
# =============================================================================


class InvalidError(TaskboardError):
    """Structural or argument failure."""

    kind = "invalid"

    def __init__(self, message: str, code: str = "INVALID"):
        super().__init__(message=message, code=code)


class StageConfigInvalidError(InvalidError):
    """Workflow stage list violates a configuration rule."""

    def __init__(self, message: str):
        super().__init__(message=message, code="STAGE_CONFIG_INVALID")


class UnknownStageError(InvalidError):
    """Stage id is not part of the project's workflow."""

    def __init__(self, stage_id: str):
        self.stage_id = stage_id
        super().__init__(message=f"Unknown stage '{stage_id}'", code="UNKNOWN_STAGE")


class InvalidReturnStageError(InvalidError):
    """Rejection target is terminal or not a project stage."""

    def __init__(self, stage_id: str):
        self.stage_id = stage_id
        super().__init__(
            message=f"Stage '{stage_id}' cannot be used as a return stage",
            code="INVALID_RETURN_STAGE",
        )


class CircularDependencyError(InvalidError):
    """The new edge would close a cycle."""

    def __init__(self, blocking_task_id: UUID, blocked_task_id: UUID):
        self.blocking_task_id = blocking_task_id
        self.blocked_task_id = blocked_task_id
        super().__init__(
            message=f"Dependency {blocking_task_id} -> {blocked_task_id} would create a cycle",
            code="CIRCULAR_DEPENDENCY",
        )


class SelfDependencyError(InvalidError):
    """A task cannot block itself."""

    def __init__(self, task_id: UUID):
        self.task_id = task_id
        super().__init__(message=f"Task {task_id} cannot depend on itself", code="SELF_DEPENDENCY")


class NestingTooDeepError(InvalidError):
    """Subtasks cannot have subtasks of their own."""

    def __init__(self, parent_task_id: UUID):
        self.parent_task_id = parent_task_id
        super().__init__(
            message=f"Task {parent_task_id} is already a subtask and cannot be a parent",
            code="NESTING_TOO_DEEP",
        )


class RecurrenceInvalidError(InvalidError):
    """Recurrence specification is malformed."""

    def __init__(self, message: str):
        super().__init__(message=message, code="RECURRENCE_INVALID")


# =============================================================================
# Password reset PIN
# =============================================================================


class PinError(TaskboardError):
    """Base for password-reset PIN failures."""

    kind = "pin"


class PinInvalidError(PinError):
    """Submitted PIN does not match."""

    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            message=f"Invalid PIN ({attempts_remaining} attempts remaining)",
            code="PIN_INVALID",
        )


class PinExpiredError(PinError):
    """PIN is past its expiry."""

    def __init__(self) -> None:
        super().__init__(message="PIN has expired", code="PIN_EXPIRED")


class PinExhaustedError(PinError):
    """Too many wrong attempts; the PIN was invalidated."""

    def __init__(self) -> None:
        super().__init__(message="Too many attempts, request a new PIN", code="PIN_EXHAUSTED")


# =============================================================================
# Transient
# =============================================================================


class TransientError(TaskboardError):
    """Store or sink failure not otherwise classified."""

    kind = "transient"

    def __init__(self, message: str):
        super().__init__(message=message, code="TRANSIENT")
