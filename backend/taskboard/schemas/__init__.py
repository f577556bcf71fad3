"""Typed schemas for JSON-backed columns."""

from taskboard.schemas.recurrence import RecurrenceSpec
from taskboard.schemas.workflow import DEFAULT_WORKFLOW_STAGES, WorkflowStage, WorkflowStages

__all__ = ["DEFAULT_WORKFLOW_STAGES", "RecurrenceSpec", "WorkflowStage", "WorkflowStages"]
