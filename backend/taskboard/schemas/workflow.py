"""Workflow stage schema.

Projects store their stage list as JSON tagged with ``workflow_schema_version``.
Every read goes through ``WorkflowStages.load`` so the rest of the code only
sees validated ``WorkflowStage`` records.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from taskboard.exceptions import StageConfigInvalidError, UnknownStageError
from taskboard.models.enums import WIPLimitMode

CURRENT_SCHEMA_VERSION = 1


class WorkflowStage(BaseModel):
    """A single column on the project board."""

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#6B7280", max_length=20)
    wip_limit: int | None = Field(None, ge=0)
    wip_limit_mode: WIPLimitMode = Field(
        WIPLimitMode.WARNING,
        validation_alias=AliasChoices("wip_limit_mode", "wip_limit_type"),
    )
    is_done_stage: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def strip_id(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("wip_limit")
    @classmethod
    def zero_means_unlimited(cls, v: int | None) -> int | None:
        return v or None

    @property
    def has_wip_limit(self) -> bool:
        return self.wip_limit is not None


DEFAULT_WORKFLOW_STAGES: list[dict[str, Any]] = [
    {"id": "todo", "name": "To Do", "color": "#6B7280"},
    {"id": "in_progress", "name": "In Progress", "color": "#3B82F6"},
    {"id": "review", "name": "Review", "color": "#F59E0B"},
    {"id": "done", "name": "Done", "color": "#10B981", "is_done_stage": True},
]

# Schema registry: stored version -> record type
STAGE_SCHEMAS: dict[int, type[WorkflowStage]] = {
    1: WorkflowStage,
}


class WorkflowStages:
    """Validated, ordered stage list of a project."""

    def __init__(self, stages: list[WorkflowStage]):
        self.stages = stages
        self._by_id = {stage.id: stage for stage in stages}

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def validate(cls, raw: list[dict[str, Any] | WorkflowStage]) -> "WorkflowStages":
        """Validate a caller-supplied stage list.

        Raises:
            StageConfigInvalidError: on any rule violation
        """
        if not raw:
            raise StageConfigInvalidError("At least one stage is required")

        stages: list[WorkflowStage] = []
        for index, item in enumerate(raw):
            if isinstance(item, WorkflowStage):
                stages.append(item)
                continue
            try:
                stages.append(WorkflowStage.model_validate(item))
            except ValidationError as e:
                errors = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                raise StageConfigInvalidError(f"Stage {index}: {errors}") from e

        seen: set[str] = set()
        for stage in stages:
            if stage.id in seen:
                raise StageConfigInvalidError(f"Duplicate stage id '{stage.id}'")
            seen.add(stage.id)

        done_count = sum(1 for stage in stages if stage.is_done_stage)
        if done_count != 1:
            raise StageConfigInvalidError(
                f"Exactly one stage must be marked as done, found {done_count}"
            )

        return cls(stages)

    @classmethod
    def load(cls, raw: list[dict[str, Any]], version: int = CURRENT_SCHEMA_VERSION) -> "WorkflowStages":
        """Load a stored stage list using the record type registered for its version."""
        schema = STAGE_SCHEMAS.get(version)
        if schema is None:
            raise StageConfigInvalidError(f"Unsupported workflow schema version {version}")
        return cls.validate([schema.model_validate(item) for item in raw])

    @classmethod
    def default(cls) -> "WorkflowStages":
        return cls.validate(DEFAULT_WORKFLOW_STAGES)

    def dump(self) -> list[dict[str, Any]]:
        return [stage.model_dump(mode="json") for stage in self.stages]

    # =========================================================================
    # Lookups
    # =========================================================================

    @property
    def ids(self) -> list[str]:
        return [stage.id for stage in self.stages]

    @property
    def terminal(self) -> WorkflowStage:
        """The unique stage marked ``is_done_stage``."""
        return next(stage for stage in self.stages if stage.is_done_stage)

    @property
    def first(self) -> WorkflowStage:
        return self.stages[0]

    def get(self, stage_id: str) -> WorkflowStage | None:
        return self._by_id.get(stage_id)

    def require(self, stage_id: str) -> WorkflowStage:
        stage = self._by_id.get(stage_id)
        if stage is None:
            raise UnknownStageError(stage_id)
        return stage

    def is_terminal(self, stage_id: str) -> bool:
        stage = self._by_id.get(stage_id)
        return stage is not None and stage.is_done_stage

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._by_id

    def __iter__(self):
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)
