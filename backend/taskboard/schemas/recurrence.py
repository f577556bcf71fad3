"""Recurrence specification schema."""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from taskboard.exceptions import RecurrenceInvalidError
from taskboard.models.enums import RecurrenceFrequency


class RecurrenceSpec(BaseModel):
    """Parameters describing a periodic schedule."""

    frequency: RecurrenceFrequency
    interval: int = Field(1, ge=1, le=365)
    # 0 = Monday ... 6 = Sunday
    days_of_week: list[int] = Field(default_factory=list)
    day_of_month: int | None = Field(None, ge=1, le=31)
    month_of_year: int | None = Field(None, ge=1, le=12)
    start_date: date
    end_date: date | None = None
    max_occurrences: int | None = Field(None, ge=1)
    occurrences_created: int = Field(0, ge=0)

    @field_validator("days_of_week")
    @classmethod
    def normalize_days(cls, v: list[int]) -> list[int]:
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"day of week {day} must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def check_window(self) -> "RecurrenceSpec":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "RecurrenceSpec":
        """Validate raw input, raising ``RecurrenceInvalidError`` on failure."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'spec'}: {err['msg']}"
                for err in e.errors()
            )
            raise RecurrenceInvalidError(errors) from e

    @classmethod
    def from_model(cls, recurrence: Any) -> "RecurrenceSpec":
        """Build a spec from a ``TaskRecurrence`` row."""
        return cls.parse(
            {
                "frequency": recurrence.frequency,
                "interval": recurrence.interval,
                "days_of_week": recurrence.days_of_week or [],
                "day_of_month": recurrence.day_of_month,
                "month_of_year": recurrence.month_of_year,
                "start_date": recurrence.start_date,
                "end_date": recurrence.end_date,
                "max_occurrences": recurrence.max_occurrences,
                "occurrences_created": recurrence.occurrences_created or 0,
            }
        )

    @property
    def exhausted(self) -> bool:
        return (
            self.max_occurrences is not None
            and self.occurrences_created >= self.max_occurrences
        )
