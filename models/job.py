"""Pydantic models for long-running server-side generation jobs."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class JobState(str, Enum):
    """Lifecycle of a background job as seen by the console."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.ERROR)


class JobStatus(BaseModel):
    """Tagged job status with optional message and progress counts."""

    state: JobState = Field(default=JobState.IDLE, alias="status")
    message: Optional[str] = Field(default=None)
    missing_count: Optional[int] = Field(default=None, alias="missingCount")
    total_count: Optional[int] = Field(default=None, alias="totalCount")
    attempts: int = Field(default=0, description="Status polls made for the current run")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("state", mode="before")
    @classmethod
    def _missing_status_is_idle(cls, value: Any) -> Any:
        return JobState.IDLE if value in (None, "") else value

    @field_validator("missing_count", "total_count", mode="before")
    @classmethod
    def _counts_must_be_numbers(cls, value: Any) -> Any:
        # Counts that are not numbers are treated as unknown.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    @property
    def ready(self) -> bool:
        """True when every target has been generated."""
        return self.missing_count == 0 and (self.total_count or 0) > 0
