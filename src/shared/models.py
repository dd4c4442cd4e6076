"""
Pydantic models for evaluation tasks and reference jobs.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .errors import InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    """Evaluation task lifecycle status."""

    PROCESSING = "processing"  # Submitted, executor running
    COMPLETED = "completed"  # Result fields populated
    FAILED = "failed"  # Provider or retrieval failure

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PROCESSING


class EvaluationResult(BaseModel):
    """Fields extracted from the model's answer."""

    cv_match_rate: float = Field(default=0.0, description="0-1")
    cv_feedback: str = Field(default="")
    project_score: float = Field(default=0.0, description="0-10")
    project_feedback: str = Field(default="")
    overall_summary: str = Field(default="")
    breakdown: str = Field(default="{}", description="Breakdown sub-document as JSON text")

    @property
    def is_empty(self) -> bool:
        """True when nothing useful came back from the model."""
        return (
            self.cv_match_rate == 0.0
            and self.project_score == 0.0
            and not self.cv_feedback
            and not self.project_feedback
            and not self.overall_summary
            and self.breakdown in ("", "{}")
        )

    def clamped(self) -> "EvaluationResult":
        """Return a copy with numeric scores forced into their ranges."""
        cv_match_rate = self.cv_match_rate
        if not 0.0 <= cv_match_rate <= 1.0:
            logger.warning(f"Invalid cv_match_rate {cv_match_rate}, clamping to range 0-1")
            cv_match_rate = max(0.0, min(1.0, cv_match_rate))

        project_score = self.project_score
        if not 0.0 <= project_score <= 10.0:
            logger.warning(f"Invalid project_score {project_score}, clamping to range 0-10")
            project_score = max(0.0, min(10.0, project_score))

        return self.model_copy(
            update={"cv_match_rate": cv_match_rate, "project_score": project_score}
        )


class EvaluationTask(BaseModel):
    """A submitted CV + project report evaluation."""

    id: str = Field(default_factory=_new_id)
    cv: str = Field(..., description="Extracted CV text")
    report: str = Field(..., description="Extracted project report text")
    status: TaskStatus = Field(default=TaskStatus.PROCESSING)

    # Result fields, meaningful only once completed
    cv_match_rate: float = Field(default=0.0)
    cv_feedback: str = Field(default="")
    project_score: float = Field(default=0.0)
    project_feedback: str = Field(default="")
    overall_summary: str = Field(default="")
    breakdown: str = Field(default="{}")

    # Timestamps
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def _ensure_processing(self, target: TaskStatus) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"task {self.id} is already {self.status.value}, cannot move to {target.value}"
            )

    def complete(self, result: EvaluationResult) -> None:
        """Populate result fields and move to completed."""
        self._ensure_processing(TaskStatus.COMPLETED)
        self.cv_match_rate = result.cv_match_rate
        self.cv_feedback = result.cv_feedback
        self.project_score = result.project_score
        self.project_feedback = result.project_feedback
        self.overall_summary = result.overall_summary
        self.breakdown = result.breakdown
        self.status = TaskStatus.COMPLETED
        self.updated_at = _utcnow()

    def fail(self) -> None:
        """Move to failed. Result fields keep their zero values."""
        self._ensure_processing(TaskStatus.FAILED)
        self.status = TaskStatus.FAILED
        self.updated_at = _utcnow()

    def to_document(self) -> dict[str, Any]:
        """Convert to a store record."""
        data = self.model_dump(mode="python")
        data["_id"] = data.pop("id")
        data["status"] = self.status.value
        return data

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "EvaluationTask":
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def to_public_dict(self) -> dict[str, Any]:
        """Status and result fields, as shown to result consumers."""
        return self.model_dump(mode="json", exclude={"cv", "report"})


class ReferenceJob(BaseModel):
    """Job description used as retrieval context."""

    id: str = Field(default_factory=_new_id)
    title: str = Field(..., description="Job title")
    content: str = Field(..., description="Full job description")
    embedding: Optional[list[float]] = Field(
        default=None, description="Absent until the job has been indexed"
    )

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("embedding")
    @classmethod
    def _finite_embedding(cls, value: Optional[list[float]]) -> Optional[list[float]]:
        if value is None:
            return value
        if not value:
            raise ValueError("embedding must not be empty")
        for i, component in enumerate(value):
            if not math.isfinite(component):
                raise ValueError(f"invalid embedding value at index {i}: {component}")
        return value

    @property
    def is_indexed(self) -> bool:
        return self.embedding is not None

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(mode="python")
        data["_id"] = data.pop("id")
        return data

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ReferenceJob":
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class ScoredJob(BaseModel):
    """A retrieved job annotated with its distance to the query."""

    job: ReferenceJob
    distance: float
