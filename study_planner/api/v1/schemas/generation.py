"""Request/response schemas for study-plan generation tasks.

Field names are camelCase on the wire.  ``userId`` and ``formData`` are
accepted as legacy spellings of ``ownerId`` and ``surveyInput``.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from study_planner.core.task.manager import SubmissionReceipt, TaskStatusView


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitGenerationRequest(_CamelModel):
    """Body of ``POST /study-plans/generate``.

    Both fields are optional at the schema level so that missing values are
    reported by the task manager as a 400 rather than a validation 422.
    """

    owner_id: str | int | None = Field(
        default=None,
        validation_alias=AliasChoices("ownerId", "owner_id", "userId"),
    )
    survey_input: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("surveyInput", "survey_input", "formData"),
    )


class SubmitGenerationResponse(_CamelModel):
    task_id: str
    estimated_time_ms: int

    @classmethod
    def from_receipt(cls, receipt: SubmissionReceipt) -> SubmitGenerationResponse:
        return cls(task_id=receipt.task_id, estimated_time_ms=receipt.estimated_time_ms)


class TaskStatusResponse(_CamelModel):
    """Caller-visible status of one generation task."""

    task_id: str
    status: str
    progress: int
    started_at: float
    result_id: str | None = None
    error: str | None = None

    @classmethod
    def from_view(cls, view: TaskStatusView) -> TaskStatusResponse:
        return cls(
            task_id=view.task_id,
            status=view.status.value,
            progress=view.progress,
            started_at=view.started_at,
            result_id=view.result_id,
            error=view.error,
        )
