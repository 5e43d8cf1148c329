"""Survey input and synthesized study-plan models.

The plan models accept both the canonical field names and the names used
in the generation prompt (``importance``, ``learningContent``,
``moduleIndex``, ...) so that model output can be validated directly after
:func:`normalize_plan_payload` has reshaped it.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from study_planner.utils.exceptions import InvalidSubmissionError
from study_planner.utils.logging import get_logger

logger = get_logger("plan.models")

# Exam day used when the survey only names a year (April 13th).
EXAM_MONTH = 4
EXAM_DAY = 13

_SECONDS_PER_DAY = 24 * 60 * 60


class SurveyInput(BaseModel):
    """Preparation survey submitted by a candidate.

    Only a target level and a deadline are required; the remaining answers
    refine the prompt.  Unknown keys are kept so the raw payload can be
    stored alongside the task.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    profession: str = "nursing"
    title_level: str | None = None
    other_title_level: str | None = None
    current_title: str | None = None
    target_title: str | None = None
    exam_status: str | None = None
    overall_level: str | None = None
    study_time_per_day: str | None = None
    weekdays_count: str | None = None
    weekday_hours: str | None = None
    weekend_hours: str | None = None
    exam_year: int | None = None
    exam_date: date | None = None

    @field_validator("exam_year", mode="before")
    @classmethod
    def _blank_year(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("exam_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return None
            # Accept full ISO timestamps as well as plain dates.
            return value.strip()[:10]
        if isinstance(value, datetime):
            return value.date()
        return value

    @property
    def target_level(self) -> str | None:
        """The level the candidate is preparing for, if any was given."""
        if self.target_title:
            return self.target_title
        if self.title_level == "other":
            return self.other_title_level or None
        return self.title_level

    def require_minimum(self) -> None:
        """Raise :class:`InvalidSubmissionError` unless a level and deadline are present."""
        missing = []
        if not self.target_level:
            missing.append("targetTitle/titleLevel")
        if self.exam_date is None and self.exam_year is None:
            missing.append("examDate/examYear")
        if missing:
            raise InvalidSubmissionError(f"Survey is missing required fields: {', '.join(missing)}")
        try:
            self.deadline()
        except ValueError as exc:
            raise InvalidSubmissionError(f"Survey deadline is not a valid date: {exc}") from exc

    def deadline(self) -> datetime:
        """Return the exam deadline as an aware UTC datetime."""
        if self.exam_date is not None:
            day = self.exam_date
        elif self.exam_year is not None:
            day = date(self.exam_year, EXAM_MONTH, EXAM_DAY)
        else:
            raise InvalidSubmissionError("Survey has no deadline")
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    def days_available(self, now: datetime | None = None) -> int:
        """Whole days until the deadline, never less than one."""
        now = now or datetime.now(timezone.utc)
        try:
            remaining = (self.deadline() - now).total_seconds()
        except InvalidSubmissionError:
            return 1
        return max(1, math.ceil(remaining / _SECONDS_PER_DAY))


class PlanSource(str, Enum):
    """Which path produced a plan."""

    MODEL = "model"
    RECOVERED = "recovered"
    FALLBACK = "fallback"


class PlanModule(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(min_length=1)
    description: str = ""
    importance_score: int = Field(
        default=5,
        ge=1,
        le=10,
        validation_alias=AliasChoices("importanceScore", "importance", "importance_score"),
    )
    difficulty_score: int = Field(
        default=5,
        ge=1,
        le=10,
        validation_alias=AliasChoices("difficultyScore", "difficulty", "difficulty_score"),
    )
    duration_days: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices("durationDays", "duration_days"),
    )
    order: int = Field(ge=1)


class DailyTask(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    module_order: int = Field(
        ge=1,
        validation_alias=AliasChoices("moduleOrder", "module_order"),
    )
    day: int = Field(ge=1)
    title: str = Field(min_length=1)
    description: str = ""
    content: str = Field(
        default="",
        validation_alias=AliasChoices("content", "learningContent", "learning_content"),
    )
    estimated_minutes: int = Field(
        default=60,
        ge=1,
        validation_alias=AliasChoices("estimatedMinutes", "estimated_minutes"),
    )


class SynthesizedPlan(BaseModel):
    """A structured study plan: overview, ordered modules and daily tasks."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    overview: str
    modules: list[PlanModule] = Field(min_length=1)
    daily_tasks: list[DailyTask] = Field(
        default_factory=list,
        validation_alias=AliasChoices("dailyTasks", "daily_tasks"),
    )
    source: PlanSource = PlanSource.MODEL

    def tasks_for(self, module_order: int) -> list[DailyTask]:
        return [t for t in self.daily_tasks if t.module_order == module_order]

    @property
    def total_days(self) -> int:
        return sum(m.duration_days for m in self.modules)


def normalize_plan_payload(data: Any) -> Any:
    """Reshape a model-produced plan dict into :class:`SynthesizedPlan` form.

    - ``tasks`` is accepted for ``dailyTasks``.
    - Tasks nested under a module are flattened onto the plan.
    - ``moduleIndex`` (0-based) is converted to ``moduleOrder``.
    - Modules without an order get their 1-based position.
    - Tasks referring to an unknown module are dropped.

    Non-dict input is returned unchanged so validation reports it.
    """
    if not isinstance(data, dict):
        return data

    raw_modules = data.get("modules")
    if not isinstance(raw_modules, list):
        return data

    modules: list[dict[str, Any]] = []
    tasks: list[Any] = []
    for position, raw in enumerate(raw_modules, start=1):
        if not isinstance(raw, dict):
            continue
        module = dict(raw)
        if not isinstance(module.get("order"), int) or module["order"] < 1:
            module["order"] = position
        nested = module.pop("tasks", None) or module.pop("dailyTasks", None) or []
        for task in nested if isinstance(nested, list) else []:
            if isinstance(task, dict):
                tasks.append({"moduleOrder": module["order"], **task})
        modules.append(module)

    top_level = data.get("dailyTasks", data.get("tasks")) or []
    if isinstance(top_level, list):
        tasks.extend(top_level)

    known_orders = {m["order"] for m in modules}
    ordered_by_position = [m["order"] for m in modules]
    daily_tasks: list[dict[str, Any]] = []
    for raw in tasks:
        if not isinstance(raw, dict):
            continue
        task = dict(raw)
        if "moduleOrder" not in task and "module_order" not in task:
            index = task.pop("moduleIndex", None)
            if isinstance(index, int) and 0 <= index < len(ordered_by_position):
                task["moduleOrder"] = ordered_by_position[index]
        order = task.get("moduleOrder", task.get("module_order"))
        if order not in known_orders:
            logger.warning("dangling_daily_task", module_order=order, title=task.get("title"))
            continue
        daily_tasks.append(task)

    normalized = {k: v for k, v in data.items() if k not in ("tasks", "dailyTasks", "daily_tasks")}
    normalized["modules"] = modules
    normalized["dailyTasks"] = daily_tasks
    return normalized
