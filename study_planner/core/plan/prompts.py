"""Prompt templates for study-plan generation.

Consumed by :class:`~study_planner.core.plan.engine.PlanSynthesisEngine`.
The response shape requested here is what
:func:`~study_planner.core.plan.models.normalize_plan_payload` expects.
"""

from __future__ import annotations

from study_planner.core.plan.models import SurveyInput

PLAN_SYSTEM_PROMPT: str = """You are a professional examination preparation expert for medical and healthcare professionals.
You create structured, realistic study plans for title examinations.

Return a single JSON object with these fields:
- overview: str, a brief description of the overall plan and recommendations
- modules: list of 5-10 study modules, each with
    title: str, description: str,
    importance: int 1-10, difficulty: int 1-10,
    durationDays: int, order: int (1-based)
- tasks: list of daily tasks, each with
    moduleIndex: int (0-based index into modules), day: int,
    title: str, description: str, learningContent: str,
    estimatedMinutes: int

Rules:
- The total of durationDays must not exceed the days until the exam.
- Daily task time must fit the candidate's available study time.
- Do not include any explanation before or after the JSON object.
"""

PLAN_USER_TEMPLATE: str = (
    "Candidate information:\n"
    "- Professional category: {profession}\n"
    "- Current title: {current_title}\n"
    "- Target title: {target_title}\n"
    "- Exam status: {exam_status}\n"
    "- Overall knowledge level: {overall_level}\n"
    "- Daily available study time: {study_time}\n"
    "- Days until exam: {days_until_exam}\n"
    "- Exam date: {exam_date}"
)

_PROFESSIONS = {
    "medical": "Medical",
    "nursing": "Nursing",
    "pharmacy": "Pharmacy and Technology",
}

_TITLES = {
    "none": "No Title",
    "junior": "Junior Level",
    "mid": "Mid Level",
    "associate": "Associate Senior Level",
    "senior": "Senior Level",
}

_STUDY_TIME = {
    "<1": "Less than 1 hour",
    "1-2": "1-2 hours",
    "2-4": "2-4 hours",
    "4+": "More than 4 hours",
}

_EXAM_STATUS = {
    "first": "First attempt",
    "partial": "Has passed some subjects",
}

_LEVELS = {
    "weak": "Weak foundation, starting from the basics",
    "medium": "Some foundation, parts need strengthening",
    "strong": "Solid foundation, needs systematic review",
}


def _label(mapping: dict[str, str], value: str | None) -> str:
    if not value:
        return "Not specified"
    return mapping.get(value, value)


def build_plan_prompt(survey: SurveyInput, days_until_exam: int) -> tuple[str, str]:
    """Return the ``(system, user)`` prompt pair for *survey*."""
    study_time = survey.study_time_per_day
    if not study_time and survey.weekday_hours:
        study_time = f"{survey.weekday_hours} hours on weekdays, {survey.weekend_hours or '?'} on weekends"

    user = PLAN_USER_TEMPLATE.format(
        profession=_label(_PROFESSIONS, survey.profession),
        current_title=_label(_TITLES, survey.current_title),
        target_title=_label(_TITLES, survey.target_level),
        exam_status=_label(_EXAM_STATUS, survey.exam_status),
        overall_level=_label(_LEVELS, survey.overall_level),
        study_time=_label(_STUDY_TIME, study_time),
        days_until_exam=days_until_exam,
        exam_date=survey.deadline().date().isoformat(),
    )
    return PLAN_SYSTEM_PROMPT, user
