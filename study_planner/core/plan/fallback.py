"""Deterministic study-plan synthesis.

Used whenever the language model cannot be trusted: no client configured,
the upstream call failed, or its output could not be recovered.  Sizing:

- ``days_per_module = clamp(3, 7, total_days // 5)``
- ``module_count = max(1, min(5, total_days // days_per_module))``
- ``min(3, days_per_module - 1)`` daily tasks per module

Module days are not reconciled against the horizon, so short horizons may be
over-allocated.
"""

from __future__ import annotations

from study_planner.core.plan.models import (
    DailyTask,
    PlanModule,
    PlanSource,
    SurveyInput,
    SynthesizedPlan,
)
from study_planner.utils.logging import get_logger

logger = get_logger("plan.fallback")

MIN_DAYS_PER_MODULE = 3
MAX_DAYS_PER_MODULE = 7
MAX_MODULES = 5
MAX_TASKS_PER_MODULE = 3
TASK_MINUTES = 120
DEFAULT_IMPORTANCE = 8
DEFAULT_DIFFICULTY = 7

_TOPICS: dict[str, list[tuple[str, str]]] = {
    "nursing": [
        ("Fundamentals of Nursing", "Core nursing concepts and patient care."),
        ("Nursing Assessment", "Comprehensive patient assessment techniques."),
        ("Pharmacology", "Medication administration and drug knowledge."),
        ("Medical-Surgical Nursing", "Care for patients with various medical conditions."),
        ("Specialty Areas", "Pediatrics, obstetrics, and psychiatric nursing."),
    ],
    "medical": [
        ("Clinical Diagnosis", "Diagnostic procedures and assessments."),
        ("Pharmacotherapy", "Therapeutic medication management."),
        ("Internal Medicine", "Common medical conditions and treatment."),
        ("Specialty Areas", "Cardiology, neurology, and other specialties."),
        ("Patient Management", "Comprehensive care planning and execution."),
    ],
    "pharmacy": [
        ("Pharmaceuticals", "Drug classifications and applications."),
        ("Pharmacy Practice", "Dispensing procedures and regulations."),
        ("Clinical Pharmacy", "Patient-centered pharmaceutical care."),
        ("Pharmaceutical Calculations", "Dosage calculations and formulations."),
        ("Pharmacy Laws", "Legal and ethical aspects of pharmacy practice."),
    ],
}

_TASK_TEMPLATES: list[tuple[str, str, str]] = [
    (
        "{topic} - Core Concepts",
        "Study {topic} fundamentals and key concepts.",
        "Read the relevant chapters on {topic} and summarise the key points.",
    ),
    (
        "{topic} - Practice Questions",
        "Work through practice questions on {topic}.",
        "Complete a question set on {topic} and review every wrong answer.",
    ),
    (
        "{topic} - Review",
        "Consolidate {topic} and revisit weak points.",
        "Re-read your notes on {topic} and redo previously missed questions.",
    ),
]


def topics_for(profession: str) -> list[tuple[str, str]]:
    """Module topics for a professional track; unknown tracks use pharmacy topics."""
    track = (profession or "").lower()
    if "nurs" in track:
        return _TOPICS["nursing"]
    if "medic" in track or "clinic" in track:
        return _TOPICS["medical"]
    return _TOPICS["pharmacy"]


def days_per_module(total_days: int) -> int:
    return max(MIN_DAYS_PER_MODULE, min(MAX_DAYS_PER_MODULE, total_days // 5))


def module_count(total_days: int) -> int:
    return max(1, min(MAX_MODULES, total_days // days_per_module(total_days)))


def build_fallback_plan(survey: SurveyInput, total_days: int) -> SynthesizedPlan:
    """Build a structurally valid plan for *survey* over *total_days* days."""
    total_days = max(1, int(total_days))
    per_module = days_per_module(total_days)
    count = module_count(total_days)
    tasks_per_module = min(MAX_TASKS_PER_MODULE, per_module - 1)
    topics = topics_for(survey.profession)
    level = survey.target_level or "the target title"

    modules: list[PlanModule] = []
    daily_tasks: list[DailyTask] = []
    for index in range(count):
        topic, description = topics[index % len(topics)]
        order = index + 1
        modules.append(
            PlanModule(
                title=topic,
                description=description,
                importance_score=DEFAULT_IMPORTANCE,
                difficulty_score=DEFAULT_DIFFICULTY,
                duration_days=per_module,
                order=order,
            )
        )
        for offset in range(tasks_per_module):
            title, task_description, content = _TASK_TEMPLATES[offset]
            daily_tasks.append(
                DailyTask(
                    module_order=order,
                    day=index * per_module + offset + 1,
                    title=title.format(topic=topic),
                    description=task_description.format(topic=topic),
                    content=content.format(topic=topic),
                    estimated_minutes=TASK_MINUTES,
                )
            )

    overview = (
        f"This is a {total_days}-day study plan for {survey.profession} professionals "
        f"preparing for the {level} examination. It covers {count} core module(s) of "
        f"{per_module} days each with focused daily tasks."
    )
    logger.info(
        "fallback_plan_built",
        total_days=total_days,
        modules=count,
        days_per_module=per_module,
        daily_tasks=len(daily_tasks),
    )
    return SynthesizedPlan(
        overview=overview,
        modules=modules,
        daily_tasks=daily_tasks,
        source=PlanSource.FALLBACK,
    )
