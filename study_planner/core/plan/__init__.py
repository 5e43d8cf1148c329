"""Study-plan synthesis: models, model-output recovery and fallback."""

from .engine import PlanSynthesisEngine
from .fallback import build_fallback_plan
from .models import (
    DailyTask,
    PlanModule,
    PlanSource,
    SurveyInput,
    SynthesizedPlan,
)
from .recovery import ParseKind, ParseOutcome, recover_plan

__all__ = [
    # Models
    "DailyTask",
    "PlanModule",
    "PlanSource",
    "SurveyInput",
    "SynthesizedPlan",
    # Synthesis
    "ParseKind",
    "ParseOutcome",
    "PlanSynthesisEngine",
    "build_fallback_plan",
    "recover_plan",
]
