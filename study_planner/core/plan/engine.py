"""Plan synthesis engine.

Turns a :class:`~study_planner.core.plan.models.SurveyInput` into a
:class:`~study_planner.core.plan.models.SynthesizedPlan`.  The language
model is asked first; its text is run through the recovery chain in
:mod:`study_planner.core.plan.recovery`.  Any upstream failure (error,
timeout, missing envelope) or an exhausted recovery chain falls back to
:func:`~study_planner.core.plan.fallback.build_fallback_plan`, so
:meth:`PlanSynthesisEngine.synthesize` always returns a valid plan.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

from study_planner.core.plan.fallback import build_fallback_plan
from study_planner.core.plan.models import SurveyInput, SynthesizedPlan
from study_planner.core.plan.prompts import build_plan_prompt
from study_planner.core.plan.recovery import recover_plan
from study_planner.utils.exceptions import LLMError, ParseRecoveryExhausted
from study_planner.utils.logging import get_logger

logger = get_logger("plan.engine")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanSynthesisEngine:
    """Produces study plans with a model call and a deterministic fallback.

    Parameters
    ----------
    llm_client:
        An optional :class:`~study_planner.core.llm.client.LLMClient`.  When
        ``None`` every plan comes from the fallback synthesizer.
    timeout:
        Upper bound in seconds for the model call; expiry counts as an
        upstream failure.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        llm_client=None,
        timeout: float = 120.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.llm = llm_client
        self.timeout = timeout
        self.clock = clock

    async def synthesize(self, survey: SurveyInput) -> SynthesizedPlan:
        """Return a plan for *survey*.  Never raises for bad model output."""
        total_days = survey.days_available(self.clock())

        if self.llm is None:
            logger.info("synthesis_without_llm", total_days=total_days)
            return build_fallback_plan(survey, total_days)

        try:
            return await self._from_model(survey, total_days)
        except (LLMError, ParseRecoveryExhausted) as exc:
            logger.warning("synthesis_fallback", reason=type(exc).__name__, error=str(exc))
        except asyncio.TimeoutError:
            logger.warning("synthesis_fallback", reason="timeout", timeout=self.timeout)
        except Exception as exc:
            logger.error(
                "synthesis_unexpected_error",
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
        return build_fallback_plan(survey, total_days)

    async def _from_model(self, survey: SurveyInput, total_days: int) -> SynthesizedPlan:
        system, user = build_plan_prompt(survey, total_days)
        text = await asyncio.wait_for(self.llm.complete(system, user), timeout=self.timeout)

        outcome = recover_plan(text)
        if not outcome.ok:
            raise ParseRecoveryExhausted(outcome.attempts)

        plan = outcome.plan
        if plan.total_days > total_days:
            # Not enforced; recorded for diagnostics only.
            logger.info("plan_exceeds_horizon", plan_days=plan.total_days, total_days=total_days)
        return plan
