"""Plan persistence -- stores synthesized plans and hands back their ids."""

from __future__ import annotations

import json
import time
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from study_planner.core.plan.models import SurveyInput, SynthesizedPlan
from study_planner.utils.exceptions import PersistenceError
from study_planner.utils.file_utils import ensure_dir, is_safe_token
from study_planner.utils.logging import get_logger

logger = get_logger(__name__)


class FilePlanRepository:
    """Persists each plan as ``plan_<id>.json`` under *plan_dir*.

    Stands in for the relational store of the full application: the
    contract is only ``save(...) -> result_id`` and ``load(result_id)``.
    """

    def __init__(self, plan_dir: str | Path) -> None:
        self.plan_dir = ensure_dir(plan_dir)

    async def save(self, owner_id: str, survey: SurveyInput, plan: SynthesizedPlan) -> str:
        """Persist *plan* for *owner_id* and return its durable id.

        Raises :class:`PersistenceError` when the plan cannot be written.
        """
        result_id = uuid.uuid4().hex[:12]
        record = {
            "id": result_id,
            "ownerId": owner_id,
            "createdAt": time.time(),
            "targetLevel": survey.target_level,
            "deadline": survey.deadline().date().isoformat(),
            "plan": plan.model_dump(mode="json", by_alias=True),
        }
        path = self._path(result_id)
        try:
            async with aiofiles.open(path, "w", encoding="utf-8") as fh:
                await fh.write(json.dumps(record, ensure_ascii=False, indent=2))
        except OSError as exc:
            logger.error("plan_store_failed", owner_id=owner_id, error=str(exc))
            raise PersistenceError(f"Failed to store plan: {exc}") from exc

        logger.info(
            "plan_stored",
            result_id=result_id,
            owner_id=owner_id,
            modules=len(plan.modules),
            source=plan.source.value,
        )
        return result_id

    async def load(self, result_id: str) -> dict[str, Any] | None:
        """Return the stored record for *result_id*, or ``None`` if unknown."""
        if not is_safe_token(result_id):
            return None
        path = self._path(result_id)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as fh:
            return json.loads(await fh.read())

    def _path(self, result_id: str) -> Path:
        return self.plan_dir / f"plan_{result_id}.json"
