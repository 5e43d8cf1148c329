"""Generation task records.

A :class:`GenerationTask` is the durable unit tracked for one study-plan
generation job.  Records are immutable in spirit: every change goes through
:meth:`GenerationTask.apply`, which returns a new record and enforces the
lifecycle invariants.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from study_planner.utils.exceptions import StaleTaskError


class TaskStatus(str, Enum):
    """Lifecycle states for a generation task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_MUTABLE_FIELDS = {"status", "progress", "result_id", "error", "finished_at"}


def new_task_id() -> str:
    """Mint a fresh task id: ``task_<epoch-ms>_<random hex>``."""
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


class GenerationTask(BaseModel):
    """Durable record of one generation job.

    Attributes:
        id: Caller-visible task id, also the storage key.
        owner_id: The requester.
        status: Current lifecycle state.
        progress: Heuristic completion percentage (0-100), never lowered.
        started_at: Creation time (epoch seconds).
        updated_at: Time of the last write (epoch seconds).
        finished_at: Time the task reached a terminal state.
        result_id: Identity of the persisted plan, set only on completion.
        error: Failure reason, set only on failure.
        raw_input: The original survey payload, kept for diagnostics.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_task_id)
    owner_id: str
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    started_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    finished_at: float | None = None
    result_id: str | None = None
    error: str | None = None
    raw_input: dict[str, Any] | None = None

    def apply(self, changes: dict[str, Any], now: float | None = None) -> GenerationTask:
        """Return a copy of this record with *changes* applied.

        Raises :class:`StaleTaskError` when the record is already terminal
        or when *changes* contains a field that may not be patched.
        """
        if self.status.is_terminal:
            raise StaleTaskError(self.id, f"task is already {self.status.value}")

        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise StaleTaskError(self.id, f"fields cannot be patched: {sorted(unknown)}")

        updates = dict(changes)
        if "progress" in updates:
            updates["progress"] = max(self.progress, min(100, max(0, int(updates["progress"]))))

        status = TaskStatus(updates.get("status", self.status))
        updates["status"] = status
        updates["updated_at"] = time.time() if now is None else now
        if status.is_terminal and updates.get("finished_at") is None:
            updates["finished_at"] = updates["updated_at"]
        if status is TaskStatus.COMPLETED:
            updates["error"] = None
        elif status is TaskStatus.FAILED:
            updates["result_id"] = None
            updates.setdefault("error", "Generation failed")

        return self.model_copy(update=updates)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
