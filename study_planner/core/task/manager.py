"""Lifecycle management for study-plan generation jobs.

:class:`GenerationTaskManager` accepts a submission, records a ``pending``
task, and runs the job as a detached asyncio task so the caller returns
immediately.  While the job runs a heartbeat raises the task's progress
from wall-clock time; the job then finalizes the record as ``completed``
(with the persisted plan's id) or ``failed`` (with the error message), and
a timer deletes the record once the retention window has passed.

State machine::

    pending --> processing --> completed
                     \\------> failed
    pending ------------------> failed   (cancelled before start)

Writes never lower progress and never touch a terminal record (see
:meth:`GenerationTask.apply`); the heartbeat additionally writes only while
the stored status is still ``processing``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from study_planner.core.plan.models import SurveyInput
from study_planner.core.task.models import GenerationTask, TaskStatus
from study_planner.core.task.store import FileTaskStore
from study_planner.utils.exceptions import (
    CapacityExceededError,
    InvalidSubmissionError,
    OwnerNotFoundError,
    StaleTaskError,
    TaskNotFoundError,
    TaskStoreError,
)
from study_planner.utils.logging import get_logger

logger = get_logger("task.manager")

HEARTBEAT_PROGRESS_CAP = 90
CANCELLED_MESSAGE = "cancelled"
SHUTDOWN_MESSAGE = "interrupted by service shutdown"
INTERRUPTED_MESSAGE = "interrupted by service restart"
FINALIZE_ATTEMPTS = 3
FINALIZE_RETRY_DELAY = 0.05


@dataclass
class SubmissionReceipt:
    """Returned to the caller as soon as a job has been accepted."""

    task_id: str
    estimated_time_ms: int


@dataclass
class TaskStatusView:
    """The caller-visible projection of a task record."""

    task_id: str
    status: TaskStatus
    progress: int
    started_at: float
    result_id: str | None = None
    error: str | None = None

    @classmethod
    def from_task(cls, task: GenerationTask) -> TaskStatusView:
        return cls(
            task_id=task.id,
            status=task.status,
            progress=task.progress,
            started_at=task.started_at,
            result_id=task.result_id,
            error=task.error,
        )


class GenerationTaskManager:
    """Orchestrates generation jobs from submission to cleanup.

    Parameters
    ----------
    store:
        Durable task record store.
    engine:
        Object with ``async synthesize(survey) -> SynthesizedPlan``.
    repository:
        Object with ``async save(owner_id, survey, plan) -> result_id``.
    owners:
        Object with ``async exists(owner_id) -> bool``.
    estimated_duration:
        Expected job duration in seconds; drives heuristic progress and the
        ``estimated_time_ms`` returned on submission.
    heartbeat_interval:
        Seconds between heuristic progress updates.
    retention:
        Seconds a terminal record is kept before deletion.
    max_concurrent_jobs / max_jobs_per_owner:
        Admission limits enforced at submission.  ``0`` disables a limit.
    clock:
        Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        store: FileTaskStore,
        engine,
        repository,
        owners,
        *,
        estimated_duration: float = 180.0,
        heartbeat_interval: float = 5.0,
        retention: float = 24 * 60 * 60,
        max_concurrent_jobs: int = 8,
        max_jobs_per_owner: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.engine = engine
        self.repository = repository
        self.owners = owners
        self.estimated_duration = max(estimated_duration, 0.001)
        self.heartbeat_interval = heartbeat_interval
        self.retention = retention
        self.max_concurrent_jobs = max_concurrent_jobs
        self.max_jobs_per_owner = max_jobs_per_owner
        self.clock = clock

        # In-flight registry: task id -> owner id (reserved before launch).
        self._in_flight: dict[str, str] = {}
        self._jobs: dict[str, asyncio.Task] = {}
        self._cleanups: dict[str, asyncio.Task] = {}
        self._cancel_reasons: dict[str, str] = {}

    # ----- Public API -------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def submit(self, owner_id: Any, survey_payload: Any) -> SubmissionReceipt:
        """Validate a submission, record it and start the job in the background.

        Raises :class:`InvalidSubmissionError`, :class:`OwnerNotFoundError` or
        :class:`CapacityExceededError`; no record is created in those cases.
        """
        owner = str(owner_id).strip() if owner_id is not None else ""
        if not owner or not survey_payload:
            raise InvalidSubmissionError("ownerId and surveyInput are required")
        if not isinstance(survey_payload, dict):
            raise InvalidSubmissionError("surveyInput must be an object")

        try:
            survey = SurveyInput.model_validate(survey_payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise InvalidSubmissionError(f"Survey has invalid fields: {', '.join(fields)}") from exc
        survey.require_minimum()

        if not await self.owners.exists(owner):
            logger.warning("submit_unknown_owner", owner_id=owner)
            raise OwnerNotFoundError(owner)

        now = self.clock()
        task = GenerationTask(
            owner_id=owner,
            started_at=now,
            updated_at=now,
            raw_input=survey_payload,
        )
        self._admit(task.id, owner)
        try:
            await self.store.put(task)
        except TaskStoreError:
            self._in_flight.pop(task.id, None)
            raise

        job = asyncio.create_task(self._run(task.id, owner, survey), name=f"generate:{task.id}")
        self._jobs[task.id] = job
        job.add_done_callback(lambda _job, task_id=task.id: self._forget_job(task_id))

        logger.info(
            "task_submitted",
            task_id=task.id,
            owner_id=owner,
            in_flight=self.in_flight,
        )
        return SubmissionReceipt(
            task_id=task.id,
            estimated_time_ms=int(self.estimated_duration * 1000),
        )

    async def get_status(self, task_id: str | None, owner_id: Any = None) -> TaskStatusView:
        """Return the status of *task_id*.

        When *owner_id* is given, tasks belonging to someone else are
        reported as not found.
        """
        if not task_id:
            raise InvalidSubmissionError("taskId is required")
        task = await self.store.get(task_id)
        if task is None or (owner_id is not None and task.owner_id != str(owner_id)):
            raise TaskNotFoundError(task_id)
        return TaskStatusView.from_task(task)

    async def cancel(self, task_id: str | None, owner_id: Any = None) -> TaskStatusView:
        """Cancel an in-flight job and mark its record failed.

        Terminal tasks are returned unchanged.
        """
        view = await self.get_status(task_id, owner_id)
        if view.status.is_terminal:
            return view

        job = self._jobs.get(task_id)
        if job is not None and not job.done():
            self._cancel_reasons.setdefault(task_id, CANCELLED_MESSAGE)
            job.cancel()
            await asyncio.wait({job})

        # Covers jobs cancelled before their first step and orphaned records.
        await self._finalize(task_id, {"status": TaskStatus.FAILED, "error": CANCELLED_MESSAGE})
        logger.info("task_cancelled", task_id=task_id)
        return await self.get_status(task_id, owner_id)

    async def recover(self) -> dict[str, int]:
        """Reconcile stored records after a (re)start.

        Non-terminal records belong to a previous process and are marked
        failed; terminal records past retention are deleted and the rest get
        a cleanup timer.
        """
        counts = {"interrupted": 0, "expired": 0, "scheduled": 0}
        now = self.clock()
        for task_id in await self.store.list_ids():
            if task_id in self._jobs:
                continue
            try:
                task = await self.store.get(task_id)
                if task is None:
                    continue
                if not task.status.is_terminal:
                    task = await self.store.patch(
                        task_id,
                        {"status": TaskStatus.FAILED, "error": INTERRUPTED_MESSAGE},
                    )
                    counts["interrupted"] += 1

                finished = task.finished_at or task.updated_at
                remaining = self.retention - (now - finished)
                if remaining <= 0:
                    await self.store.delete(task_id)
                    counts["expired"] += 1
                else:
                    self._schedule_cleanup(task_id, remaining)
                    counts["scheduled"] += 1
            except (TaskStoreError, StaleTaskError) as exc:
                logger.warning("task_recover_skipped", task_id=task_id, error=str(exc))

        logger.info("tasks_recovered", **counts)
        return counts

    async def shutdown(self) -> None:
        """Cancel running jobs, then the cleanup timers they leave behind."""
        jobs = [job for job in self._jobs.values() if not job.done()]
        for task_id, job in list(self._jobs.items()):
            self._cancel_reasons.setdefault(task_id, SHUTDOWN_MESSAGE)
            job.cancel()
        if jobs:
            await asyncio.wait(jobs)

        timers = list(self._cleanups.values())
        for handle in timers:
            handle.cancel()
        if timers:
            await asyncio.wait(timers)
        logger.info("task_manager_stopped", cancelled_jobs=len(jobs), cancelled_timers=len(timers))

    # ----- Job body ---------------------------------------------------------

    async def _run(self, task_id: str, owner_id: str, survey: SurveyInput) -> None:
        try:
            task = await self.store.patch(
                task_id,
                {"status": TaskStatus.PROCESSING},
                expected_status=TaskStatus.PENDING,
            )
        except (StaleTaskError, TaskNotFoundError) as exc:
            logger.warning("task_start_skipped", task_id=task_id, error=str(exc))
            return
        except TaskStoreError as exc:
            logger.error("task_start_failed", task_id=task_id, error=str(exc))
            await self._finalize(task_id, {"status": TaskStatus.FAILED, "error": str(exc)})
            return

        logger.info("task_processing", task_id=task_id)
        heartbeat = asyncio.create_task(
            self._heartbeat(task_id, task.started_at),
            name=f"heartbeat:{task_id}",
        )
        try:
            plan = await self.engine.synthesize(survey)
            result_id = await self.repository.save(owner_id, survey, plan)
        except asyncio.CancelledError:
            await _stop(heartbeat)
            reason = self._cancel_reasons.get(task_id, CANCELLED_MESSAGE)
            await self._finalize(task_id, {"status": TaskStatus.FAILED, "error": reason})
            raise
        except Exception as exc:
            await _stop(heartbeat)
            logger.error(
                "task_failed",
                task_id=task_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await self._finalize(
                task_id,
                {"status": TaskStatus.FAILED, "error": str(exc) or type(exc).__name__},
            )
        else:
            await _stop(heartbeat)
            await self._finalize(
                task_id,
                {"status": TaskStatus.COMPLETED, "progress": 100, "result_id": result_id},
            )

    async def _heartbeat(self, task_id: str, started_at: float) -> None:
        """Raise heuristic progress until the record leaves ``processing``."""
        last = -1
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            elapsed = max(0.0, self.clock() - started_at)
            progress = min(HEARTBEAT_PROGRESS_CAP, int(elapsed / self.estimated_duration * 100))
            if progress <= last:
                continue
            try:
                await self.store.patch(
                    task_id,
                    {"progress": progress},
                    expected_status=TaskStatus.PROCESSING,
                )
            except (StaleTaskError, TaskNotFoundError):
                return
            except TaskStoreError as exc:
                logger.error("heartbeat_write_failed", task_id=task_id, error=str(exc))
                return
            last = progress

    async def _finalize(self, task_id: str, changes: dict[str, Any]) -> GenerationTask | None:
        """Write a terminal state.  The first terminal write wins.

        Store I/O errors are retried with a doubling delay; a record that
        still cannot be written is left for :meth:`recover`.
        """
        delay = FINALIZE_RETRY_DELAY
        for attempt in range(1, FINALIZE_ATTEMPTS + 1):
            try:
                task = await self.store.patch(task_id, changes)
                break
            except StaleTaskError:
                logger.debug("task_finalize_skipped", task_id=task_id)
                return None
            except TaskNotFoundError:
                logger.warning("task_finalize_missing", task_id=task_id)
                return None
            except TaskStoreError as exc:
                if attempt == FINALIZE_ATTEMPTS:
                    logger.error(
                        "task_finalize_failed",
                        task_id=task_id,
                        attempts=attempt,
                        error=str(exc),
                    )
                    return None
                logger.warning("task_finalize_retry", task_id=task_id, attempt=attempt, error=str(exc))
                await asyncio.sleep(delay)
                delay *= 2

        logger.info(
            "task_finished",
            task_id=task_id,
            status=task.status.value,
            result_id=task.result_id,
            error=task.error,
            elapsed_s=round(self.clock() - task.started_at, 2),
        )
        self._schedule_cleanup(task_id, self.retention)
        return task

    # ----- Internal helpers -------------------------------------------------

    def _admit(self, task_id: str, owner_id: str) -> None:
        if self.max_concurrent_jobs and len(self._in_flight) >= self.max_concurrent_jobs:
            logger.warning("submit_rejected_capacity", in_flight=len(self._in_flight))
            raise CapacityExceededError("Too many generation jobs in progress, try again later")
        owned = sum(1 for owner in self._in_flight.values() if owner == owner_id)
        if self.max_jobs_per_owner and owned >= self.max_jobs_per_owner:
            logger.warning("submit_rejected_owner_limit", owner_id=owner_id, in_flight=owned)
            raise CapacityExceededError("A study plan is already being generated for this owner")
        self._in_flight[task_id] = owner_id

    def _forget_job(self, task_id: str) -> None:
        self._jobs.pop(task_id, None)
        self._in_flight.pop(task_id, None)
        self._cancel_reasons.pop(task_id, None)

    def _schedule_cleanup(self, task_id: str, delay: float) -> None:
        previous = self._cleanups.pop(task_id, None)
        if previous is not None:
            previous.cancel()
        handle = asyncio.create_task(self._cleanup_after(task_id, delay), name=f"cleanup:{task_id}")
        self._cleanups[task_id] = handle
        handle.add_done_callback(lambda done, task_id=task_id: self._forget_cleanup(task_id, done))

    def _forget_cleanup(self, task_id: str, handle: asyncio.Task) -> None:
        if self._cleanups.get(task_id) is handle:
            del self._cleanups[task_id]

    async def _cleanup_after(self, task_id: str, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))
        try:
            await self.store.delete(task_id)
        except TaskStoreError as exc:
            logger.warning("task_cleanup_failed", task_id=task_id, error=str(exc))


async def _stop(heartbeat: asyncio.Task) -> None:
    """Cancel the heartbeat and wait until its last write has settled."""
    heartbeat.cancel()
    await asyncio.gather(heartbeat, return_exceptions=True)
