"""Client-side status polling for generation tasks.

:class:`TaskPoller` asks the status endpoint about one task every
``interval`` seconds, forwards progress to an observer and stops itself on
a terminal status.  A run of ``max_errors`` consecutive failed polls is
reported to the observer as a *degraded* failure, telling the user to
retry instead of showing a generation error that never happened.

Stopping a poller only stops polling; the server-side job keeps running.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import httpx

from study_planner.core.task.models import TaskStatus
from study_planner.utils.exceptions import StatusUnavailableError
from study_planner.utils.logging import get_logger

logger = get_logger("client.poller")

STATUS_PATH = "/api/v1/study-plans/generate"
DEGRADED_MESSAGE = "status unavailable, please refresh and retry"
DEFAULT_FAILURE_MESSAGE = "Generation failed"


class StatusFetcher(Protocol):
    async def fetch(self, task_id: str) -> dict[str, Any]: ...


class StatusObserver(Protocol):
    def update_progress(self, progress: int) -> None: ...

    def complete(self, result_id: str | None) -> None: ...

    def fail(self, error: str, degraded: bool = False) -> None: ...


class HttpStatusFetcher:
    """Reads task status from the service's HTTP status endpoint.

    Raises ``httpx.HTTPError`` on transport errors and non-2xx responses,
    ``ValueError`` on an undecodable body and :class:`StatusUnavailableError`
    when the body is not a status object.
    """

    def __init__(
        self,
        base_url: str = "",
        client: httpx.AsyncClient | None = None,
        owner_id: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.owner_id = owner_id

    async def fetch(self, task_id: str) -> dict[str, Any]:
        params = {"taskId": task_id}
        if self.owner_id:
            params["ownerId"] = self.owner_id
        response = await self._client.get(STATUS_PATH, params=params)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict) or "status" not in body:
            raise StatusUnavailableError(f"Unexpected status body for task {task_id}")
        return body

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TaskPoller:
    """Polls one task until it is terminal or the endpoint looks degraded."""

    def __init__(
        self,
        task_id: str,
        fetcher: StatusFetcher,
        observer: StatusObserver | None = None,
        *,
        interval: float = 5.0,
        max_errors: int = 5,
    ) -> None:
        self.task_id = task_id
        self.fetcher = fetcher
        self.observer = observer
        self.interval = interval
        self.max_errors = max_errors
        self.consecutive_errors = 0
        self.last_status: dict[str, Any] | None = None
        self._stopped = False
        self._loop_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Poll now and then every ``interval`` seconds."""
        if self.running:
            return
        self._stopped = False
        self.consecutive_errors = 0
        self._loop_task = asyncio.create_task(self._loop(), name=f"poll:{self.task_id}")
        logger.debug("status_poll_started", task_id=self.task_id, interval=self.interval)

    def stop(self) -> None:
        """Stop polling.  Safe to call any number of times."""
        if self._stopped:
            return
        self._stopped = True
        loop_task = self._loop_task
        if loop_task is not None and not loop_task.done() and loop_task is not asyncio.current_task():
            loop_task.cancel()
        logger.debug("status_poll_stopped", task_id=self.task_id)

    async def wait(self) -> None:
        """Wait until the polling loop has finished."""
        if self._loop_task is not None:
            await asyncio.wait({self._loop_task})

    async def poll_once(self) -> dict[str, Any] | None:
        """Fetch the status once and forward it to the observer.

        Returns the status body, or ``None`` when the fetch failed.
        """
        try:
            body = await self.fetcher.fetch(self.task_id)
        except Exception as exc:
            self._record_failure(exc)
            return None
        if not isinstance(body, dict):
            self._record_failure(StatusUnavailableError(f"Unexpected status body for task {self.task_id}"))
            return None

        self.consecutive_errors = 0
        self.last_status = body
        status = body.get("status")
        progress = body.get("progress")

        if progress is not None:
            self._notify("update_progress", progress)

        if status == TaskStatus.COMPLETED:
            logger.info("status_poll_completed", task_id=self.task_id, result_id=body.get("resultId"))
            self._notify("complete", body.get("resultId"))
            self.stop()
        elif status == TaskStatus.FAILED:
            logger.info("status_poll_failed_task", task_id=self.task_id, error=body.get("error"))
            self._notify("fail", body.get("error") or DEFAULT_FAILURE_MESSAGE)
            self.stop()
        return body

    async def _loop(self) -> None:
        while not self._stopped:
            await self.poll_once()
            if self._stopped:
                break
            await asyncio.sleep(self.interval)

    def _record_failure(self, exc: Exception) -> None:
        self.consecutive_errors += 1
        logger.warning(
            "status_poll_error",
            task_id=self.task_id,
            consecutive_errors=self.consecutive_errors,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if self.consecutive_errors < self.max_errors:
            return
        logger.error("status_poll_degraded", task_id=self.task_id, consecutive_errors=self.consecutive_errors)
        self._notify("fail", DEGRADED_MESSAGE, degraded=True)
        self.stop()

    def _notify(self, method: str, *args: Any, **kwargs: Any) -> None:
        if self.observer is None:
            return
        try:
            getattr(self.observer, method)(*args, **kwargs)
        except Exception as exc:
            logger.error(
                "status_observer_error",
                task_id=self.task_id,
                method=method,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
