"""Durable task record storage.

One JSON file per task under a single directory.  Records are written to a
temporary file and renamed into place so readers never observe a partial
record, and task existence survives process restarts without any running
coordinator.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from study_planner.core.task.models import GenerationTask, TaskStatus
from study_planner.utils.exceptions import StaleTaskError, TaskNotFoundError, TaskStoreError
from study_planner.utils.file_utils import ensure_dir, is_safe_token
from study_planner.utils.logging import get_logger

logger = get_logger("task.store")


class FileTaskStore:
    """Key -> :class:`GenerationTask` store backed by the file system.

    Writers of the same task are serialised by a per-task
    :class:`asyncio.Lock`; tasks never contend with each other.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = ensure_dir(directory)
        self._locks: dict[str, asyncio.Lock] = {}

    # ----- Public API -------------------------------------------------------

    async def put(self, task: GenerationTask) -> None:
        """Create or fully overwrite the record for ``task.id``."""
        async with self._lock(task.id):
            await self._write(task)
        logger.debug("task_saved", task_id=task.id, status=task.status.value)

    async def get(self, task_id: str) -> GenerationTask | None:
        """Return the record for *task_id*, or ``None`` if it does not exist."""
        path = self._path(task_id)
        if path is None or not await aiofiles.os.path.exists(path):
            return None
        return await self._read(task_id, path)

    async def patch(
        self,
        task_id: str,
        changes: dict[str, Any],
        *,
        expected_status: TaskStatus | None = None,
    ) -> GenerationTask:
        """Atomically read, modify and write one record.

        *expected_status* is a compare-and-swap precondition: when the stored
        status differs, :class:`StaleTaskError` is raised and nothing is
        written.  Raises :class:`TaskNotFoundError` for unknown ids.
        """
        async with self._lock(task_id):
            current = await self.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if expected_status is not None and current.status is not expected_status:
                raise StaleTaskError(
                    task_id,
                    f"expected status {expected_status.value}, found {current.status.value}",
                )
            updated = current.apply(changes)
            await self._write(updated)
        logger.debug("task_patched", task_id=task_id, changes=sorted(changes))
        return updated

    async def delete(self, task_id: str) -> bool:
        """Remove the record.  Returns ``False`` when it was already gone."""
        path = self._path(task_id)
        if path is None:
            return False
        async with self._lock(task_id):
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise TaskStoreError(f"Failed to delete task '{task_id}': {exc}") from exc
            finally:
                self._locks.pop(task_id, None)
        logger.info("task_deleted", task_id=task_id)
        return True

    async def list_ids(self) -> list[str]:
        """Return the ids of every stored record."""
        names = await aiofiles.os.listdir(self.directory)
        return sorted(name[: -len(".json")] for name in names if name.endswith(".json"))

    # ----- Internal helpers -------------------------------------------------

    def _lock(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    def _path(self, task_id: str) -> Path | None:
        if not task_id or not is_safe_token(task_id):
            return None
        return self.directory / f"{task_id}.json"

    async def _read(self, task_id: str, path: Path) -> GenerationTask | None:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as fh:
                raw = await fh.read()
        except FileNotFoundError:
            # Deleted between the existence check and the read.
            return None
        except OSError as exc:
            logger.error("task_read_failed", task_id=task_id, error=str(exc))
            raise TaskStoreError(f"Failed to read task '{task_id}': {exc}") from exc

        try:
            return GenerationTask.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error("task_record_corrupt", task_id=task_id, error=str(exc))
            raise TaskStoreError(f"Task record '{task_id}' is unreadable: {exc}") from exc

    async def _write(self, task: GenerationTask) -> None:
        path = self._path(task.id)
        if path is None:
            raise TaskStoreError(f"Invalid task id: {task.id!r}")

        tmp_path = path.with_name(f".{task.id}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
                await fh.write(task.to_json())
            await aiofiles.os.replace(tmp_path, path)
        except OSError as exc:
            logger.error("task_write_failed", task_id=task.id, error=str(exc))
            await _discard(tmp_path)
            raise TaskStoreError(f"Failed to save task '{task.id}': {exc}") from exc
        except BaseException:
            # Cancelled mid-write.
            await _discard(tmp_path)
            raise


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("task_temp_cleanup_failed", path=str(path), error=str(exc))
