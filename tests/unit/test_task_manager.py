"""Tests for the generation task lifecycle manager."""
import asyncio
import time

import pytest

from study_planner.core.plan.engine import PlanSynthesisEngine
from study_planner.core.task.manager import (
    CANCELLED_MESSAGE,
    FINALIZE_ATTEMPTS,
    INTERRUPTED_MESSAGE,
    GenerationTaskManager,
)
from study_planner.core.task.models import GenerationTask, TaskStatus
from study_planner.core.task.store import FileTaskStore
from study_planner.services.owners import StaticOwnerDirectory
from study_planner.utils.exceptions import (
    CapacityExceededError,
    InvalidSubmissionError,
    OwnerNotFoundError,
    PersistenceError,
    StaleTaskError,
    TaskNotFoundError,
    TaskStoreError,
)


class FailingRepository:
    async def save(self, owner_id, survey, plan):
        raise PersistenceError("plan database unavailable")


class FlakyTaskStore(FileTaskStore):
    """Fails the status transitions whose 1-based positions are in *failing*."""

    def __init__(self, directory, failing=()):
        super().__init__(directory)
        self.failing = set(failing)
        self.status_writes = 0

    async def patch(self, task_id, changes, *, expected_status=None):
        if "status" in changes:
            self.status_writes += 1
            if self.status_writes in self.failing:
                raise TaskStoreError(f"Failed to save task '{task_id}': disk full")
        return await super().patch(task_id, changes, expected_status=expected_status)


@pytest.fixture
async def build_manager(task_store, plan_repository):
    managers = []

    def _build(**overrides):
        options = {
            "store": task_store,
            "engine": PlanSynthesisEngine(),
            "repository": plan_repository,
            "owners": StaticOwnerDirectory(),
            "heartbeat_interval": 0.01,
            "max_jobs_per_owner": 0,
        }
        options.update(overrides)
        manager = GenerationTaskManager(**options)
        managers.append(manager)
        return manager

    yield _build

    for manager in managers:
        await manager.shutdown()


async def _terminal(manager, task_id, wait_until):
    async def is_terminal():
        view = await manager.get_status(task_id)
        return view if view.status.is_terminal else None

    return await wait_until(is_terminal)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_returns_before_generation_finishes(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine)

        started = time.perf_counter()
        receipt = await manager.submit("owner-1", survey_payload)
        elapsed = time.perf_counter() - started

        assert elapsed < 1.0
        assert receipt.task_id.startswith("task_")
        assert receipt.estimated_time_ms == 180_000
        view = await manager.get_status(receipt.task_id)
        assert not view.status.is_terminal
        gated_engine.release()

    @pytest.mark.asyncio
    async def test_completes_with_persisted_result(
        self, build_manager, plan_repository, survey_payload, wait_until
    ):
        manager = build_manager()

        receipt = await manager.submit("owner-1", survey_payload)
        view = await _terminal(manager, receipt.task_id, wait_until)

        assert view.status is TaskStatus.COMPLETED
        assert view.progress == 100
        assert view.error is None
        record = await plan_repository.load(view.result_id)
        assert record["ownerId"] == "owner-1"
        assert record["plan"]["source"] == "fallback"
        assert record["plan"]["modules"]

    @pytest.mark.asyncio
    async def test_task_ids_are_unique(self, build_manager, survey_payload):
        manager = build_manager()

        receipts = [await manager.submit(f"owner-{i}", survey_payload) for i in range(5)]

        assert len({r.task_id for r in receipts}) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "owner_id, payload",
        [
            (None, {"titleLevel": "mid", "examYear": 2099}),
            ("  ", {"titleLevel": "mid", "examYear": 2099}),
            ("owner-1", None),
            ("owner-1", {}),
            ("owner-1", ["not", "an", "object"]),
            ("owner-1", {"examYear": 2099}),
            ("owner-1", {"titleLevel": "mid"}),
            ("owner-1", {"titleLevel": "mid", "examYear": "soon"}),
        ],
    )
    async def test_invalid_submission_creates_no_record(
        self, build_manager, task_store, owner_id, payload
    ):
        manager = build_manager()

        with pytest.raises(InvalidSubmissionError):
            await manager.submit(owner_id, payload)

        assert await task_store.list_ids() == []

    @pytest.mark.asyncio
    async def test_unknown_owner_creates_no_record(self, build_manager, task_store, survey_payload):
        manager = build_manager(owners=StaticOwnerDirectory(["owner-1"]))

        with pytest.raises(OwnerNotFoundError):
            await manager.submit("owner-2", survey_payload)

        assert await task_store.list_ids() == []

    @pytest.mark.asyncio
    async def test_raw_input_is_kept_on_the_record(self, build_manager, gated_engine, task_store, survey_payload):
        manager = build_manager(engine=gated_engine)

        receipt = await manager.submit(42, survey_payload)

        task = await task_store.get(receipt.task_id)
        assert task.owner_id == "42"
        assert task.raw_input == survey_payload
        gated_engine.release()


class TestAdmissionControl:
    @pytest.mark.asyncio
    async def test_one_job_per_owner(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine, max_jobs_per_owner=1)

        await manager.submit("owner-1", survey_payload)
        with pytest.raises(CapacityExceededError):
            await manager.submit("owner-1", survey_payload)
        await manager.submit("owner-2", survey_payload)

        assert manager.in_flight == 2
        gated_engine.release()

    @pytest.mark.asyncio
    async def test_global_limit(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine, max_concurrent_jobs=1)

        await manager.submit("owner-1", survey_payload)
        with pytest.raises(CapacityExceededError):
            await manager.submit("owner-2", survey_payload)
        gated_engine.release()

    @pytest.mark.asyncio
    async def test_slot_is_released_when_job_finishes(self, build_manager, survey_payload, wait_until):
        manager = build_manager(max_jobs_per_owner=1)

        first = await manager.submit("owner-1", survey_payload)
        await _terminal(manager, first.task_id, wait_until)
        await wait_until(lambda: manager.in_flight == 0)

        second = await manager.submit("owner-1", survey_payload)
        assert second.task_id != first.task_id


class TestExecution:
    @pytest.mark.asyncio
    async def test_heartbeat_progress_follows_elapsed_time(
        self, build_manager, gated_engine, clock, survey_payload, wait_until
    ):
        manager = build_manager(engine=gated_engine, clock=clock, estimated_duration=100.0)
        receipt = await manager.submit("owner-1", survey_payload)
        await gated_engine.started.wait()

        async def progress_is(value):
            return (await manager.get_status(receipt.task_id)).progress == value

        clock.advance(25)
        await wait_until(lambda: progress_is(25))
        clock.advance(25.9)
        await wait_until(lambda: progress_is(50))

        view = await manager.get_status(receipt.task_id)
        assert view.status is TaskStatus.PROCESSING

        clock.advance(1000)
        await wait_until(lambda: progress_is(90))
        await asyncio.sleep(0.05)
        assert (await manager.get_status(receipt.task_id)).progress == 90

        gated_engine.release()
        view = await _terminal(manager, receipt.task_id, wait_until)
        assert view.status is TaskStatus.COMPLETED
        assert view.progress == 100

    @pytest.mark.asyncio
    async def test_persistence_failure_fails_the_task(self, build_manager, survey_payload, wait_until):
        manager = build_manager(repository=FailingRepository())

        receipt = await manager.submit("owner-1", survey_payload)
        view = await _terminal(manager, receipt.task_id, wait_until)

        assert view.status is TaskStatus.FAILED
        assert view.error == "plan database unavailable"
        assert view.result_id is None

    @pytest.mark.asyncio
    async def test_terminal_state_never_changes(
        self, build_manager, task_store, survey_payload, wait_until
    ):
        manager = build_manager()
        receipt = await manager.submit("owner-1", survey_payload)
        first = await _terminal(manager, receipt.task_id, wait_until)

        with pytest.raises(StaleTaskError):
            await task_store.patch(receipt.task_id, {"progress": 10})
        await asyncio.sleep(0.05)

        second = await manager.get_status(receipt.task_id)
        assert second == first


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_failed_start_write_fails_the_task(
        self, build_manager, tmp_path, survey_payload, wait_until
    ):
        store = FlakyTaskStore(tmp_path / "flaky", failing={1})
        manager = build_manager(store=store)

        receipt = await manager.submit("owner-1", survey_payload)
        view = await _terminal(manager, receipt.task_id, wait_until)

        assert view.status is TaskStatus.FAILED
        assert "disk full" in view.error
        await wait_until(lambda: manager.in_flight == 0)

    @pytest.mark.asyncio
    async def test_failed_final_write_is_retried(
        self, build_manager, tmp_path, survey_payload, wait_until
    ):
        store = FlakyTaskStore(tmp_path / "flaky", failing={2})
        manager = build_manager(store=store)

        receipt = await manager.submit("owner-1", survey_payload)
        view = await _terminal(manager, receipt.task_id, wait_until)

        assert view.status is TaskStatus.COMPLETED
        assert view.result_id is not None
        assert store.status_writes == 3
        await wait_until(lambda: manager.in_flight == 0)

    @pytest.mark.asyncio
    async def test_exhausted_final_writes_leave_the_record_for_recovery(
        self, build_manager, tmp_path, survey_payload, wait_until
    ):
        store = FlakyTaskStore(tmp_path / "flaky", failing=range(2, 2 + FINALIZE_ATTEMPTS))
        manager = build_manager(store=store)

        receipt = await manager.submit("owner-1", survey_payload)
        await wait_until(lambda: manager.in_flight == 0)

        assert store.status_writes == 1 + FINALIZE_ATTEMPTS
        assert (await manager.get_status(receipt.task_id)).status is TaskStatus.PROCESSING

        await manager.recover()
        view = await manager.get_status(receipt.task_id)
        assert view.status is TaskStatus.FAILED
        assert view.error == INTERRUPTED_MESSAGE


class TestStatusAndCancel:
    @pytest.mark.asyncio
    async def test_missing_task_id(self, build_manager):
        manager = build_manager()

        with pytest.raises(InvalidSubmissionError):
            await manager.get_status("")

    @pytest.mark.asyncio
    async def test_unknown_task_id(self, build_manager):
        manager = build_manager()

        with pytest.raises(TaskNotFoundError):
            await manager.get_status("task_0_nope")

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_task(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine)
        receipt = await manager.submit("owner-1", survey_payload)

        assert (await manager.get_status(receipt.task_id, "owner-1")).task_id == receipt.task_id
        with pytest.raises(TaskNotFoundError):
            await manager.get_status(receipt.task_id, "owner-2")
        gated_engine.release()

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, build_manager, gated_engine, survey_payload, wait_until):
        manager = build_manager(engine=gated_engine)
        receipt = await manager.submit("owner-1", survey_payload)
        await gated_engine.started.wait()

        view = await manager.cancel(receipt.task_id)

        assert view.status is TaskStatus.FAILED
        assert view.error == CANCELLED_MESSAGE
        await wait_until(lambda: manager.in_flight == 0)

    @pytest.mark.asyncio
    async def test_cancel_immediately_after_submit(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine)
        receipt = await manager.submit("owner-1", survey_payload)

        view = await manager.cancel(receipt.task_id)

        assert view.status is TaskStatus.FAILED
        assert view.error == CANCELLED_MESSAGE
        assert manager.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_finished_task_is_a_no_op(self, build_manager, survey_payload, wait_until):
        manager = build_manager()
        receipt = await manager.submit("owner-1", survey_payload)
        done = await _terminal(manager, receipt.task_id, wait_until)

        view = await manager.cancel(receipt.task_id)

        assert view == done


class TestCleanupAndRecovery:
    @pytest.mark.asyncio
    async def test_terminal_record_is_deleted_after_retention(
        self, build_manager, task_store, survey_payload, wait_until
    ):
        manager = build_manager(retention=0.05)
        receipt = await manager.submit("owner-1", survey_payload)

        await wait_until(lambda: task_store.get(receipt.task_id))
        await wait_until(lambda: _is_gone(task_store, receipt.task_id))

    @pytest.mark.asyncio
    async def test_recover_reconciles_stored_records(self, build_manager, task_store, clock):
        day = 24 * 60 * 60
        orphan = GenerationTask(
            owner_id="owner-1",
            status=TaskStatus.PROCESSING,
            progress=40,
            started_at=clock.now - 60,
            updated_at=clock.now - 5,
        )
        expired = GenerationTask(
            owner_id="owner-1",
            status=TaskStatus.COMPLETED,
            progress=100,
            result_id="old",
            started_at=clock.now - 3 * day,
            updated_at=clock.now - 2 * day,
            finished_at=clock.now - 2 * day,
        )
        recent = GenerationTask(
            owner_id="owner-1",
            status=TaskStatus.FAILED,
            error="boom",
            started_at=clock.now - 600,
            updated_at=clock.now - 300,
            finished_at=clock.now - 300,
        )
        for task in (orphan, expired, recent):
            await task_store.put(task)
        manager = build_manager(clock=clock, retention=day)

        counts = await manager.recover()

        assert counts == {"interrupted": 1, "expired": 1, "scheduled": 2}
        assert await task_store.get(expired.id) is None
        recovered = await task_store.get(orphan.id)
        assert recovered.status is TaskStatus.FAILED
        assert recovered.error == INTERRUPTED_MESSAGE
        assert recovered.progress == 40
        assert (await task_store.get(recent.id)).error == "boom"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, build_manager, gated_engine, survey_payload):
        manager = build_manager(engine=gated_engine)
        receipt = await manager.submit("owner-1", survey_payload)
        await gated_engine.started.wait()

        await manager.shutdown()

        view = await manager.get_status(receipt.task_id)
        assert view.status is TaskStatus.FAILED
        assert manager.in_flight == 0


async def _is_gone(store, task_id):
    return await store.get(task_id) is None
