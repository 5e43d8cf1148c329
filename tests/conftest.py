import asyncio
import json

import pytest

from study_planner.core.plan.fallback import build_fallback_plan
from study_planner.core.plan.models import SurveyInput
from study_planner.core.task.store import FileTaskStore
from study_planner.output.repository import FilePlanRepository


class FakeLLM:
    """Stands in for :class:`LLMClient`; returns a canned response."""

    def __init__(self, response="", error=None, delay=0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    async def complete(self, system, user, json_mode=True):
        self.calls.append((system, user))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class GatedEngine:
    """Engine whose ``synthesize`` blocks until ``release()`` is called."""

    def __init__(self, error=None):
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.error = error

    def release(self):
        self.gate.set()

    async def synthesize(self, survey):
        self.started.set()
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return build_fallback_plan(survey, 30)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def survey_payload():
    return {
        "profession": "nursing",
        "titleLevel": "mid",
        "currentTitle": "junior",
        "examStatus": "first",
        "overallLevel": "medium",
        "studyTimePerDay": "2-4",
        "examDate": "2099-04-13",
    }


@pytest.fixture
def survey(survey_payload):
    return SurveyInput.model_validate(survey_payload)


@pytest.fixture
def plan_document():
    return {
        "overview": "Ten days of focused nursing review.",
        "modules": [
            {
                "title": "Fundamentals of Nursing",
                "description": "Core concepts.",
                "importance": 9,
                "difficulty": 6,
                "durationDays": 5,
                "order": 1,
            },
            {
                "title": "Pharmacology",
                "description": "Drug knowledge.",
                "importance": 8,
                "difficulty": 7,
                "durationDays": 5,
                "order": 2,
            },
        ],
        "tasks": [
            {
                "moduleIndex": 0,
                "day": 1,
                "title": "Read chapter 1",
                "description": "Nursing process.",
                "learningContent": "Assessment, diagnosis, planning.",
                "estimatedMinutes": 90,
            },
            {
                "moduleIndex": 1,
                "day": 6,
                "title": "Drug classes",
                "description": "Common classes.",
                "learningContent": "Antibiotics and analgesics.",
                "estimatedMinutes": 120,
            },
        ],
    }


@pytest.fixture
def plan_text(plan_document):
    return json.dumps(plan_document)


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def gated_engine():
    return GatedEngine()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def task_store(tmp_path):
    return FileTaskStore(tmp_path / "tasks")


@pytest.fixture
def plan_repository(tmp_path):
    return FilePlanRepository(tmp_path / "plans")


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=3.0, interval=0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return result
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait_until
