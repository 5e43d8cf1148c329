"""Tests for recovering study plans from raw model text."""
import json

import pytest

from study_planner.core.plan.models import PlanSource, normalize_plan_payload
from study_planner.core.plan.recovery import (
    ParseKind,
    anchor_candidate,
    boundary_candidate,
    recover_plan,
)


class TestRecoveryChain:
    def test_clean_document_is_parsed_directly(self, plan_text):
        outcome = recover_plan(plan_text)

        assert outcome.kind is ParseKind.PARSED
        assert outcome.strategy == "direct"
        assert outcome.plan.source is PlanSource.MODEL
        assert [m.order for m in outcome.plan.modules] == [1, 2]

    def test_prose_wrapped_document_uses_boundary_extraction(self, plan_text):
        text = f"Here is your plan: {plan_text} Hope this helps!"

        outcome = recover_plan(text)

        assert outcome.kind is ParseKind.RECOVERED
        assert outcome.strategy == "boundary"
        assert outcome.plan.source is PlanSource.RECOVERED
        assert outcome.attempts == ["direct", "boundary"]

    def test_fenced_document_is_recovered(self, plan_text):
        outcome = recover_plan(f"```json\n{plan_text}\n```")

        assert outcome.ok
        assert outcome.strategy == "boundary"

    def test_anchor_extraction_finds_the_plan_object(self, plan_text):
        text = 'Notes: {"draft": true}\n' + plan_text + "\nSee also {footnote}"

        outcome = recover_plan(text)

        assert outcome.kind is ParseKind.RECOVERED
        assert outcome.strategy == "anchor"
        assert outcome.plan.overview.startswith("Ten days")

    def test_garbage_exhausts_every_strategy(self):
        outcome = recover_plan("I'm sorry, I cannot help with that.")

        assert outcome.kind is ParseKind.EXHAUSTED
        assert outcome.plan is None
        assert not outcome.ok
        assert outcome.attempts == ["direct", "boundary", "anchor"]

    def test_valid_json_with_wrong_shape_is_exhausted(self):
        outcome = recover_plan(json.dumps({"overview": "x", "modules": []}))

        assert outcome.kind is ParseKind.EXHAUSTED

    def test_daily_tasks_are_linked_to_modules(self, plan_text):
        plan = recover_plan(plan_text).plan

        assert [t.module_order for t in plan.daily_tasks] == [1, 2]
        assert plan.tasks_for(2)[0].content == "Antibiotics and analgesics."
        assert plan.modules[0].importance_score == 9
        assert plan.total_days == 10


class TestCandidates:
    def test_boundary_requires_both_braces(self):
        assert boundary_candidate("no braces here") is None
        assert boundary_candidate("} backwards {") is None
        assert boundary_candidate('x {"a": 1} y') == '{"a": 1}'

    def test_anchor_ignores_braces_inside_strings(self):
        text = 'prefix {"overview": "use {curly} braces", "modules": [{"title": "A"}]} tail }'

        candidate = anchor_candidate(text)

        assert json.loads(candidate)["overview"] == "use {curly} braces"

    def test_anchor_returns_none_without_key(self):
        assert anchor_candidate('{"something": "else"}') is None

    def test_anchor_returns_none_for_unbalanced_object(self):
        assert anchor_candidate('{"overview": "cut off", "modules": [') is None


class TestNormalizePlanPayload:
    def test_nested_tasks_are_flattened(self):
        data = {
            "overview": "o",
            "modules": [
                {"title": "A", "tasks": [{"day": 1, "title": "t1"}]},
                {"title": "B", "dailyTasks": [{"day": 2, "title": "t2"}]},
            ],
        }

        normalized = normalize_plan_payload(data)

        assert [m["order"] for m in normalized["modules"]] == [1, 2]
        assert [t["moduleOrder"] for t in normalized["dailyTasks"]] == [1, 2]
        assert "tasks" not in normalized["modules"][0]

    def test_dangling_tasks_are_dropped(self):
        data = {
            "overview": "o",
            "modules": [{"title": "A", "order": 1}],
            "dailyTasks": [
                {"moduleOrder": 1, "day": 1, "title": "kept"},
                {"moduleOrder": 7, "day": 2, "title": "dropped"},
                {"moduleIndex": 3, "day": 3, "title": "dropped too"},
            ],
        }

        normalized = normalize_plan_payload(data)

        assert [t["title"] for t in normalized["dailyTasks"]] == ["kept"]

    @pytest.mark.parametrize("value", [None, [], "text", 3])
    def test_non_object_input_is_returned_unchanged(self, value):
        assert normalize_plan_payload(value) == value
