"""Progressive recovery of a study plan from raw model text.

Model output is untrusted.  :func:`recover_plan` runs an ordered chain of
parse attempts and stops at the first one that yields a valid
:class:`~study_planner.core.plan.models.SynthesizedPlan`:

1. ``direct``   -- the whole text is the document.
2. ``boundary`` -- the span from the first ``{`` to the last ``}``.
3. ``anchor``   -- the object enclosing a required key, located by walking
   back to the nearest ``{`` and forward with brace-depth counting.

The result is a tagged :class:`ParseOutcome`: ``parsed`` when the first
attempt succeeded, ``recovered`` for a later attempt, ``exhausted`` when
none did.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pydantic import ValidationError

from study_planner.core.plan.models import PlanSource, SynthesizedPlan, normalize_plan_payload
from study_planner.utils.logging import get_logger

logger = get_logger("plan.recovery")

ANCHOR_KEYS: tuple[str, ...] = ("overview", "modules")


class ParseKind(str, Enum):
    PARSED = "parsed"
    RECOVERED = "recovered"
    EXHAUSTED = "exhausted"


@dataclass
class ParseOutcome:
    """Result of running the recovery chain over one model response."""

    kind: ParseKind
    plan: SynthesizedPlan | None = None
    strategy: str | None = None
    attempts: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.plan is not None


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------


def direct_candidate(text: str) -> str | None:
    stripped = text.strip()
    return stripped or None


def boundary_candidate(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def anchor_candidate(text: str, keys: tuple[str, ...] = ANCHOR_KEYS) -> str | None:
    """Return the balanced object enclosing the first anchor key found."""
    for key in keys:
        match = re.search(rf'"{re.escape(key)}"\s*:', text)
        if match is None:
            continue
        start = text.rfind("{", 0, match.start())
        if start == -1:
            continue
        end = _matching_brace(text, start)
        if end is not None:
            return text[start : end + 1]
    return None


def _matching_brace(text: str, start: int) -> int | None:
    """Index of the brace closing the one at *start*, ignoring braces in strings."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


STRATEGIES: list[tuple[str, Callable[[str], str | None]]] = [
    ("direct", direct_candidate),
    ("boundary", boundary_candidate),
    ("anchor", anchor_candidate),
]


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


def validate_plan(document: str) -> SynthesizedPlan:
    """Parse and validate *document*.  Raises ``ValueError`` on any failure."""
    data = json.loads(document)
    return SynthesizedPlan.model_validate(normalize_plan_payload(data))


def recover_plan(text: str) -> ParseOutcome:
    """Run the recovery chain over *text* and return a tagged outcome."""
    attempts: list[str] = []
    for position, (name, extract) in enumerate(STRATEGIES):
        attempts.append(name)
        candidate = extract(text)
        if candidate is None:
            logger.debug("plan_parse_no_candidate", strategy=name)
            continue
        try:
            plan = validate_plan(candidate)
        except (ValueError, ValidationError) as exc:
            # json.JSONDecodeError is a ValueError subclass.
            logger.info("plan_parse_attempt_failed", strategy=name, error=str(exc)[:200])
            continue

        kind = ParseKind.PARSED if position == 0 else ParseKind.RECOVERED
        plan.source = PlanSource.MODEL if kind is ParseKind.PARSED else PlanSource.RECOVERED
        logger.info(
            "plan_parsed",
            strategy=name,
            kind=kind.value,
            modules=len(plan.modules),
            daily_tasks=len(plan.daily_tasks),
        )
        return ParseOutcome(kind=kind, plan=plan, strategy=name, attempts=attempts)

    logger.warning("plan_parse_exhausted", attempts=attempts, text_len=len(text))
    return ParseOutcome(kind=ParseKind.EXHAUSTED, attempts=attempts)
