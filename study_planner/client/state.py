"""UI-facing generation state.

:class:`GenerationStateStore` is what a front end binds to while a plan is
being generated: the :class:`~study_planner.client.poller.TaskPoller`
pushes progress and the terminal outcome into it, and subscribers are told
about every change.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable


class GenerationPhase(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class GenerationState:
    phase: GenerationPhase = GenerationPhase.IDLE
    task_id: str | None = None
    progress: int = 0
    result_id: str | None = None
    error: str | None = None
    # True when the failure means "could not reach the status endpoint"
    # rather than "the generation itself failed".
    degraded: bool = False


Listener = Callable[[GenerationState], None]


class GenerationStateStore:
    """Holds the current :class:`GenerationState` and notifies listeners."""

    def __init__(self) -> None:
        self.state = GenerationState()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start_generation(self, task_id: str) -> None:
        self._set(GenerationState(phase=GenerationPhase.GENERATING, task_id=task_id))

    def update_progress(self, progress: int) -> None:
        """Record server-side progress.

        Values are clamped to 0-99 so that only :meth:`complete` shows 100.
        Updates after a terminal phase are ignored.
        """
        if self.state.phase is not GenerationPhase.GENERATING:
            return
        self._set(replace(self.state, progress=max(0, min(99, int(progress)))))

    def complete(self, result_id: str | None) -> None:
        self._set(
            replace(
                self.state,
                phase=GenerationPhase.SUCCESS,
                progress=100,
                result_id=result_id,
                error=None,
                degraded=False,
            )
        )

    def fail(self, error: str, degraded: bool = False) -> None:
        self._set(
            replace(
                self.state,
                phase=GenerationPhase.ERROR,
                result_id=None,
                error=error,
                degraded=degraded,
            )
        )

    def reset(self) -> None:
        self._set(GenerationState())

    def _set(self, state: GenerationState) -> None:
        self.state = state
        for listener in list(self._listeners):
            listener(state)
