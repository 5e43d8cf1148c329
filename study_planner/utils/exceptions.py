class StudyPlannerError(Exception):
    """Base exception for the study-plan generation service."""


class InvalidSubmissionError(StudyPlannerError):
    """A request is missing required fields or carries malformed values."""


class OwnerNotFoundError(StudyPlannerError):
    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Owner not found: {owner_id}")


class TaskNotFoundError(StudyPlannerError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Generation task not found: {task_id}")


class CapacityExceededError(StudyPlannerError):
    """Raised by admission control when too many jobs are in flight."""


class StaleTaskError(StudyPlannerError):
    """A conditional task update lost against a concurrent or terminal write."""

    def __init__(self, task_id: str, detail: str):
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' was not updated: {detail}")


class LLMError(StudyPlannerError):
    def __init__(self, provider: str, detail: str):
        self.provider = provider
        super().__init__(f"LLM error ({provider}): {detail}")


class ParseRecoveryExhausted(StudyPlannerError):
    def __init__(self, attempts: list[str]):
        self.attempts = attempts
        super().__init__(f"No study plan recovered from model output (tried: {', '.join(attempts)})")


class PersistenceError(StudyPlannerError):
    """The plan repository failed to store a synthesized plan."""


class TaskStoreError(StudyPlannerError):
    """A task record could not be read or written."""


class StatusUnavailableError(StudyPlannerError):
    """The status endpoint answered with something that is not a task status."""
