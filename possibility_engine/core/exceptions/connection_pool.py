"""
Connection Pool Exceptions

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class TaskAbortedError(PossibilityEngineError):
    """
    Raised through a task's future when the task is dropped from the queue
    (abort_task) or the pool is reset before the task ran to completion.
    """

    error_type = ErrorType.ABORTED
    severity = ErrorSeverity.LOW
    retryable = False

    def __init__(self, message: str, task_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        if task_id:
            self.details.setdefault("task_id", task_id)
