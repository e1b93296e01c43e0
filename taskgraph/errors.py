"""
Task Graph Errors

Exceptions raised when tasks fail, time out, or fail on a remote worker.
Structural mistakes (bad edges, unknown ids, cycles) raise ValueError.
"""

from typing import Optional


class TaskGraphError(Exception):
    """Base class for task graph errors"""


class TaskFailedError(TaskGraphError):
    """
    Raised by fetch() when a task ended in the FAILED state.

    The exception raised by the task body is chained as __cause__.
    """

    def __init__(self, task_id: int, message: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message or f"Task {task_id} failed")


class DependencyFailedError(TaskFailedError):
    """A task was never run because one of its upstream tasks failed"""

    def __init__(self, task_id: int, failed_dependency: int):
        self.failed_dependency = failed_dependency
        super().__init__(
            task_id,
            f"Task {task_id} not run: dependency {failed_dependency} failed",
        )


class RemoteTaskError(TaskGraphError):
    """Error reported back by a remote worker"""

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        traceback_text: Optional[str] = None,
        worker_id: Optional[str] = None,
    ):
        self.error_type = error_type
        self.traceback_text = traceback_text
        self.worker_id = worker_id
        prefix = f"{error_type}: " if error_type else ""
        super().__init__(f"{prefix}{message}")


class TaskTimeoutError(TaskGraphError, TimeoutError):
    """fetch() or wait_all() gave up before the task completed"""
