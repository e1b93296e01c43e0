"""
Thunk

Handle to a spawned task. Passing a thunk as an argument to another spawn
makes that task a dependency.
"""

from typing import Any, Optional, TYPE_CHECKING

from ..dag.node import TaskState

if TYPE_CHECKING:
    from .executor import TaskScheduler


class Thunk:
    """
    Handle to a task owned by a TaskScheduler.

    Example usage:
        a = ctx.spawn(load, "data.csv")
        b = ctx.spawn(clean, a)     # b depends on a
        print(b.fetch(timeout=10))  # blocks until b is done
    """

    def __init__(self, scheduler: "TaskScheduler", task_id: int):
        self.scheduler = scheduler
        self.task_id = task_id

    def fetch(self, timeout: Optional[float] = None) -> Any:
        """Block until the task is done and return its result"""
        return self.scheduler.fetch(self.task_id, timeout=timeout)

    @property
    def state(self) -> TaskState:
        return self.scheduler.state(self.task_id)

    def done(self) -> bool:
        """True once the task is FINISHED or FAILED"""
        return self.state.is_terminal

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Thunk):
            return NotImplemented
        return self.scheduler is other.scheduler and self.task_id == other.task_id

    def __hash__(self) -> int:
        return hash((id(self.scheduler), self.task_id))

    def __repr__(self) -> str:
        return f"Thunk(id={self.task_id}, state={self.state.value})"
