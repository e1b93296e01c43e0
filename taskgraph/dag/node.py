"""
Task Graph Node Model

Defines the core data structures for task graph vertices.
Each task is a unit of work with ordered dependencies, arguments and a result.
"""

import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable, Union, TYPE_CHECKING
from enum import Enum

if TYPE_CHECKING:
    from ..scheduler.processors import Processor


class TaskState(Enum):
    """Lifecycle state of a task"""
    PENDING = "pending"  # Waiting on dependencies
    READY = "ready"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.FINISHED, TaskState.FAILED)


@dataclass
class TaskNode:
    """
    A vertex of the task graph.

    Attributes:
        id: Sequential identifier, starting at 1 in spawn order
        name: Display name (function name unless given explicitly)
        func: Callable to run, or the name of a registered function
        args: Positional arguments, may contain thunks of dependencies
        kwargs: Keyword arguments, may contain thunks of dependencies
        dependencies: Ids of tasks whose outputs this task consumes (ordered)
        spawned_by: Id of the task whose body spawned this one, if any
        remote: Run on a distributed worker instead of a local thread
        processor: Pinned processor before running, the one used afterwards
    """
    id: int
    name: str
    func: Union[Callable[..., Any], str]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[int] = field(default_factory=list)
    spawned_by: Optional[int] = None
    remote: bool = False
    processor: Optional["Processor"] = None
    state: TaskState = TaskState.PENDING
    result: Any = None
    error: Optional[BaseException] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        """Wall-clock run time in seconds, once finished"""
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        """Summary for reporting (arguments and results are not included)"""
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "dependencies": list(self.dependencies),
            "spawned_by": self.spawned_by,
            "remote": self.remote,
            "processor": str(self.processor) if self.processor else None,
            "error": repr(self.error) if self.error else None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration": self.duration,
        }


@dataclass
class TaskDef:
    """
    Declarative definition of a named task, loaded from YAML configs.

    TaskDef instances are validated and ordered by GraphBuilder, then
    spawned into a Context by run_pipeline().

    Attributes:
        id: Unique identifier within the graph (e.g., "load", "train")
        function: Registered function name (e.g., "etl.load")
        args: Static positional arguments, passed after dependency results
        kwargs: Static keyword arguments
        depends_on: Ids of tasks whose results are passed first, in this order
        remote: Dispatch to a distributed worker
    """
    id: str
    function: str
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    remote: bool = False
