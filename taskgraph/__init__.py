"""
Taskgraph

Dynamic task-graph scheduler. Spawned tasks form a directed acyclic graph;
independent tasks run concurrently on local threads or remote workers,
and running tasks may spawn further tasks.

    import taskgraph

    a = taskgraph.spawn(sum, [1, 2, 3])
    b = taskgraph.spawn(pow, a, 2)
    print(taskgraph.fetch(b))  # 36
"""

from .dag import TaskGraph, TaskNode, TaskState, TaskDef, GraphBuilder, FunctionRegistry, default_registry
from .errors import (
    TaskGraphError,
    TaskFailedError,
    DependencyFailedError,
    RemoteTaskError,
    TaskTimeoutError,
)
from .runtime import Context, get_context, set_context, spawn, fetch, procs
from .scheduler import Processor, ProcessorKind, Thunk

__all__ = [
    "TaskGraph",
    "TaskNode",
    "TaskState",
    "TaskDef",
    "GraphBuilder",
    "FunctionRegistry",
    "default_registry",
    "TaskGraphError",
    "TaskFailedError",
    "DependencyFailedError",
    "RemoteTaskError",
    "TaskTimeoutError",
    "Context",
    "get_context",
    "set_context",
    "spawn",
    "fetch",
    "procs",
    "Processor",
    "ProcessorKind",
    "Thunk",
]
