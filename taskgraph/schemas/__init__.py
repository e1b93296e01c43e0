"""
Taskgraph - Typed Message Catalog

Messages exchanged between schedulers and remote workers.
"""

from .messages import TaskRequest, TaskResult, WorkerHeartbeat

__all__ = [
    "TaskRequest",
    "TaskResult",
    "WorkerHeartbeat",
]
