"""
Scheduler Module

Dynamic task scheduling across local threads and remote workers.
"""

from .executor import TaskScheduler, current_task
from .processors import Processor, ProcessorKind
from .thunk import Thunk

__all__ = [
    "TaskScheduler",
    "current_task",
    "Processor",
    "ProcessorKind",
    "Thunk",
]
