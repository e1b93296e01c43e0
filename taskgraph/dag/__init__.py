"""
DAG Module

Task graph construction, validation, and management.
"""

from .node import TaskNode, TaskDef, TaskState
from .graph import TaskGraph
from .registry import FunctionRegistry, default_registry
from .builder import GraphBuilder

__all__ = [
    "TaskNode",
    "TaskDef",
    "TaskState",
    "TaskGraph",
    "FunctionRegistry",
    "default_registry",
    "GraphBuilder",
]
