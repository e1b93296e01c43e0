"""
Runtime Module

Execution context, remote dispatch, distributed workers and pipeline runner.
"""

from .context import Context, get_context, set_context, spawn, fetch, procs
from .remote import RemoteDispatcher
from .worker import TaskWorker
from .pipeline import run_pipeline, collect_results

__all__ = [
    "Context",
    "get_context",
    "set_context",
    "spawn",
    "fetch",
    "procs",
    "RemoteDispatcher",
    "TaskWorker",
    "run_pipeline",
    "collect_results",
]
