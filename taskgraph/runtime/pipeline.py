"""
Pipeline Runner

Spawns a declarative (named) task graph into a Context.
"""

import logging
from typing import Any, Dict, Optional

from ..dag.builder import GraphBuilder
from ..errors import TaskFailedError
from ..scheduler.thunk import Thunk
from .context import Context

logger = logging.getLogger(__name__)


def run_pipeline(context: Context, builder: GraphBuilder) -> Dict[str, Thunk]:
    """
    Spawn every task of a builder in topological order.

    Each task is called as function(*dependency_results, *args, **kwargs),
    with dependency results in depends_on order.

    Args:
        context: Context to spawn into
        builder: Builder holding the task definitions (built here)

    Returns:
        Mapping of task id to its thunk

    Raises:
        ValueError: If the definitions contain cycles or unknown references
    """
    builder.build()

    thunks: Dict[str, Thunk] = {}
    for task_id in builder.topo_order:
        task_def = builder.tasks[task_id]
        upstream = [thunks[dep] for dep in builder.get_dependencies(task_id)]

        thunks[task_id] = context.submit(
            task_def.function,
            args=(*upstream, *task_def.args),
            kwargs=task_def.kwargs,
            name=task_id,
            remote=task_def.remote,
        )

    logger.info(f"Spawned pipeline of {len(thunks)} tasks")
    return thunks


def collect_results(
    thunks: Dict[str, Thunk], timeout: Optional[float] = None
) -> Dict[str, Dict[str, Any]]:
    """
    Fetch every thunk, recording failures instead of raising.

    Returns:
        {task_id: {"ok": True, "value": ...}} or {"ok": False, "error": "..."}
    """
    results: Dict[str, Dict[str, Any]] = {}
    for task_id, thunk in thunks.items():
        try:
            results[task_id] = {"ok": True, "value": thunk.fetch(timeout=timeout)}
        except TaskFailedError as e:
            logger.error(f"Pipeline task '{task_id}' failed: {e}")
            results[task_id] = {"ok": False, "error": str(e)}
    return results
