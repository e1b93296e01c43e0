"""
Status API

FastAPI service exposing the live task graph of a Context.

HTTP Endpoints:
- GET  /                - Health check
- GET  /health          - Task counts and scheduler status
- GET  /tasks           - All tasks (optional ?state= filter)
- GET  /tasks/{task_id} - One task
- GET  /graph           - Tasks, edges and levels of independent tasks
- GET  /processors      - Local and remote processors
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel
import uvicorn

from ..dag.node import TaskState
from ..runtime.context import Context, get_context

logger = logging.getLogger(__name__)


class TaskResponse(BaseModel):
    """Single task summary"""
    id: int
    name: str
    state: str
    dependencies: List[int]
    spawned_by: Optional[int] = None
    remote: bool
    processor: Optional[str] = None
    error: Optional[str] = None
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    duration: Optional[float] = None


class TasksResponse(BaseModel):
    """Response containing multiple tasks"""
    count: int
    tasks: List[TaskResponse]


class GraphResponse(BaseModel):
    """Full graph view"""
    tasks: List[TaskResponse]
    edges: List[List[int]]
    levels: List[List[int]]
    counts: Dict[str, int]
    complete: bool


class ProcessorResponse(BaseModel):
    worker: str
    index: int
    kind: str


def create_app(context: Context) -> FastAPI:
    """
    Build the status app for a context.

    Args:
        context: Running context to report on

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Taskgraph - Status API",
        description="Inspect a running task graph",
        version="1.0.0",
    )

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "running",
            "service": "taskgraph-status",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        """Detailed health status"""
        snapshot = context.snapshot()
        return {
            "status": "healthy" if context.scheduler.is_running else "stopped",
            "service": "taskgraph-status",
            "worker_id": context.settings.worker_id,
            "tasks": snapshot["counts"],
            "complete": snapshot["complete"],
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/tasks")
    async def list_tasks(
        state: Optional[str] = Query(default=None, description="Only tasks in this state"),
    ) -> TasksResponse:
        """
        List tasks in id order.

        Raises:
            400: Unknown state
        """
        if state is not None:
            valid = [s.value for s in TaskState]
            if state not in valid:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid state '{state}'. Must be one of: {valid}",
                )

        tasks = [
            TaskResponse(**task)
            for task in context.snapshot()["tasks"]
            if state is None or task["state"] == state
        ]
        return TasksResponse(count=len(tasks), tasks=tasks)

    @app.get("/tasks/{task_id}")
    async def get_task(task_id: int) -> TaskResponse:
        """
        Fetch one task.

        Raises:
            404: No such task
        """
        try:
            return TaskResponse(**context.scheduler.task_info(task_id))
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    @app.get("/graph")
    async def get_graph() -> GraphResponse:
        """Tasks, edges and levels of pairwise independent tasks"""
        snapshot = context.snapshot()
        return GraphResponse(
            tasks=[TaskResponse(**task) for task in snapshot["tasks"]],
            edges=snapshot["edges"],
            levels=snapshot["levels"],
            counts=snapshot["counts"],
            complete=snapshot["complete"],
        )

    @app.get("/processors")
    async def get_processors() -> List[ProcessorResponse]:
        """Local threads followed by live remote worker threads"""
        return [
            ProcessorResponse(worker=p.worker, index=p.index, kind=p.kind.value)
            for p in context.procs()
        ]

    return app


def serve(context: Context, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the status API for a context (blocks)"""
    host = host or os.getenv("HOST", "0.0.0.0")
    port = port or int(os.getenv("PORT", "8001"))

    logger.info(f"Starting Status API on {host}:{port}")
    uvicorn.run(create_app(context), host=host, port=port)


def main() -> None:
    """
    taskgraph-status: serve the status API for the default context.

    With remote execution enabled in $CONFIG_DIR/scheduler.yaml (or
    TASKGRAPH_REMOTE), /processors lists the live workers of the pool.

    Environment Variables:
        HOST: Bind address (default: "0.0.0.0")
        PORT: Port (default: 8001)
        CONFIG_DIR: Config directory path (default: "config")
    """
    context = get_context()
    try:
        serve(context)
    finally:
        context.close(wait=False)


if __name__ == "__main__":
    main()
