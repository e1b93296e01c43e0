"""
Task Worker

Distributed worker process: serves task requests from a NATS pool and
announces itself with periodic heartbeats.
"""

import asyncio
import json
import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Set

from ..adapters.nats_client import NatsClient, Topics
from ..config.loader import SchedulerSettings
from ..dag.registry import FunctionRegistry
from ..errors import TaskFailedError
from ..scheduler.processors import Processor
from ..schemas.messages import TaskRequest, TaskResult, WorkerHeartbeat
from .context import Context

logger = logging.getLogger(__name__)


class TaskWorker:
    """
    Serves task requests for one worker pool.

    The worker:
    1. Joins the pool's queue group, so each request reaches one worker
    2. Listens on its own subject for requests pinned to it
    3. Runs each request as a task in a local Context, so tasks spawned
       by a remote task body run on this worker
    4. Replies with a TaskResult and publishes heartbeats

    Example usage:
        nats_client = NatsClient(settings.remote.nats_config())
        await nats_client.connect()

        worker = TaskWorker(nats_client, settings)
        await worker.start()
    """

    def __init__(
        self,
        nats_client: NatsClient,
        settings: SchedulerSettings,
        registry: Optional[FunctionRegistry] = None,
    ):
        """
        Initialize worker.

        Args:
            nats_client: Connected NATS client
            settings: Worker id, thread count, pool and heartbeat interval
            registry: Registry of functions this worker can run
        """
        self.nats = nats_client
        self.settings = settings
        self.worker_id = settings.worker_id
        self.pool = settings.remote.pool

        # Local-only context; nested spawns stay on this worker
        self.context = Context(
            SchedulerSettings(
                worker_id=settings.worker_id,
                threads=settings.threads,
                functions=settings.functions,
            ),
            registry=registry,
        )

        # Blocking fetches for in-flight requests, one per local thread
        self._executor = ThreadPoolExecutor(
            max_workers=settings.threads,
            thread_name_prefix=f"taskgraph-{settings.worker_id}-fetch",
        )
        self._inflight: Set[asyncio.Task] = set()

        self._running = 0
        self._served = 0
        self._failed = 0
        self._heartbeat_task: Optional[asyncio.Task] = None

        logger.info(
            f"Worker '{self.worker_id}' initialized for pool '{self.pool}' "
            f"with {settings.threads} threads, functions: {self.context.registry.list_names()}"
        )

    async def start(self) -> None:
        """Subscribe to task subjects and begin heartbeats"""
        logger.info(f"Starting worker '{self.worker_id}'...")

        await self.nats.subscribe(
            Topics.tasks(self.pool),
            self.handle_request,
            queue=Topics.queue_group(self.pool),
        )
        await self.nats.subscribe(
            Topics.worker_tasks(self.pool, self.worker_id),
            self.handle_request,
        )

        await self.publish_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info(f"Worker '{self.worker_id}' started")

    async def stop(self) -> None:
        """
        Stop heartbeats, finish in-flight requests and shut down the local context.

        Requests still running after the pool's request timeout are
        cancelled; their callers have given up on the reply by then.
        """
        logger.info(f"Stopping worker '{self.worker_id}'")

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        await self.drain(timeout=self.settings.remote.request_timeout)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.context.close)
        self._executor.shutdown(wait=False)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight requests to be answered.

        Args:
            timeout: Seconds to wait before cancelling the rest, None waits forever

        Returns:
            Number of requests cancelled
        """
        if not self._inflight:
            return 0

        _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} unanswered requests")
        return len(pending)

    async def handle_request(self, msg) -> None:
        """
        NATS callback for task requests.

        nats-py awaits a subscription's callback before delivering its
        next message, so each request is served in its own asyncio task
        and independent requests run on separate threads.

        Args:
            msg: NATS message with a TaskRequest payload
        """
        task = asyncio.create_task(self.serve_request(msg))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def serve_request(self, msg) -> None:
        """Run one task request and reply with its TaskResult"""
        try:
            request = TaskRequest.from_json(msg.data.decode())
        except Exception as e:
            logger.error(f"Failed to parse task request: {e}", exc_info=True)
            result = TaskResult.failure(0, e, worker_id=self.worker_id)
        else:
            result = await self.execute(request)

        try:
            await msg.respond(result.to_json().encode("utf-8"))
        except Exception as e:
            logger.error(f"Failed to reply for task {result.task_id}: {e}", exc_info=True)

    async def execute(self, request: TaskRequest) -> TaskResult:
        """
        Run a request in the local context and build its TaskResult.

        A request pinned to a thread runs on that local thread. Failures
        (unknown function or thread, task error, non-JSON result) become
        failed results rather than exceptions.
        """
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        self._running += 1

        logger.debug(
            f"Executing task {request.task_id} '{request.function}' from {request.origin}"
        )

        try:
            processor = None
            if request.thread is not None:
                processor = Processor(self.worker_id, request.thread)
            thunk = self.context.submit(
                request.function,
                args=tuple(request.args),
                kwargs=request.kwargs,
                name=f"{request.function}@{request.origin}#{request.task_id}",
                processor=processor,
            )
            value = await loop.run_in_executor(self._executor, thunk.fetch)
            json.dumps(value)
        except TaskFailedError as e:
            cause = e.__cause__ or e
            result = TaskResult.failure(
                request.task_id,
                cause,
                worker_id=self.worker_id,
                traceback_text="".join(
                    traceback.format_exception(type(cause), cause, cause.__traceback__)
                ),
            )
        except Exception as e:
            logger.error(f"Task {request.task_id} rejected: {e}", exc_info=True)
            result = TaskResult.failure(
                request.task_id,
                e,
                worker_id=self.worker_id,
                traceback_text=traceback.format_exc(),
            )
        else:
            node = self.context.graph.get(thunk.task_id)
            result = TaskResult(
                task_id=request.task_id,
                ok=True,
                value=value,
                worker_id=self.worker_id,
                thread=node.processor.index if node.processor is not None else None,
            )
        finally:
            self._running -= 1

        result.duration = time.monotonic() - started
        self._served += 1
        if not result.ok:
            self._failed += 1
        return result

    async def publish_heartbeat(self) -> None:
        heartbeat = WorkerHeartbeat(
            worker_id=self.worker_id,
            pool=self.pool,
            threads=self.settings.threads,
            running=self._running,
        )
        await self.nats.publish_json(Topics.heartbeat(self.pool), heartbeat.to_json())

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.remote.heartbeat_interval)
            try:
                await self.publish_heartbeat()
            except Exception as e:
                logger.warning(f"Failed to publish heartbeat: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get worker metrics.

        Returns:
            Dictionary with worker statistics
        """
        return {
            "worker_id": self.worker_id,
            "pool": self.pool,
            "threads": self.settings.threads,
            "running": self._running,
            "served": self._served,
            "failed": self._failed,
            "tasks": self.context.snapshot()["counts"],
        }
