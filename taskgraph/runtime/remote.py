"""
Remote Dispatcher

Sends task requests to distributed workers over NATS and tracks which
workers are alive from their heartbeats.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from typing import Dict, List, Optional, Tuple

from nats.errors import NoRespondersError, TimeoutError as NatsTimeoutError

from ..adapters.nats_client import NatsClient, Topics
from ..config.loader import RemoteSettings
from ..errors import RemoteTaskError, TaskTimeoutError
from ..scheduler.processors import Processor, ProcessorKind
from ..schemas.messages import TaskRequest, TaskResult, WorkerHeartbeat

logger = logging.getLogger(__name__)

# A worker is considered gone after this many missed heartbeats
HEARTBEAT_TOLERANCE = 3


class RemoteDispatcher:
    """
    Bridge from the synchronous scheduler to the async NATS client.

    The dispatcher owns an asyncio event loop running on a background
    thread. submit() schedules a request/reply round trip on that loop
    and returns a concurrent.futures.Future resolving to a TaskResult.

    Requests without a target go to the pool subject, where the NATS
    queue group hands each one to a single worker. Pinned requests go
    to the worker's own subject.

    Example usage:
        dispatcher = RemoteDispatcher(RemoteSettings(enabled=True, pool="gpu"))
        dispatcher.start()

        future = dispatcher.submit(TaskRequest(task_id=1, function="math.square", args=[3]))
        print(future.result().value)  # 9

        dispatcher.stop()
    """

    def __init__(self, settings: RemoteSettings, client: Optional[NatsClient] = None):
        """
        Initialize dispatcher.

        Args:
            settings: Pool name, servers and timeouts
            client: NATS client to use (created from settings if omitted)
        """
        self.settings = settings
        self.client = client or NatsClient(settings.nats_config())
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._workers: Dict[str, Tuple[WorkerHeartbeat, float]] = {}
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    def start(self, timeout: float = 10.0) -> None:
        """Start the event loop thread, connect, and listen for heartbeats"""
        if self._loop is not None:
            return

        loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, args=(loop,), name="taskgraph-remote", daemon=True
        )
        self._thread.start()
        self._loop = loop

        try:
            asyncio.run_coroutine_threadsafe(self._connect(), loop).result(timeout)
        except Exception:
            self.stop()
            raise

        logger.info(f"Remote dispatcher started for pool '{self.settings.pool}'")

    def stop(self, timeout: float = 10.0) -> None:
        """Cancel in-flight requests, close the connection and stop the loop"""
        loop = self._loop
        if loop is None:
            return

        try:
            asyncio.run_coroutine_threadsafe(self._shutdown(), loop).result(timeout)
        except Exception as e:
            logger.error(f"Error while stopping remote dispatcher: {e}", exc_info=True)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            if self._thread is not None:
                self._thread.join(timeout)
            loop.close()
            self._loop = None
            self._thread = None

        logger.info("Remote dispatcher stopped")

    def submit(self, request: TaskRequest, worker: Optional[str] = None) -> Future:
        """
        Send a task request.

        Args:
            request: Task to run (arguments must be JSON-serializable)
            worker: Optional worker id to pin the request to

        Returns:
            Future resolving to the worker's TaskResult

        Raises:
            RuntimeError: If the dispatcher is not started
        """
        if self._loop is None:
            raise RuntimeError("Remote dispatcher not started")
        return asyncio.run_coroutine_threadsafe(self._request(request, worker), self._loop)

    def workers(self) -> List[WorkerHeartbeat]:
        """Workers whose last heartbeat is recent enough"""
        horizon = time.monotonic() - HEARTBEAT_TOLERANCE * self.settings.heartbeat_interval
        with self._lock:
            return [hb for hb, seen in self._workers.values() if seen >= horizon]

    def processors(self) -> List[Processor]:
        """One processor per thread of each live worker"""
        return [
            Processor(hb.worker_id, i, ProcessorKind.REMOTE)
            for hb in sorted(self.workers(), key=lambda h: h.worker_id)
            for i in range(hb.threads)
        ]

    def _run_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    async def _connect(self) -> None:
        await self.client.connect()
        await self.client.subscribe(
            Topics.heartbeat(self.settings.pool), self._handle_heartbeat
        )

    async def _shutdown(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} in-flight remote requests")
        await self.client.close()

    async def _handle_heartbeat(self, msg) -> None:
        try:
            heartbeat = WorkerHeartbeat.from_json(msg.data.decode())
        except Exception as e:
            logger.warning(f"Ignoring malformed heartbeat: {e}")
            return

        with self._lock:
            known = heartbeat.worker_id in self._workers
            self._workers[heartbeat.worker_id] = (heartbeat, time.monotonic())

        if not known:
            logger.info(
                f"Discovered worker '{heartbeat.worker_id}' "
                f"({heartbeat.threads} threads) in pool '{heartbeat.pool}'"
            )

    async def _request(self, request: TaskRequest, worker: Optional[str]) -> TaskResult:
        pool = self.settings.pool
        subject = Topics.worker_tasks(pool, worker) if worker else Topics.tasks(pool)
        payload = request.to_json().encode("utf-8")

        logger.debug(f"Requesting task {request.task_id} '{request.function}' on {subject}")

        try:
            msg = await self.client.request(
                subject, payload, timeout=self.settings.request_timeout
            )
        except NatsTimeoutError:
            raise TaskTimeoutError(
                f"No reply for task {request.task_id} within "
                f"{self.settings.request_timeout}s on {subject}"
            ) from None
        except NoRespondersError:
            raise RemoteTaskError(f"No workers listening on {subject}") from None

        return TaskResult.from_json(msg.data.decode())
