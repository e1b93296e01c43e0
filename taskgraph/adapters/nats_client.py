"""
NATS Client Adapter

Async NATS client used to reach remote workers: task requests go out as
request/reply messages, workers announce themselves with heartbeats.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Optional, Awaitable, Any, Dict, List

import nats
from nats.aio.client import Client as NatsConnection
from nats.aio.msg import Msg

logger = logging.getLogger(__name__)


@dataclass
class NatsConfig:
    """NATS connection configuration"""
    servers: List[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    name: str = "taskgraph"
    reconnect_time_wait: float = 2.0
    max_reconnect_attempts: int = -1  # Infinite reconnects
    ping_interval: int = 20
    max_outstanding_pings: int = 3

    @classmethod
    def from_env(cls, prefix: str = "NATS", name: str = "taskgraph") -> "NatsConfig":
        """Create config from environment variables"""
        servers = os.getenv(f"{prefix}_SERVERS", "nats://localhost:4222")
        return cls(
            servers=[s.strip() for s in servers.split(",") if s.strip()],
            name=os.getenv(f"{prefix}_CLIENT_NAME", name),
        )


class NatsClient:
    """
    Async NATS client wrapper.

    Subject Patterns:
    - taskgraph.tasks.{pool}                - Task requests (queue group per pool)
    - taskgraph.tasks.{pool}.worker.{id}    - Task requests pinned to one worker
    - taskgraph.heartbeat.{pool}            - Worker heartbeats
    """

    def __init__(self, config: Optional[NatsConfig] = None):
        self.config = config or NatsConfig()
        self._nc: Optional[NatsConnection] = None
        self._subscriptions: Dict[str, Any] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if client is connected"""
        return self._connected and self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        """Establish connection to NATS server"""
        if self._connected:
            return

        async def error_handler(e):
            logger.error(f"NATS error: {e}")

        async def closed_handler():
            logger.warning("NATS connection closed")
            self._connected = False

        async def reconnected_handler():
            logger.info("NATS reconnected")
            self._connected = True

        async def disconnected_handler():
            logger.warning("NATS disconnected")
            self._connected = False

        try:
            self._nc = await nats.connect(
                servers=self.config.servers,
                name=self.config.name,
                reconnect_time_wait=self.config.reconnect_time_wait,
                max_reconnect_attempts=self.config.max_reconnect_attempts,
                ping_interval=self.config.ping_interval,
                max_outstanding_pings=self.config.max_outstanding_pings,
                error_cb=error_handler,
                closed_cb=closed_handler,
                reconnected_cb=reconnected_handler,
                disconnected_cb=disconnected_handler,
            )
            self._connected = True
            logger.info(f"Connected to NATS: {self.config.servers}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def close(self) -> None:
        """Drain subscriptions and close the connection"""
        if self._nc:
            await self._nc.drain()
            await self._nc.close()
            self._connected = False
            self._subscriptions.clear()
            logger.info("NATS connection closed")

    async def publish(self, subject: str, data: bytes) -> None:
        """
        Publish data to a NATS subject.

        Args:
            subject: NATS subject (e.g., "taskgraph.heartbeat.default")
            data: Bytes payload (typically JSON)
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")
        await self._nc.publish(subject, data)
        logger.debug(f"Published to {subject}: {len(data)} bytes")

    async def publish_json(self, subject: str, data: str) -> None:
        """Publish a JSON string to a NATS subject"""
        await self.publish(subject, data.encode("utf-8"))

    async def subscribe(
        self,
        subject: str,
        callback: Callable[[Msg], Awaitable[None]],
        queue: Optional[str] = None,
    ) -> None:
        """
        Subscribe to a NATS subject.

        Args:
            subject: NATS subject pattern (supports wildcards: *, >)
            callback: Async callback for received messages
            queue: Optional queue group; each message goes to one member
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")

        if queue:
            sub = await self._nc.subscribe(subject, queue=queue, cb=callback)
        else:
            sub = await self._nc.subscribe(subject, cb=callback)

        self._subscriptions[subject] = sub
        logger.info(f"Subscribed to {subject}" + (f" (queue: {queue})" if queue else ""))

    async def unsubscribe(self, subject: str) -> None:
        """Unsubscribe from a subject"""
        if subject in self._subscriptions:
            await self._subscriptions[subject].unsubscribe()
            del self._subscriptions[subject]
            logger.info(f"Unsubscribed from {subject}")

    async def request(
        self, subject: str, data: bytes, timeout: float = 5.0
    ) -> Msg:
        """
        Send a request and wait for the single reply.

        Raises:
            nats.errors.TimeoutError: No reply within timeout
            nats.errors.NoRespondersError: Nobody subscribed to subject
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")
        return await self._nc.request(subject, data, timeout=timeout)


class Topics:
    """NATS subject name builders"""

    PREFIX = "taskgraph"

    @staticmethod
    def _sanitize(name: str) -> str:
        """
        Sanitize a name for use as a single NATS subject token.

        Only alphanumeric characters, hyphens and underscores are kept;
        anything else (dots, spaces, wildcards) becomes an underscore.
        """
        return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)

    @staticmethod
    def tasks(pool: str) -> str:
        """Shared task request subject for a worker pool"""
        return f"{Topics.PREFIX}.tasks.{Topics._sanitize(pool)}"

    @staticmethod
    def worker_tasks(pool: str, worker_id: str) -> str:
        """Task requests addressed to one worker"""
        return f"{Topics.tasks(pool)}.worker.{Topics._sanitize(worker_id)}"

    @staticmethod
    def heartbeat(pool: str) -> str:
        """Worker heartbeat subject for a pool"""
        return f"{Topics.PREFIX}.heartbeat.{Topics._sanitize(pool)}"

    @staticmethod
    def queue_group(pool: str) -> str:
        """Queue group shared by all workers of a pool"""
        return f"workers-{Topics._sanitize(pool)}"
