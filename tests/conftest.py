"""Pytest configuration and fixtures."""

import asyncio

from nats.errors import NoRespondersError, TimeoutError as NatsTimeoutError
import pytest

from taskgraph.config.loader import SchedulerSettings
from taskgraph.dag.registry import FunctionRegistry
from taskgraph.runtime.context import Context


class FakeMsg:
    """Stand-in for nats.aio.msg.Msg"""

    def __init__(self, data: bytes, subject: str = ""):
        self.data = data
        self.subject = subject
        self.response = None
        self._replied = None

    async def respond(self, data: bytes) -> None:
        self.response = data
        if self._replied is not None:
            self._replied.set()


class FakeSubscription:
    """
    Delivers messages to its callback one at a time.

    Like nats-py's Subscription._wait_for_msgs, the next message is only
    handed over once the callback for the previous one has returned.
    """

    def __init__(self, callback, queue=None):
        self.callback = callback
        self.queue = queue
        self._loop = None
        self._pending = None
        self._task = None

    def deliver(self, msg: FakeMsg) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._pending = asyncio.Queue()
            self._task = loop.create_task(self._wait_for_msgs())
        self._pending.put_nowait(msg)

    async def _wait_for_msgs(self) -> None:
        while True:
            msg = await self._pending.get()
            await self.callback(msg)


class FakeNatsClient:
    """In-memory NATS client routing request() through per-subject subscriptions"""

    def __init__(self):
        self.connected = False
        self.subscriptions = {}
        self.published = []
        self.requests = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def subscribe(self, subject, callback, queue=None) -> None:
        self.subscriptions[subject] = FakeSubscription(callback, queue)

    async def publish_json(self, subject, data) -> None:
        self.published.append((subject, data))

    async def request(self, subject, data, timeout=5.0):
        self.requests.append((subject, data))
        if subject not in self.subscriptions:
            raise NoRespondersError
        msg = FakeMsg(data, subject)
        msg._replied = asyncio.Event()
        self.subscriptions[subject].deliver(msg)
        try:
            await asyncio.wait_for(msg._replied.wait(), timeout)
        except asyncio.TimeoutError:
            raise NatsTimeoutError from None
        return FakeMsg(msg.response, subject)


@pytest.fixture
def fake_msg():
    return FakeMsg


@pytest.fixture
def fake_nats():
    return FakeNatsClient()


@pytest.fixture
def registry():
    """Fresh registry so tests don't leak registrations"""
    return FunctionRegistry()


@pytest.fixture
def context(registry):
    """Local context with four threads"""
    ctx = Context(SchedulerSettings(threads=4), registry=registry)
    yield ctx
    ctx.close(wait=False)


@pytest.fixture
def make_context(registry):
    """Factory for contexts with custom settings, closed after the test"""
    created = []

    def factory(threads: int = 2, **kwargs) -> Context:
        ctx = Context(SchedulerSettings(threads=threads), registry=kwargs.pop("registry", registry), **kwargs)
        created.append(ctx)
        return ctx

    yield factory

    for ctx in created:
        ctx.close(wait=False)
