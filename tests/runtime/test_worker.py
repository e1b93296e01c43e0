"""Tests for taskgraph.runtime.worker module."""

import asyncio
import json
import time

import pytest

import taskgraph
from taskgraph.adapters.nats_client import Topics
from taskgraph.config.loader import RemoteSettings, SchedulerSettings
from taskgraph.runtime.worker import TaskWorker
from taskgraph.schemas.messages import TaskRequest, TaskResult, WorkerHeartbeat


@pytest.fixture
def worker(fake_nats, registry):
    registry.register("math.square", lambda x: x * x)
    registry.register("math.fail", lambda: 1 / 0)
    registry.register("math.opaque", lambda: object())

    def fan_out(n):
        children = [taskgraph.spawn(lambda i=i: i * 10) for i in range(n)]
        return [child.fetch() for child in children]

    registry.register("math.fan_out", fan_out)

    settings = SchedulerSettings(
        worker_id="w1",
        threads=2,
        remote=RemoteSettings(pool="gpu", heartbeat_interval=0.05),
    )
    w = TaskWorker(fake_nats, settings, registry=registry)
    yield w
    w.context.close(wait=False)


class TestTaskWorker:
    """Tests for TaskWorker."""

    def test_execute_success(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=7, function="math.square", args=[9])))

        assert result.ok
        assert result.task_id == 7
        assert result.value == 81
        assert result.worker_id == "w1"
        assert result.thread in (0, 1)
        assert result.duration >= 0

    def test_execute_task_error(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=3, function="math.fail")))

        assert not result.ok
        assert result.error_type == "ZeroDivisionError"
        assert "ZeroDivisionError" in result.traceback
        assert worker.get_metrics()["failed"] == 1

    def test_execute_unknown_function(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=4, function="nope")))

        assert not result.ok
        assert result.error_type == "ValueError"
        assert "Unknown task function" in result.error

    def test_execute_non_json_result(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=5, function="math.opaque")))

        assert not result.ok
        assert result.error_type == "TypeError"

    def test_nested_spawns_stay_on_worker(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=1, function="math.fan_out", args=[3])))

        assert result.value == [0, 10, 20]
        assert len(worker.context.graph) == 4
        assert worker.context.graph.children(1) == [2, 3, 4]

    def test_handle_request_replies(self, worker, fake_msg):
        request = TaskRequest(task_id=11, function="math.square", args=[4], origin="main")
        msg = fake_msg(request.to_json().encode())

        asyncio.run(worker.serve_request(msg))

        reply = TaskResult.from_json(msg.response.decode())
        assert reply.ok
        assert reply.value == 16
        assert worker.context.graph.get(1).name == "math.square@main#11"

    def test_handle_malformed_request(self, worker, fake_msg):
        msg = fake_msg(b"not json")

        asyncio.run(worker.serve_request(msg))

        reply = TaskResult.from_json(msg.response.decode())
        assert not reply.ok
        assert reply.task_id == 0

    def test_start_subscribes_and_announces(self, worker, fake_nats):
        async def run():
            await worker.start()
            await asyncio.sleep(0.12)
            await worker.stop()

        asyncio.run(run())

        assert fake_nats.subscriptions["taskgraph.tasks.gpu"].queue == "workers-gpu"
        assert "taskgraph.tasks.gpu.worker.w1" in fake_nats.subscriptions

        subjects = {subject for subject, _ in fake_nats.published}
        assert subjects == {"taskgraph.heartbeat.gpu"}
        assert len(fake_nats.published) >= 2

        heartbeat = WorkerHeartbeat.from_json(fake_nats.published[0][1])
        assert heartbeat.worker_id == "w1"
        assert heartbeat.threads == 2
        assert worker.context.closed

    def test_metrics(self, worker):
        asyncio.run(worker.execute(TaskRequest(task_id=1, function="math.square", args=[2])))
        metrics = worker.get_metrics()

        assert metrics["served"] == 1
        assert metrics["failed"] == 0
        assert metrics["tasks"]["finished"] == 1
        json.dumps(metrics)

    def test_execute_on_pinned_thread(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=2, function="math.square", args=[3], thread=1)))

        assert result.ok
        assert result.thread == 1

    def test_execute_on_unknown_thread(self, worker):
        result = asyncio.run(worker.execute(TaskRequest(task_id=2, function="math.square", args=[3], thread=5)))

        assert not result.ok
        assert "Unknown processor" in result.error

    def test_handle_request_returns_before_task_finishes(self, worker, fake_msg, registry):
        registry.register("math.slow", lambda: time.sleep(0.3) or "done")
        msg = fake_msg(TaskRequest(task_id=1, function="math.slow").to_json().encode())

        async def run():
            await worker.handle_request(msg)
            assert msg.response is None
            assert await worker.drain() == 0

        asyncio.run(run())

        assert TaskResult.from_json(msg.response.decode()).value == "done"

    def test_drain_cancels_after_timeout(self, worker, fake_msg, registry):
        registry.register("math.slow", lambda: time.sleep(0.5))
        msg = fake_msg(TaskRequest(task_id=1, function="math.slow").to_json().encode())

        async def run():
            await worker.handle_request(msg)
            return await worker.drain(timeout=0.05)

        assert asyncio.run(run()) == 1
        assert msg.response is None


class TestWorkerConcurrency:
    """Requests delivered one after another must still run side by side."""

    def test_pool_requests_run_concurrently(self, fake_nats, registry):
        registry.register("math.slow", lambda n: time.sleep(0.5) or n)
        settings = SchedulerSettings(
            worker_id="w4",
            threads=4,
            remote=RemoteSettings(pool="cpu", heartbeat_interval=5),
        )
        worker = TaskWorker(fake_nats, settings, registry=registry)

        async def run():
            await worker.start()
            started = time.monotonic()
            replies = await asyncio.gather(*[
                fake_nats.request(
                    Topics.tasks("cpu"),
                    TaskRequest(task_id=i, function="math.slow", args=[i]).to_json().encode(),
                    timeout=5,
                )
                for i in range(1, 5)
            ])
            elapsed = time.monotonic() - started
            await worker.stop()
            return replies, elapsed

        replies, elapsed = asyncio.run(run())

        results = [TaskResult.from_json(reply.data.decode()) for reply in replies]
        assert [r.value for r in results] == [1, 2, 3, 4]
        assert elapsed < 1.2
