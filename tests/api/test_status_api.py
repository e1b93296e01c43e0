"""Tests for taskgraph.api.main module."""

import operator

from fastapi.testclient import TestClient
import pytest

from taskgraph.api.main import create_app
from taskgraph.errors import TaskFailedError


def fail():
    raise RuntimeError("nope")


@pytest.fixture
def client(context):
    a = context.spawn(operator.add, 1, 1)
    b = context.spawn(operator.mul, a, 3)
    c = context.spawn(operator.mul, a, 4)
    context.spawn(operator.add, b, c).fetch(timeout=5)
    with pytest.raises(TaskFailedError):
        context.spawn(fail).fetch(timeout=5)
    return TestClient(create_app(context))


class TestStatusAPI:
    """Tests for the status endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "taskgraph-status"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["tasks"]["finished"] == 4
        assert body["tasks"]["failed"] == 1
        assert body["complete"] is True

    def test_list_tasks(self, client):
        body = client.get("/tasks").json()
        assert body["count"] == 5
        assert [t["id"] for t in body["tasks"]] == [1, 2, 3, 4, 5]
        assert body["tasks"][3]["dependencies"] == [2, 3]

    def test_filter_by_state(self, client):
        body = client.get("/tasks", params={"state": "failed"}).json()
        assert body["count"] == 1
        assert body["tasks"][0]["name"] == "fail"
        assert "nope" in body["tasks"][0]["error"]

    def test_invalid_state(self, client):
        response = client.get("/tasks", params={"state": "sleeping"})
        assert response.status_code == 400

    def test_get_task(self, client):
        body = client.get("/tasks/2").json()
        assert body["name"] == "mul"
        assert body["state"] == "finished"
        assert body["processor"].startswith("thread:local/")

    def test_unknown_task(self, client):
        assert client.get("/tasks/99").status_code == 404

    def test_graph(self, client):
        body = client.get("/graph").json()
        assert body["edges"] == [[1, 2], [1, 3], [2, 4], [3, 4]]
        assert body["levels"] == [[1, 5], [2, 3], [4]]

    def test_processors(self, client):
        body = client.get("/processors").json()
        assert len(body) == 4
        assert body[0] == {"worker": "local", "index": 0, "kind": "thread"}


class TestStatusEntryPoint:
    """Tests for serve() and the taskgraph-status entry point."""

    def test_serve_reads_host_and_port(self, context, monkeypatch):
        import taskgraph.api.main as api_main

        calls = []
        monkeypatch.setattr(api_main.uvicorn, "run", lambda app, host, port: calls.append((app, host, port)))
        monkeypatch.setenv("HOST", "127.0.0.1")
        monkeypatch.setenv("PORT", "9100")

        api_main.serve(context)

        app, host, port = calls[0]
        assert (host, port) == ("127.0.0.1", 9100)
        assert TestClient(app).get("/").json()["service"] == "taskgraph-status"

    def test_main_serves_default_context(self, make_context, monkeypatch):
        import taskgraph.api.main as api_main
        from taskgraph.runtime.context import set_context

        ctx = make_context(threads=3)
        previous = set_context(ctx)
        served = []
        monkeypatch.setattr(
            api_main.uvicorn, "run",
            lambda app, host, port: served.append(TestClient(app).get("/processors").json()),
        )
        try:
            api_main.main()
        finally:
            set_context(previous)

        assert len(served[0]) == 3
        assert ctx.closed
