"""Tests for taskgraph.runtime.pipeline and the taskgraph-run entry point."""

import json

import pytest

from taskgraph.dag.builder import GraphBuilder
from taskgraph.dag.node import TaskDef
from taskgraph.runtime.pipeline import collect_results, run_pipeline


@pytest.fixture
def etl_registry(registry):
    registry.register("etl.load", lambda n: list(range(n)))
    registry.register("etl.double", lambda values: [v * 2 for v in values])
    registry.register("etl.total", lambda values, start=0: start + sum(values))
    registry.register("etl.merge", lambda a, b, sep="-": f"{a}{sep}{b}")
    return registry


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_dependency_results_passed_first(self, context, etl_registry):
        builder = GraphBuilder([
            TaskDef(id="total", function="etl.total", depends_on=["double"], kwargs={"start": 100}),
            TaskDef(id="double", function="etl.double", depends_on=["load"]),
            TaskDef(id="load", function="etl.load", args=[4]),
        ])

        thunks = run_pipeline(context, builder)

        assert thunks["load"].fetch(timeout=5) == [0, 1, 2, 3]
        assert thunks["double"].fetch(timeout=5) == [0, 2, 4, 6]
        assert thunks["total"].fetch(timeout=5) == 112

    def test_spawn_order_gives_increasing_ids(self, context, etl_registry):
        builder = GraphBuilder([
            TaskDef(id="total", function="etl.total", depends_on=["load"]),
            TaskDef(id="load", function="etl.load", args=[3]),
        ])

        thunks = run_pipeline(context, builder)

        assert thunks["load"].task_id < thunks["total"].task_id
        assert context.graph.edges == [(thunks["load"].task_id, thunks["total"].task_id)]
        assert context.graph.get(thunks["total"].task_id).name == "total"

    def test_depends_on_order_preserved(self, context, etl_registry):
        builder = GraphBuilder([
            TaskDef(id="a", function="etl.total", args=[[1]]),
            TaskDef(id="b", function="etl.total", args=[[2]]),
            TaskDef(id="ab", function="etl.merge", depends_on=["b", "a"], kwargs={"sep": "+"}),
        ])

        assert run_pipeline(context, builder)["ab"].fetch(timeout=5) == "2+1"

    def test_cycle_rejected_before_spawning(self, context, etl_registry):
        builder = GraphBuilder([
            TaskDef(id="a", function="etl.total", depends_on=["b"]),
            TaskDef(id="b", function="etl.total", depends_on=["a"]),
        ])

        with pytest.raises(ValueError, match="Cycle detected"):
            run_pipeline(context, builder)
        assert len(context.graph) == 0

    def test_collect_results_records_failures(self, context, etl_registry):
        etl_registry.register("etl.explode", lambda values: 1 / 0)
        builder = GraphBuilder([
            TaskDef(id="load", function="etl.load", args=[2]),
            TaskDef(id="explode", function="etl.explode", depends_on=["load"]),
            TaskDef(id="after", function="etl.total", depends_on=["explode"]),
        ])

        results = collect_results(run_pipeline(context, builder), timeout=5)

        assert results["load"] == {"ok": True, "value": [0, 1]}
        assert results["explode"]["ok"] is False
        assert "ZeroDivisionError" in results["explode"]["error"]
        assert results["after"]["ok"] is False
        assert "dependency" in results["after"]["error"]


class TestRunMain:
    """Tests for the taskgraph-run entry point."""

    def test_runs_graph_from_config(self, tmp_path, monkeypatch, capsys):
        graph_dir = tmp_path / "graphs" / "math"
        graph_dir.mkdir(parents=True)
        (graph_dir / "tasks.yaml").write_text(
            "name: math\n"
            "tasks:\n"
            "  - id: three\n"
            "    function: operator:add\n"
            "    args: [1, 2]\n"
            "  - id: nine\n"
            "    function: operator:mul\n"
            "    args: [3]\n"
            "    depends_on: [three]\n"
        )
        monkeypatch.setenv("GRAPH", "math")
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("TASKGRAPH_THREADS", "2")
        monkeypatch.setenv("TASKGRAPH_FUNCTIONS", "operator:add,operator:mul")
        monkeypatch.delenv("TASKGRAPH_REMOTE", raising=False)

        from taskgraph.runtime.main import run_main

        assert run_main() == 0
        output = json.loads(capsys.readouterr().out)
        assert output == {
            "three": {"ok": True, "value": 3},
            "nine": {"ok": True, "value": 9},
        }

    def test_missing_graph_name(self, monkeypatch):
        monkeypatch.delenv("GRAPH", raising=False)

        from taskgraph.runtime.main import run_main

        assert run_main() == 2

    def test_unknown_graph(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPH", "missing")
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))

        from taskgraph.runtime.main import run_main

        assert run_main() == 2

    def test_cyclic_graph(self, tmp_path, monkeypatch):
        graph_dir = tmp_path / "graphs" / "loop"
        graph_dir.mkdir(parents=True)
        (graph_dir / "tasks.yaml").write_text(
            "name: loop\n"
            "tasks:\n"
            "  - id: a\n"
            "    function: operator:add\n"
            "    depends_on: [b]\n"
            "  - id: b\n"
            "    function: operator:add\n"
            "    depends_on: [a]\n"
        )
        monkeypatch.setenv("GRAPH", "loop")
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))

        from taskgraph.runtime.main import run_main

        assert run_main() == 2

    def test_unregistered_function(self, tmp_path, monkeypatch):
        graph_dir = tmp_path / "graphs" / "typo"
        graph_dir.mkdir(parents=True)
        (graph_dir / "tasks.yaml").write_text(
            "name: typo\n"
            "tasks:\n"
            "  - id: a\n"
            "    function: operator:nothing_here\n"
        )
        monkeypatch.setenv("GRAPH", "typo")
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("TASKGRAPH_THREADS", "1")
        monkeypatch.delenv("TASKGRAPH_FUNCTIONS", raising=False)
        monkeypatch.delenv("TASKGRAPH_REMOTE", raising=False)

        from taskgraph.runtime.main import run_main

        assert run_main() == 2
