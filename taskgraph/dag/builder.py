"""
Graph Builder

Builds and validates task graphs from declarative task definitions.
Performs cycle detection and computes topological execution order.
"""

from typing import List, Dict, Set
import heapq
import logging

from .node import TaskDef

logger = logging.getLogger(__name__)


class GraphBuilder:
    """
    Builds and validates a graph from named task definitions.

    Named definitions can reference each other in any order, so unlike
    TaskGraph they can contain cycles. The builder:
    1. Constructs adjacency lists from depends_on references
    2. Validates no cycles exist (using DFS)
    3. Computes topological execution order (using Kahn's algorithm)

    Spawning the definitions in topo_order then yields ids with i < j.

    Example usage:
        task_defs = [
            TaskDef(id="load", function="etl.load"),
            TaskDef(id="clean", function="etl.clean", depends_on=["load"]),
        ]

        builder = GraphBuilder(task_defs)
        builder.build()

        print(builder.topo_order)  # ["load", "clean"]
        print(builder.adjacency)   # {"load": [], "clean": ["load"]}
    """

    def __init__(self, task_defs: List[TaskDef]):
        """
        Initialize builder with task definitions.

        Args:
            task_defs: List of task definitions to build into a graph

        Raises:
            ValueError: If two definitions share an id
        """
        self.tasks: Dict[str, TaskDef] = {}
        for task_def in task_defs:
            if task_def.id in self.tasks:
                raise ValueError(f"Duplicate task id: {task_def.id}")
            self.tasks[task_def.id] = task_def

        self.adjacency: Dict[str, List[str]] = {}
        self.reverse_deps: Dict[str, Set[str]] = {}
        self.topo_order: List[str] = []

        logger.info(f"Initialized GraphBuilder with {len(self.tasks)} tasks")

    def build(self) -> None:
        """
        Build graph: construct adjacency lists, validate, compute order.

        Raises:
            ValueError: If the graph contains cycles or unknown dependencies
        """
        logger.info("Building task graph...")
        self._build_adjacency()
        self._validate_no_cycles()
        self._compute_topo_order()
        logger.info(
            f"Task graph built successfully: {len(self.tasks)} tasks, "
            f"topological order: {self.topo_order}"
        )

    def _build_adjacency(self) -> None:
        """
        Build dependency lists from depends_on.

        Adjacency format: {task_id: [tasks it depends on]}
        Reverse deps format: {task_id: set of tasks that depend on it}
        """
        self.adjacency = {}
        self.reverse_deps = {}

        for task_id, task_def in self.tasks.items():
            deps = []
            for dep in task_def.depends_on:
                if dep not in self.tasks:
                    raise ValueError(
                        f"Task '{task_id}' depends on unknown task: '{dep}'"
                    )
                if dep not in deps:
                    deps.append(dep)

            self.adjacency[task_id] = deps
            for dep in deps:
                self.reverse_deps.setdefault(dep, set()).add(task_id)

        logger.debug(f"Built adjacency lists: {self.adjacency}")

    def _validate_no_cycles(self) -> None:
        """
        Detect cycles using depth-first search with a recursion stack.

        Raises:
            ValueError: If a cycle is detected
        """
        visited: Set[str] = set()
        rec_stack: Set[str] = set()

        def dfs(task_id: str, path: List[str]) -> None:
            visited.add(task_id)
            rec_stack.add(task_id)
            path.append(task_id)

            for dep in self.adjacency.get(task_id, []):
                if dep not in visited:
                    dfs(dep, path[:])
                elif dep in rec_stack:
                    cycle_start = path.index(dep)
                    cycle = path[cycle_start:] + [dep]
                    raise ValueError(
                        f"Cycle detected in task graph: {' -> '.join(cycle)}"
                    )

            rec_stack.remove(task_id)

        for task_id in self.tasks:
            if task_id not in visited:
                dfs(task_id, [])

        logger.debug("No cycles detected in task graph")

    def _compute_topo_order(self) -> None:
        """
        Compute topological sort using Kahn's algorithm.

        Among tasks whose dependencies are all ordered, the one defined
        first is always taken next, so the result is deterministic.

        Raises:
            ValueError: If not every task could be ordered
        """
        in_degree = {t: len(deps) for t, deps in self.adjacency.items()}
        position = {t: i for i, t in enumerate(self.tasks)}
        ids = list(self.tasks)

        heap = [position[t] for t in self.tasks if in_degree[t] == 0]
        heapq.heapify(heap)
        self.topo_order = []

        while heap:
            task_id = ids[heapq.heappop(heap)]
            self.topo_order.append(task_id)

            for dependent in self.reverse_deps.get(task_id, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, position[dependent])

        if len(self.topo_order) != len(self.tasks):
            missing = set(self.tasks) - set(self.topo_order)
            raise ValueError(
                f"Topological sort failed - graph contains cycle. "
                f"Unreachable tasks: {missing}"
            )

        logger.debug(f"Computed topological order: {self.topo_order}")

    def get_dependencies(self, task_id: str) -> List[str]:
        """Direct dependencies of a task"""
        return self.adjacency.get(task_id, [])

    def get_dependents(self, task_id: str) -> Set[str]:
        """Tasks that directly depend on this task"""
        return self.reverse_deps.get(task_id, set())
