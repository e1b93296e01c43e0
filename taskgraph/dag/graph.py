"""
Task Graph

Directed acyclic graph of tasks with sequential ids.
An edge (i, j) means task j consumes the output of task i, and always i < j.
"""

from typing import List, Dict, Set, Tuple, Iterator, Any, Optional, Callable, Union
import logging

from .node import TaskNode, TaskState

logger = logging.getLogger(__name__)


class TaskGraph:
    """
    Dynamic task graph: V = {1..n}, E ⊆ {(i, j) | i < j}.

    Task ids are handed out sequentially, and a task may only depend on
    tasks that already exist. Every edge therefore points from a lower id
    to a higher one, and the graph cannot contain a cycle. The ascending
    id order is always a valid topological order.

    The graph itself is not thread-safe; TaskScheduler guards it with its lock.

    Example usage:
        graph = TaskGraph()
        a = graph.add_task("a", fn)
        b = graph.add_task("b", fn, dependencies=[a.id])
        c = graph.add_task("c", fn, dependencies=[a.id])
        d = graph.add_task("d", fn, dependencies=[b.id, c.id])

        graph.independent(b.id, c.id)  # True
        graph.depends_on(d.id, a.id)   # True
        graph.levels()                 # [[1], [2, 3], [4]]
    """

    def __init__(self):
        self._nodes: Dict[int, TaskNode] = {}
        self._dependents: Dict[int, List[int]] = {}
        self._children: Dict[int, List[int]] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    def __iter__(self) -> Iterator[TaskNode]:
        return iter(self._nodes.values())

    def get(self, task_id: int) -> TaskNode:
        """
        Get a task by id.

        Raises:
            ValueError: If the task does not exist
        """
        try:
            return self._nodes[task_id]
        except KeyError:
            raise ValueError(f"Unknown task: {task_id}") from None

    def add_task(
        self,
        name: str,
        func: Union[Callable[..., Any], str],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        dependencies: Optional[List[int]] = None,
        spawned_by: Optional[int] = None,
        remote: bool = False,
        processor=None,
    ) -> TaskNode:
        """
        Add a new vertex and its incoming edges.

        Args:
            name: Display name
            func: Callable or registered function name
            args: Positional arguments
            kwargs: Keyword arguments
            dependencies: Ids of existing tasks this task consumes
            spawned_by: Id of the task whose body spawned this one
            remote: Dispatch to a distributed worker
            processor: Optional processor pin

        Returns:
            The new TaskNode (id = previous size + 1)

        Raises:
            ValueError: If a dependency or the spawning task does not exist
        """
        task_id = len(self._nodes) + 1

        if spawned_by is not None and spawned_by not in self._nodes:
            raise ValueError(f"Unknown spawning task: {spawned_by}")

        node = TaskNode(
            id=task_id,
            name=name,
            func=func,
            args=tuple(args),
            kwargs=dict(kwargs or {}),
            spawned_by=spawned_by,
            remote=remote,
            processor=processor,
        )
        # Validate before mutating so a bad dependency leaves the graph untouched
        for dep in dependencies or []:
            if dep not in self._nodes:
                raise ValueError(f"Task '{name}' depends on unknown task: {dep}")

        self._nodes[task_id] = node
        self._dependents[task_id] = []
        self._children[task_id] = []
        if spawned_by is not None:
            self._children[spawned_by].append(task_id)

        for dep in dependencies or []:
            self.add_edge(dep, task_id)

        logger.debug(
            f"Added task {task_id} '{name}' deps={node.dependencies} "
            f"spawned_by={spawned_by}"
        )
        return node

    def add_edge(self, i: int, j: int) -> None:
        """
        Add dependency edge (i, j): task j consumes the output of task i.

        Duplicate edges are ignored.

        Raises:
            ValueError: If either task is unknown or i >= j
        """
        if i not in self._nodes or j not in self._nodes:
            raise ValueError(f"Edge ({i}, {j}) references an unknown task")
        if i >= j:
            raise ValueError(f"Invalid edge ({i}, {j}): edges must satisfy i < j")

        target = self._nodes[j]
        if i in target.dependencies:
            return
        target.dependencies.append(i)
        self._dependents[i].append(j)

    @property
    def edges(self) -> List[Tuple[int, int]]:
        """All edges (i, j), ordered by j then by dependency order"""
        return [(i, node.id) for node in self._nodes.values() for i in node.dependencies]

    def dependencies(self, task_id: int) -> List[int]:
        """Direct dependencies of a task"""
        return list(self.get(task_id).dependencies)

    def dependents(self, task_id: int) -> List[int]:
        """Tasks that directly consume this task's output"""
        self.get(task_id)
        return list(self._dependents[task_id])

    def children(self, task_id: int) -> List[int]:
        """Tasks spawned from inside this task's body"""
        self.get(task_id)
        return list(self._children[task_id])

    def depends_on(self, j: int, i: int) -> bool:
        """
        Check whether task j depends on task i (a directed path i -> j exists).

        Ids grow along every edge, so the search never visits ids above j.
        """
        self.get(i)
        self.get(j)
        if i >= j:
            return False

        stack = [i]
        seen = {i}
        while stack:
            current = stack.pop()
            for nxt in self._dependents[current]:
                if nxt == j:
                    return True
                if nxt < j and nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return False

    def independent(self, i: int, j: int) -> bool:
        """Two distinct tasks are independent if no path connects them"""
        if i == j:
            self.get(i)
            return False
        return not self.depends_on(j, i) and not self.depends_on(i, j)

    def transitive_dependents(self, task_id: int) -> Set[int]:
        """
        Get all transitive dependents of a task (downstream tasks).

        Args:
            task_id: Task identifier

        Returns:
            Set of all task ids that transitively depend on this task
        """
        self.get(task_id)
        transitive: Set[int] = set()
        stack = [task_id]
        while stack:
            for dep in self._dependents[stack.pop()]:
                if dep not in transitive:
                    transitive.add(dep)
                    stack.append(dep)
        return transitive

    def topo_order(self) -> List[int]:
        """Ascending ids: dependencies always come before dependents"""
        return sorted(self._nodes)

    def levels(self) -> List[List[int]]:
        """
        Group tasks into levels of pairwise independent tasks.

        level(j) is 0 without dependencies, else 1 + the highest level
        among its dependencies. Two tasks on one level cannot be connected
        by a path, so each level could run fully in parallel.
        """
        level: Dict[int, int] = {}
        for task_id in self.topo_order():
            deps = self._nodes[task_id].dependencies
            level[task_id] = 1 + max(level[d] for d in deps) if deps else 0

        grouped: List[List[int]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for task_id, lvl in level.items():
            grouped[lvl].append(task_id)
        return grouped

    @property
    def is_complete(self) -> bool:
        """True once every task is FINISHED or FAILED"""
        return all(node.state.is_terminal for node in self._nodes.values())

    def counts(self) -> Dict[str, int]:
        """Number of tasks per state"""
        result = {state.value: 0 for state in TaskState}
        for node in self._nodes.values():
            result[node.state.value] += 1
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the graph"""
        return {
            "tasks": [node.to_dict() for node in self._nodes.values()],
            "edges": [list(edge) for edge in self.edges],
            "levels": self.levels(),
            "counts": self.counts(),
            "complete": self.is_complete,
        }
