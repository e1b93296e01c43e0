"""
Task Scheduler

Runs tasks on a pool of local threads as soon as their dependencies finish.
Manages the ready queue, failure propagation, and blocking result fetches.
"""

from collections import deque
from concurrent.futures import CancelledError, Future
from typing import Dict, List, Any, Optional, Tuple, Deque, Callable, Union
import logging
import threading
import time

from ..dag.graph import TaskGraph
from ..dag.node import TaskNode, TaskState
from ..dag.registry import FunctionRegistry, default_registry
from ..errors import (
    DependencyFailedError,
    RemoteTaskError,
    TaskFailedError,
    TaskGraphError,
    TaskTimeoutError,
)
from ..schemas.messages import TaskRequest, TaskResult
from .processors import Processor, ProcessorKind
from .thunk import Thunk

logger = logging.getLogger(__name__)

# Per-thread scheduling state:
#   task      -> (scheduler, task_id) of the task body running on this thread
#   processor -> (scheduler, processor) for scheduler worker threads
_current = threading.local()


def current_task() -> Optional[Tuple["TaskScheduler", int]]:
    """The (scheduler, task_id) whose body is running on this thread, if any"""
    return getattr(_current, "task", None)


class TaskScheduler:
    """
    Dynamic task scheduler.

    The scheduler:
    1. Adds each submitted task to the graph, with an edge from every thunk argument
    2. Queues a task as READY once all its dependencies are FINISHED
    3. Runs READY tasks on its worker threads (or sends them to remote workers)
    4. Fails every downstream task when a task fails

    A fetch() from inside a task body runs other ready tasks while it waits,
    so nested spawn/fetch never starves the thread pool.

    Example usage:
        graph = TaskGraph()
        scheduler = TaskScheduler(graph, num_threads=4)
        scheduler.start()

        a = scheduler.submit(load, args=("data.csv",))
        b = scheduler.submit(clean, args=(a,))
        print(scheduler.fetch(b.task_id))

        scheduler.shutdown()
    """

    def __init__(
        self,
        graph: TaskGraph,
        num_threads: int = 1,
        worker_id: str = "local",
        registry: Optional[FunctionRegistry] = None,
        remote=None,
    ):
        """
        Initialize scheduler.

        Args:
            graph: Graph to record tasks in
            num_threads: Number of local worker threads
            worker_id: Name of this process in processors and remote requests
            registry: Registry used to resolve function names
            remote: Optional RemoteDispatcher for remote tasks
        """
        if num_threads < 1:
            raise ValueError(f"num_threads must be at least 1, got {num_threads}")

        self.graph = graph
        self.worker_id = worker_id
        self.registry = registry or default_registry
        self.remote = remote
        self.owner = None  # Context that owns this scheduler, if any
        self.processors = [Processor(worker_id, i) for i in range(num_threads)]

        self._cond = threading.Condition()
        self._ready: Deque[int] = deque()
        self._waiting: Dict[int, int] = {}  # task_id -> unfinished dependency count
        self._threads: List[threading.Thread] = []
        self._running = False

        logger.info(
            f"Initialized TaskScheduler '{worker_id}' with {num_threads} threads"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker threads"""
        with self._cond:
            if self._running:
                return
            self._running = True

        for proc in self.processors:
            thread = threading.Thread(
                target=self._worker_loop,
                args=(proc,),
                name=f"taskgraph-{self.worker_id}-{proc.index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        logger.info(f"Started {len(self._threads)} worker threads for '{self.worker_id}'")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop the worker threads.

        Args:
            wait: Wait for the graph to complete first
            timeout: Limit for the wait, in seconds

        Tasks that never started are failed so no fetch() blocks forever.
        """
        if wait and self._running:
            self.wait_all(timeout=timeout)

        with self._cond:
            self._running = False
            self._cond.notify_all()

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join()
        self._threads = []

        with self._cond:
            abandoned = [
                node for node in self.graph
                if node.state in (TaskState.PENDING, TaskState.READY)
            ]
            for node in abandoned:
                self._fail(node, TaskGraphError("Scheduler shut down before task ran"))
            self._ready.clear()
            self._cond.notify_all()

        if abandoned:
            logger.warning(f"Shutdown abandoned {len(abandoned)} tasks")
        logger.info(f"Scheduler '{self.worker_id}' stopped")

    def submit(
        self,
        func: Union[Callable[..., Any], str],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        remote: bool = False,
        processor: Optional[Processor] = None,
    ) -> Thunk:
        """
        Spawn a task.

        Args:
            func: Callable, or the name of a registered function
            args: Positional arguments; thunks become dependencies
            kwargs: Keyword arguments; thunks become dependencies
            name: Display name (defaults to the function name)
            remote: Run on a remote worker
            processor: Pin the task to a processor (a remote one implies remote)

        Returns:
            Thunk for the new task

        Raises:
            ValueError: Unknown function, processor or foreign thunk
            RuntimeError: Scheduler not running, or remote execution not enabled
        """
        kwargs = dict(kwargs or {})

        if processor is not None and processor.kind is ProcessorKind.REMOTE:
            remote = True

        if remote:
            if self.remote is None:
                raise RuntimeError("Remote execution is not enabled for this scheduler")
            if not isinstance(func, str):
                registered = self.registry.name_of(func)
                if registered is None:
                    raise ValueError(
                        f"Remote tasks need a registered function, got {func!r}"
                    )
                func = registered
        else:
            if isinstance(func, str):
                self.registry.get(func)
            elif not callable(func):
                raise ValueError(f"Task function is not callable: {func!r}")
            if processor is not None and processor not in self.processors:
                raise ValueError(f"Unknown processor: {processor}")

        dependencies = self._collect_dependencies(args, kwargs)
        display_name = name or (func if isinstance(func, str) else getattr(func, "__name__", repr(func)))

        parent = current_task()
        spawned_by = parent[1] if parent is not None and parent[0] is self else None

        with self._cond:
            if not self._running:
                raise RuntimeError("Scheduler is not running")
            node = self.graph.add_task(
                name=display_name,
                func=func,
                args=tuple(args),
                kwargs=kwargs,
                dependencies=dependencies,
                spawned_by=spawned_by,
                remote=remote,
                processor=processor,
            )
            self._schedule(node)

        return Thunk(self, node.id)

    def fetch(self, task_id: int, timeout: Optional[float] = None) -> Any:
        """
        Block until a task is done and return its result.

        Args:
            task_id: Task identifier
            timeout: Seconds to wait, or None to wait forever

        Returns:
            The task's result

        Raises:
            TaskFailedError: The task failed (original error as __cause__)
            DependencyFailedError: The task never ran because a dependency failed
            TaskTimeoutError: The timeout expired first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        helper = getattr(_current, "processor", None)
        proc = helper[1] if helper is not None and helper[0] is self else None

        while True:
            with self._cond:
                node = self.graph.get(task_id)
                if node.state.is_terminal:
                    break

                helped = None
                if proc is not None:
                    ready_id = self._pop_ready(proc)
                    if ready_id is not None:
                        helped = self._start(ready_id, proc)

                if helped is None:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        raise TaskTimeoutError(
                            f"Timed out after {timeout}s waiting for task {task_id}"
                        )
                    self._cond.wait(remaining)
                    continue

            logger.debug(f"Running task {helped.id} while waiting on task {task_id}")
            self._execute(helped, proc)

        if node.state is TaskState.FAILED:
            if isinstance(node.error, DependencyFailedError):
                raise DependencyFailedError(task_id, node.error.failed_dependency)
            raise TaskFailedError(
                task_id, f"Task {task_id} '{node.name}' failed: {node.error!r}"
            ) from node.error
        return node.result

    def wait_all(self, timeout: Optional[float] = None) -> None:
        """
        Block until every task in the graph is FINISHED or FAILED.

        Raises:
            RuntimeError: Called from inside one of this scheduler's tasks
            TaskTimeoutError: The timeout expired first
        """
        parent = current_task()
        if parent is not None and parent[0] is self:
            raise RuntimeError("wait_all() cannot be called from inside a task")

        with self._cond:
            if not self._cond.wait_for(lambda: self.graph.is_complete, timeout):
                raise TaskTimeoutError(
                    f"Timed out after {timeout}s waiting for the graph to complete"
                )

    def state(self, task_id: int) -> TaskState:
        with self._cond:
            return self.graph.get(task_id).state

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of the graph for reporting"""
        with self._cond:
            return self.graph.to_dict()

    def task_info(self, task_id: int) -> Dict[str, Any]:
        with self._cond:
            return self.graph.get(task_id).to_dict()

    def _collect_dependencies(self, args: tuple, kwargs: Dict[str, Any]) -> List[int]:
        """Ids of thunks among the top-level arguments, in order, de-duplicated"""
        deps: List[int] = []
        for value in list(args) + list(kwargs.values()):
            if isinstance(value, Thunk):
                if value.scheduler is not self:
                    raise ValueError(
                        f"Thunk for task {value.task_id} belongs to another scheduler"
                    )
                if value.task_id not in deps:
                    deps.append(value.task_id)
        return deps

    def _schedule(self, node: TaskNode) -> None:
        """Queue a new task or park it until its dependencies finish (lock held)"""
        unfinished = 0
        for dep_id in node.dependencies:
            dep = self.graph.get(dep_id)
            if dep.state is TaskState.FAILED:
                self._fail(node, DependencyFailedError(node.id, self._root_failure(dep)))
                self._cond.notify_all()
                return
            if dep.state is not TaskState.FINISHED:
                unfinished += 1

        if unfinished:
            self._waiting[node.id] = unfinished
            logger.debug(f"Task {node.id} '{node.name}' waiting on {unfinished} dependencies")
        else:
            self._make_ready(node)

    def _make_ready(self, node: TaskNode) -> None:
        node.state = TaskState.READY
        self._ready.append(node.id)
        self._cond.notify_all()

    def _pop_ready(self, proc: Processor) -> Optional[int]:
        """Remove the first ready task this processor may run (lock held)"""
        for task_id in self._ready:
            pin = self.graph.get(task_id).processor
            if pin is None or pin.is_remote or pin == proc:
                self._ready.remove(task_id)
                return task_id
        return None

    def _start(self, task_id: int, proc: Processor) -> TaskNode:
        node = self.graph.get(task_id)
        node.state = TaskState.RUNNING
        node.started_at = time.time()
        if not node.remote:
            node.processor = proc
        return node

    def _worker_loop(self, proc: Processor) -> None:
        _current.processor = (self, proc)
        logger.debug(f"Worker thread {proc} started")

        while True:
            with self._cond:
                while True:
                    if not self._running:
                        logger.debug(f"Worker thread {proc} exiting")
                        return
                    task_id = self._pop_ready(proc)
                    if task_id is not None:
                        break
                    self._cond.wait()
                node = self._start(task_id, proc)

            self._execute(node, proc)

    def _execute(self, node: TaskNode, proc: Processor) -> None:
        """Run a started task outside the lock and record the outcome"""
        if node.remote:
            self._dispatch_remote(node)
            return

        previous = getattr(_current, "task", None)
        _current.task = (self, node.id)
        try:
            fn = self.registry.get(node.func) if isinstance(node.func, str) else node.func
            args, kwargs = self._resolve_arguments(node)

            logger.debug(f"Executing task {node.id} '{node.name}' on {proc}")
            result = fn(*args, **kwargs)
        except Exception as e:
            self._complete(node.id, error=e)
        else:
            self._complete(node.id, result=result)
        finally:
            _current.task = previous

    def _resolve_arguments(self, node: TaskNode) -> Tuple[tuple, Dict[str, Any]]:
        """Replace thunk arguments with their (finished) results"""
        def resolve(value):
            if isinstance(value, Thunk):
                return self.graph.get(value.task_id).result
            return value

        args = tuple(resolve(a) for a in node.args)
        kwargs = {k: resolve(v) for k, v in node.kwargs.items()}
        return args, kwargs

    def _dispatch_remote(self, node: TaskNode) -> None:
        """Send a task to a remote worker; completion arrives via callback"""
        try:
            args, kwargs = self._resolve_arguments(node)
            request = TaskRequest(
                task_id=node.id,
                function=node.func,
                args=list(args),
                kwargs=kwargs,
                origin=self.worker_id,
            )
            worker = None
            if node.processor is not None:
                # Pinned: the worker runs it on the matching local thread
                worker = node.processor.worker
                request.thread = node.processor.index
            future = self.remote.submit(request, worker=worker)
        except Exception as e:
            self._complete(node.id, error=e)
            return

        logger.debug(f"Dispatched task {node.id} '{node.name}' to remote pool")
        future.add_done_callback(lambda f: self._on_remote_done(node.id, f))

    def _on_remote_done(self, task_id: int, future: Future) -> None:
        try:
            result: TaskResult = future.result()
        except (Exception, CancelledError) as e:
            self._complete(task_id, error=e)
            return

        with self._cond:
            node = self.graph.get(task_id)
            if result.worker_id is not None:
                node.processor = Processor(
                    result.worker_id, result.thread or 0, ProcessorKind.REMOTE
                )

        if result.ok:
            self._complete(task_id, result=result.value)
        else:
            self._complete(
                task_id,
                error=RemoteTaskError(
                    result.error or "remote task failed",
                    error_type=result.error_type,
                    traceback_text=result.traceback,
                    worker_id=result.worker_id,
                ),
            )

    def _complete(
        self,
        task_id: int,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Record a task's outcome and release or fail its dependents"""
        with self._cond:
            node = self.graph.get(task_id)

            if error is None:
                node.result = result
                node.state = TaskState.FINISHED
                node.finished_at = time.time()
                logger.debug(f"Task {task_id} '{node.name}' finished in {node.duration:.4f}s")

                for dep_id in self.graph.dependents(task_id):
                    remaining = self._waiting.get(dep_id)
                    if remaining is None:
                        continue
                    if remaining == 1:
                        del self._waiting[dep_id]
                        self._make_ready(self.graph.get(dep_id))
                    else:
                        self._waiting[dep_id] = remaining - 1
            else:
                logger.error(
                    f"Failed to execute task {task_id} '{node.name}': {error}",
                    exc_info=error,
                )
                self._fail(node, error)
                self._propagate_failure(node)

            self._cond.notify_all()

    def _fail(self, node: TaskNode, error: BaseException) -> None:
        node.state = TaskState.FAILED
        node.error = error
        node.finished_at = time.time()
        self._waiting.pop(node.id, None)

    def _root_failure(self, node: TaskNode) -> int:
        if isinstance(node.error, DependencyFailedError):
            return node.error.failed_dependency
        return node.id

    def _propagate_failure(self, node: TaskNode) -> None:
        """Fail every not-yet-started downstream task (lock held)"""
        root = self._root_failure(node)
        failed = 0
        for dep_id in sorted(self.graph.transitive_dependents(node.id)):
            dependent = self.graph.get(dep_id)
            if dependent.state is TaskState.PENDING:
                self._fail(dependent, DependencyFailedError(dep_id, root))
                failed += 1

        if failed:
            logger.warning(f"Task {node.id} failure cancelled {failed} downstream tasks")
