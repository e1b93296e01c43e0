"""
Execution Context

User-facing entry point: spawn tasks, fetch results, list processors.
"""

import atexit
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..config.loader import ConfigLoader, SchedulerSettings
from ..dag.graph import TaskGraph
from ..dag.registry import FunctionRegistry, default_registry
from ..scheduler.executor import TaskScheduler, current_task
from ..scheduler.processors import Processor
from ..scheduler.thunk import Thunk
from .remote import RemoteDispatcher

logger = logging.getLogger(__name__)


class Context:
    """
    An execution context: one task graph, one scheduler, optional remote pool.

    The context starts running as soon as it is created. Closing it waits
    for every spawned task (including nested ones) to finish.

    Example usage:
        with Context(SchedulerSettings(threads=4)) as ctx:
            print(ctx.procs())

            a = ctx.spawn(load, "data.csv")
            b = ctx.spawn(summarize, a)
            c = ctx.spawn(plot, a)        # b and c are independent
            print(ctx.fetch(b), ctx.fetch(c))
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        registry: Optional[FunctionRegistry] = None,
        remote: Optional[RemoteDispatcher] = None,
    ):
        """
        Create and start a context.

        Args:
            settings: Thread count, worker id, remote pool settings
            registry: Function registry (defaults to the process-wide one)
            remote: Dispatcher to use instead of one built from settings.remote
        """
        self.settings = settings or SchedulerSettings()
        self.registry = registry or default_registry

        for path in self.settings.functions:
            if not self.registry.is_registered(path):
                self.registry.import_path(path)

        if remote is None and self.settings.remote.enabled:
            remote = RemoteDispatcher(self.settings.remote)
        self.remote = remote

        self.graph = TaskGraph()
        self.scheduler = TaskScheduler(
            self.graph,
            num_threads=self.settings.threads,
            worker_id=self.settings.worker_id,
            registry=self.registry,
            remote=self.remote,
        )
        self.scheduler.owner = self
        self._closed = False

        if self.remote is not None and not self.remote.is_running:
            self.remote.start()
        self.scheduler.start()

        logger.info(
            f"Context '{self.settings.worker_id}' started: "
            f"{self.settings.threads} threads, remote={'on' if self.remote else 'off'}"
        )

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(wait=exc_type is None)

    @property
    def closed(self) -> bool:
        return self._closed

    def procs(self) -> List[Processor]:
        """Local thread processors followed by live remote worker processors"""
        processors = list(self.scheduler.processors)
        if self.remote is not None:
            processors.extend(self.remote.processors())
        return processors

    def spawn(self, fn: Union[Callable[..., Any], str], *args, **kwargs) -> Thunk:
        """
        Spawn fn(*args, **kwargs) as a task.

        Thunks among the arguments become dependencies and are replaced by
        their results before fn is called.
        """
        return self.submit(fn, args=args, kwargs=kwargs)

    def submit(
        self,
        fn: Union[Callable[..., Any], str],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        *,
        name: Optional[str] = None,
        remote: bool = False,
        processor: Optional[Processor] = None,
    ) -> Thunk:
        """Spawn with explicit options (see TaskScheduler.submit)"""
        return self.scheduler.submit(
            fn, args=args, kwargs=kwargs, name=name, remote=remote, processor=processor
        )

    def fetch(self, thunk: Thunk, timeout: Optional[float] = None) -> Any:
        """
        Block until the task is done and return its result.

        Raises:
            ValueError: If the thunk belongs to another context
            TaskFailedError: If the task failed
            TaskTimeoutError: If the timeout expired
        """
        if thunk.scheduler is not self.scheduler:
            raise ValueError(f"Thunk for task {thunk.task_id} belongs to another context")
        return thunk.fetch(timeout=timeout)

    def wait_all(self, timeout: Optional[float] = None) -> None:
        """Block until every task, including ones spawned later by running tasks, is done"""
        self.scheduler.wait_all(timeout=timeout)

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of the graph: tasks, edges, levels, counts"""
        return self.scheduler.snapshot()

    def close(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop the context.

        Args:
            wait: Let all spawned tasks finish first
            timeout: Limit for the wait, in seconds
        """
        if self._closed:
            return
        self._closed = True

        try:
            self.scheduler.shutdown(wait=wait, timeout=timeout)
        finally:
            if self.remote is not None:
                self.remote.stop()

        logger.info(f"Context '{self.settings.worker_id}' closed")


_default: Optional[Context] = None
_default_lock = threading.Lock()


def get_context() -> Context:
    """
    The context to spawn into.

    Inside a task body this is the context running the task, so nested
    spawns land in the same graph. Elsewhere it is the process default,
    created on first use from the settings in $CONFIG_DIR (default "config").
    """
    running = current_task()
    if running is not None and running[0].owner is not None:
        return running[0].owner

    global _default
    with _default_lock:
        if _default is None or _default.closed:
            config_dir = Path(os.getenv("CONFIG_DIR", "config"))
            _default = Context(ConfigLoader(config_dir).load_settings())
        return _default


def set_context(context: Optional[Context]) -> Optional[Context]:
    """Replace the process default context; returns the previous one"""
    global _default
    with _default_lock:
        previous, _default = _default, context
    return previous


def spawn(fn: Union[Callable[..., Any], str], *args, **kwargs) -> Thunk:
    """Spawn a task in the current context"""
    return get_context().spawn(fn, *args, **kwargs)


def fetch(thunk: Thunk, timeout: Optional[float] = None) -> Any:
    """Block until the task behind thunk is done and return its result"""
    return thunk.fetch(timeout=timeout)


def procs() -> List[Processor]:
    """Processors of the current context"""
    return get_context().procs()


@atexit.register
def _close_default() -> None:
    if _default is not None and not _default.closed:
        _default.close(wait=False)
