"""
Function Registry

Registry of named task functions.
Config-driven graphs and remote workers refer to task functions by name.
"""

from typing import Dict, Callable, Any, List, Optional
import importlib
import logging

logger = logging.getLogger(__name__)


class FunctionRegistry:
    """
    Registry of task functions by name.

    Example usage:
        registry = FunctionRegistry()

        @registry.function("math.square")
        def square(x):
            return x * x

        registry.register("math.add", operator.add)
        registry.import_path("mypkg.tasks:train")

        fn = registry.get("math.square")
    """

    def __init__(self):
        """Initialize empty registry"""
        self._functions: Dict[str, Callable[..., Any]] = {}
        logger.debug("Initialized FunctionRegistry")

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        """
        Register a task function.

        Args:
            name: Name used in configs and remote requests (e.g., "etl.load")
            fn: The callable to run
        """
        if not callable(fn):
            raise ValueError(f"Cannot register non-callable for '{name}': {fn!r}")

        if name in self._functions:
            logger.warning(f"Overwriting existing registration for function: {name}")

        self._functions[name] = fn
        logger.info(f"Registered task function: {name}")

    def function(self, name: Optional[str] = None) -> Callable:
        """
        Decorator form of register().

        Args:
            name: Registered name, defaults to "<module>.<qualname>"
        """
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(name or f"{fn.__module__}.{fn.__qualname__}", fn)
            return fn

        return decorator

    def import_path(self, path: str, name: Optional[str] = None) -> Callable[..., Any]:
        """
        Import "package.module:attribute" and register it.

        Args:
            path: Import path with a colon before the attribute
            name: Registered name, defaults to the path itself

        Returns:
            The imported callable

        Raises:
            ValueError: If the path is malformed or the attribute is missing
        """
        module_name, sep, attr = path.partition(":")
        if not sep or not module_name or not attr:
            raise ValueError(f"Expected 'module:attribute', got: {path!r}")

        module = importlib.import_module(module_name)
        try:
            fn = getattr(module, attr)
        except AttributeError:
            raise ValueError(f"Module '{module_name}' has no attribute '{attr}'") from None

        self.register(name or path, fn)
        return fn

    def get(self, name: str) -> Callable[..., Any]:
        """
        Look up a task function.

        Raises:
            ValueError: If name is not registered
        """
        if name not in self._functions:
            available = ", ".join(self._functions.keys())
            raise ValueError(
                f"Unknown task function: {name}. "
                f"Available functions: {available if available else 'none'}"
            )
        return self._functions[name]

    def name_of(self, fn: Callable[..., Any]) -> Optional[str]:
        """Registered name of a callable, or None"""
        for name, registered in self._functions.items():
            if registered is fn:
                return name
        return None

    def list_names(self) -> List[str]:
        """List all registered function names"""
        return list(self._functions.keys())

    def is_registered(self, name: str) -> bool:
        """Check if a function name is registered"""
        return name in self._functions


# Process-wide registry used when none is passed explicitly
default_registry = FunctionRegistry()
