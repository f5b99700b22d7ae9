from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from ..observability.logging import get_logger

logger = get_logger("core.resources")

Factory = Callable[[], Any]
Finalizer = Callable[[Any], None]


class ResourceRegistry:
    """
    Owner of process-wide handles (tokenizer encoding, embedding model,
    OpenSearch client, LLM client, stores).

    Handles are created lazily on first `get`, can be replaced with `override`
    (tests, alternate backends), and released with `free` / `reset`.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, Factory] = {}
        self._finalizers: Dict[str, Finalizer] = {}
        self._instances: Dict[str, Any] = {}
        self._creating: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        factory: Factory,
        finalizer: Optional[Finalizer] = None,
    ) -> None:
        with self._lock:
            self._factories[name] = factory
            if finalizer is not None:
                self._finalizers[name] = finalizer

    def get(self, name: str) -> Any:
        with self._lock:
            if name in self._instances:
                return self._instances[name]
            factory = self._factories.get(name)
            if factory is None:
                raise KeyError(f"No resource registered under '{name}'")
            creating = self._creating.setdefault(name, threading.Lock())

        # The factory runs outside the registry lock: it may resolve other
        # resources (the OpenSearch store needs the OpenSearch client).
        with creating:
            with self._lock:
                if name in self._instances:
                    return self._instances[name]
            instance = factory()
            with self._lock:
                instance = self._instances.setdefault(name, instance)

        logger.info("Resource initialized", extra={"resource": name})
        return instance

    def override(self, name: str, instance: Any) -> None:
        with self._lock:
            self._instances[name] = instance

    def is_loaded(self, name: str) -> bool:
        with self._lock:
            return name in self._instances

    def free(self, name: str) -> None:
        with self._lock:
            instance = self._instances.pop(name, None)
            finalizer = self._finalizers.get(name)

        if instance is not None and finalizer is not None:
            finalizer(instance)
            logger.info("Resource freed", extra={"resource": name})

    def reset(self) -> None:
        with self._lock:
            names = list(self._instances.keys())
        for name in names:
            self.free(name)
        with self._lock:
            self._instances.clear()


registry = ResourceRegistry()
