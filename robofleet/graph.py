"""
Robot graph — the parameters, topics and services visible to the coordinator.

Readiness of a launched stage is observed here (a parameter being set, a
topic being published, a service being advertised).  The real graph belongs
to the middleware the robots run on; :class:`InMemoryGraph` is the local
implementation used by the standalone coordinator and the tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger("RoboFleet.Graph")


class RobotGraph(ABC):
    """What the lifecycle layer needs to know about the middleware graph."""

    @abstractmethod
    def has_param(self, name: str) -> bool: ...

    @abstractmethod
    def has_topic(self, name: str) -> bool: ...

    @abstractmethod
    def has_service(self, name: str) -> bool: ...

    @abstractmethod
    def set_param(self, name: str, value: Any) -> None: ...

    @abstractmethod
    def delete_params(self, prefix: str) -> bool:
        """Delete every parameter under *prefix*. True if anything was removed."""

    def exists(self, kind: str, name: str) -> bool:
        if kind == "param":
            return self.has_param(name)
        if kind == "topic":
            return self.has_topic(name)
        if kind == "service":
            return self.has_service(name)
        raise ValueError(f"Unknown graph entity kind: {kind!r}")


class InMemoryGraph(RobotGraph):
    """Thread-safe in-process graph."""

    def __init__(self) -> None:
        self._params: Dict[str, Any] = {}
        self._topics: set[str] = set()
        self._services: set[str] = set()
        self._lock = threading.Lock()

    def set_param(self, name: str, value: Any) -> None:
        with self._lock:
            self._params[name] = value

    def get_param(self, name: str, default: Optional[Any] = None) -> Any:
        with self._lock:
            return self._params.get(name, default)

    def advertise_topic(self, name: str) -> None:
        with self._lock:
            self._topics.add(name)

    def remove_topic(self, name: str) -> None:
        with self._lock:
            self._topics.discard(name)

    def advertise_service(self, name: str) -> None:
        with self._lock:
            self._services.add(name)

    def remove_service(self, name: str) -> None:
        with self._lock:
            self._services.discard(name)

    def has_param(self, name: str) -> bool:
        with self._lock:
            return name in self._params

    def has_topic(self, name: str) -> bool:
        with self._lock:
            return name in self._topics

    def has_service(self, name: str) -> bool:
        with self._lock:
            return name in self._services

    def delete_params(self, prefix: str) -> bool:
        prefix = prefix.rstrip("/")
        with self._lock:
            doomed = [k for k in self._params if k == prefix or k.startswith(prefix + "/")]
            for key in doomed:
                del self._params[key]
        if doomed:
            logger.debug("Deleted %d parameter(s) under %s", len(doomed), prefix)
        return bool(doomed)
