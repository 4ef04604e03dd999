"""Thread-safe registers, flat and namespaced."""

from __future__ import annotations

import threading
from typing import Any


class Untyped:
    """A simple name-to-value register, safe for concurrent access."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, name: str, value: Any) -> None:
        """Store value under name, replacing any previous one."""
        with self._lock:
            self._data[name] = value

    def get(self, name: str) -> Any:
        """Return the value stored under name; raise KeyError when absent."""
        with self._lock:
            return self._data[name]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._data

    def clone(self) -> dict[str, Any]:
        """Return a snapshot of the register."""
        with self._lock:
            return dict(self._data)


class Namespaced:
    """A register of values stored under namespaces and names."""

    def __init__(self) -> None:
        self._data = Untyped()

    def get(self, namespace: str) -> Untyped:
        """Return the register of a namespace; raise KeyError when absent."""
        value = self._data.get(namespace)
        if not isinstance(value, Untyped):
            raise KeyError(namespace)
        return value

    def register(self, namespace: str, name: str, value: Any) -> None:
        """Store value under name in the given namespace, creating it if needed."""
        try:
            self.get(namespace).register(name, value)
        except KeyError:
            inner = Untyped()
            inner.register(name, value)
            self._data.register(namespace, inner)

    def add_namespace(self, namespace: str) -> None:
        """Add an empty namespace unless it already exists."""
        try:
            self.get(namespace)
        except KeyError:
            self._data.register(namespace, Untyped())