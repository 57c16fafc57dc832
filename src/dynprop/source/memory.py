"""InMemoryTreeStore — an in-process TreeStore.

Useful for tests and for running an application without a coordination
service. Watch events are delivered synchronously on the thread that made
the change, in the order changes were applied.
"""

from __future__ import annotations

import threading
from typing import Callable

from dynprop.exceptions import NodeExistsError, NoNodeError
from dynprop.source.store import NodeData, TreeEvent, TreeEventType, TreeStore


class _Watch:
    __slots__ = ("_store", "root", "listener", "active")

    def __init__(self, store: InMemoryTreeStore, root: str, listener: Callable[[TreeEvent], None]) -> None:
        self._store = store
        self.root = root
        self.listener = listener
        self.active = True

    def covers(self, path: str) -> bool:
        return path == self.root or path.startswith(self.root.rstrip("/") + "/")

    def close(self) -> None:
        self._store._remove_watch(self)


class InMemoryTreeStore(TreeStore):
    """Thread-safe versioned tree of byte payloads."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[str, NodeData] = {}
        self._watches: list[_Watch] = []

    # ─── TreeStore ───────────────────────────────────────────────────────

    def watch(self, root: str, listener: Callable[[TreeEvent], None]) -> _Watch:
        with self._lock:
            handle = _Watch(self, root, listener)
            self._watches.append(handle)
            for path in sorted(p for p in self._nodes if handle.covers(p)):
                node = self._nodes[path]
                listener(TreeEvent(TreeEventType.NODE_ADDED, path, node.data, node.version))
            listener(TreeEvent(TreeEventType.INITIALIZED))
        return handle

    def create(self, path: str, data: bytes) -> int:
        with self._lock:
            if path in self._nodes:
                raise NodeExistsError(path)
            for parent in _parents(path):
                if parent not in self._nodes:
                    self._apply(TreeEventType.NODE_ADDED, parent, NodeData(b"", 0))
            self._apply(TreeEventType.NODE_ADDED, path, NodeData(data, 0))
            return 0

    def set_data(self, path: str, data: bytes) -> int:
        with self._lock:
            current = self._nodes.get(path)
            if current is None:
                raise NoNodeError(path)
            version = current.version + 1
            self._apply(TreeEventType.NODE_UPDATED, path, NodeData(data, version))
            return version

    def get_data(self, path: str, timeout: float) -> NodeData | None:
        with self._lock:
            return self._nodes.get(path)

    def get_children_data(self, path: str, timeout: float) -> dict[str, NodeData] | None:
        with self._lock:
            if path not in self._nodes:
                return None
            prefix = path.rstrip("/") + "/"
            return {
                child[len(prefix):]: node
                for child, node in self._nodes.items()
                if child.startswith(prefix) and "/" not in child[len(prefix):]
            }

    # ─── Direct manipulation ─────────────────────────────────────────────

    def delete(self, path: str, recursive: bool = True) -> None:
        """Remove path. With recursive, descendants are removed first."""
        with self._lock:
            if path not in self._nodes:
                raise NoNodeError(path)
            prefix = path.rstrip("/") + "/"
            descendants = [p for p in self._nodes if p.startswith(prefix)]
            if descendants and not recursive:
                raise ValueError(f"Node has children: {path}")
            for child in sorted(descendants, reverse=True):
                self._apply(TreeEventType.NODE_REMOVED, child, None)
            self._apply(TreeEventType.NODE_REMOVED, path, None)

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._nodes

    # ─── Internals ───────────────────────────────────────────────────────

    def _apply(self, event_type: TreeEventType, path: str, node: NodeData | None) -> None:
        if node is None:
            self._nodes.pop(path, None)
            event = TreeEvent(event_type, path)
        else:
            self._nodes[path] = node
            event = TreeEvent(event_type, path, node.data, node.version)
        for handle in list(self._watches):
            if handle.active and handle.covers(path):
                handle.listener(event)

    def _remove_watch(self, handle: _Watch) -> None:
        with self._lock:
            handle.active = False
            if handle in self._watches:
                self._watches.remove(handle)


def _parents(path: str) -> list[str]:
    parts = path.strip("/").split("/")[:-1]
    return ["/" + "/".join(parts[: i + 1]) for i in range(len(parts))]
