"""TreeStore — the boundary to a hierarchical, watchable key/value store.

Paths are slash-separated and absolute ("/app/config/pool.size"). Node
payloads are raw bytes. Implementations translate their client's errors
into NodeExistsError, NoNodeError and PropertySourceTimeoutError.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Protocol


class TreeEventType(enum.Enum):
    NODE_ADDED = "NODE_ADDED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_REMOVED = "NODE_REMOVED"
    # The initial snapshot of the watched subtree has been delivered.
    INITIALIZED = "INITIALIZED"


@dataclass(frozen=True)
class NodeData:
    data: bytes
    version: int


@dataclass(frozen=True)
class TreeEvent:
    type: TreeEventType
    path: str | None = None
    data: bytes | None = None
    version: int = -1


class WatchHandle(Protocol):
    def close(self) -> None: ...


class TreeStore(ABC):
    """Client-side view of a remote tree store."""

    @abstractmethod
    def watch(self, root: str, listener: Callable[[TreeEvent], None]) -> WatchHandle:
        """Mirror the subtree at root into listener.

        Existing nodes arrive as NODE_ADDED, followed by one INITIALIZED.
        Events for one subtree are delivered in the order the store applied them.
        """

    @abstractmethod
    def create(self, path: str, data: bytes) -> int:
        """Create path (and missing parents). Returns the new version.

        Raises NodeExistsError if path exists.
        """

    @abstractmethod
    def set_data(self, path: str, data: bytes) -> int:
        """Overwrite path. Returns the new version. Raises NoNodeError if missing."""

    @abstractmethod
    def get_data(self, path: str, timeout: float) -> NodeData | None:
        """Authoritative read of one node, None if it does not exist."""

    @abstractmethod
    def get_children_data(self, path: str, timeout: float) -> dict[str, NodeData] | None:
        """Authoritative read of the direct children of path, keyed by name.

        None if path does not exist. Raises PropertySourceTimeoutError when
        the reads do not finish within timeout.
        """
