"""ZooKeeper integration for dynprop. Opt-in — requires kazoo.

KazooTreeStore adapts a KazooClient to the TreeStore boundary: watches are
served by kazoo's TreeCache, kazoo errors are translated to dynprop errors,
and bulk reads are issued asynchronously and bounded by one deadline.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable

from kazoo.client import KazooClient
from kazoo.exceptions import NodeExistsError as KazooNodeExistsError
from kazoo.exceptions import NoNodeError as KazooNoNodeError
from kazoo.recipe.cache import TreeCache
from kazoo.recipe.cache import TreeEvent as KazooTreeEvent
from kazoo.retry import KazooRetry

from dynprop.exceptions import NodeExistsError, NoNodeError, PropertySourceTimeoutError
from dynprop.marshaller import DynamicPropertyMarshaller
from dynprop.source.store import NodeData, TreeEvent, TreeEventType, TreeStore
from dynprop.source.tree import DEFAULT_READ_TIMEOUT, TreePropertySource

logger = logging.getLogger("dynprop.kazoo")

_EVENT_TYPES = {
    KazooTreeEvent.NODE_ADDED: TreeEventType.NODE_ADDED,
    KazooTreeEvent.NODE_UPDATED: TreeEventType.NODE_UPDATED,
    KazooTreeEvent.NODE_REMOVED: TreeEventType.NODE_REMOVED,
    KazooTreeEvent.INITIALIZED: TreeEventType.INITIALIZED,
}

_CONNECTION_EVENTS = {
    KazooTreeEvent.CONNECTION_SUSPENDED: "suspended",
    KazooTreeEvent.CONNECTION_RECONNECTED: "reconnected",
    KazooTreeEvent.CONNECTION_LOST: "lost",
}


@dataclass
class ZkSettings:
    """Connection settings for a ZooKeeper-backed property source.

    Attributes:
        hosts: Comma-separated host:port list
        root: Absolute path under which properties are stored, e.g. "/myapp/config"
        connection_retries: Maximum reconnect attempts of the kazoo client
        retry_delay: Initial delay between reconnect attempts (seconds)
        connect_timeout: How long to wait for the first connection (seconds)
        read_timeout: Bound for initial load and bulk reads (seconds)
    """

    hosts: str
    root: str
    connection_retries: int = 10
    retry_delay: float = 1.0
    connect_timeout: float = 15.0
    read_timeout: float = DEFAULT_READ_TIMEOUT

    @classmethod
    def from_env(cls) -> ZkSettings:
        """Create settings from environment variables.

        Expected environment variables:
        - DYNPROP_ZK_HOSTS: ZooKeeper connection string
        - DYNPROP_ZK_ROOT: properties root path
        - DYNPROP_ZK_READ_TIMEOUT: optional, seconds
        """
        hosts = os.environ.get("DYNPROP_ZK_HOSTS")
        root = os.environ.get("DYNPROP_ZK_ROOT")
        if not hosts:
            raise ValueError("DYNPROP_ZK_HOSTS environment variable not set")
        if not root:
            raise ValueError("DYNPROP_ZK_ROOT environment variable not set")
        read_timeout = os.environ.get("DYNPROP_ZK_READ_TIMEOUT")
        if read_timeout:
            return cls(hosts=hosts, root=root, read_timeout=float(read_timeout))
        return cls(hosts=hosts, root=root)


class _CacheWatch:
    """WatchHandle over a started TreeCache."""

    def __init__(self, cache: TreeCache) -> None:
        self._cache = cache

    def close(self) -> None:
        self._cache.close()


class KazooTreeStore(TreeStore):
    """TreeStore backed by a KazooClient. Starts the client if it is not connected."""

    def __init__(self, client: KazooClient, *, connect_timeout: float = 15.0) -> None:
        self._client = client
        if not client.connected:
            client.start(timeout=connect_timeout)

    @property
    def client(self) -> KazooClient:
        return self._client

    def watch(self, root: str, listener: Callable[[TreeEvent], None]) -> _CacheWatch:
        cache = TreeCache(self._client, root)
        cache.listen(lambda event: _forward(event, listener))
        cache.listen_fault(lambda exc: logger.error("Tree cache fault under %s: %r", root, exc))
        cache.start()
        return _CacheWatch(cache)

    def create(self, path: str, data: bytes) -> int:
        try:
            self._client.create(path, data, makepath=True)
        except KazooNodeExistsError as exc:
            raise NodeExistsError(path) from exc
        return 0

    def set_data(self, path: str, data: bytes) -> int:
        try:
            stat = self._client.set(path, data)
        except KazooNoNodeError as exc:
            raise NoNodeError(path) from exc
        return stat.version

    def get_data(self, path: str, timeout: float) -> NodeData | None:
        try:
            data, stat = self._wait(self._client.get_async(path), f"Reading {path}", timeout)
        except KazooNoNodeError:
            return None
        return NodeData(data, stat.version)

    def get_children_data(self, path: str, timeout: float) -> dict[str, NodeData] | None:
        deadline = time.monotonic() + timeout
        try:
            children = self._wait(
                self._client.get_children_async(path), f"Listing {path}", timeout
            )
        except KazooNoNodeError:
            return None

        pending = {name: self._client.get_async(f"{path.rstrip('/')}/{name}") for name in children}
        result: dict[str, NodeData] = {}
        for name, async_result in pending.items():
            remaining = deadline - time.monotonic()
            try:
                data, stat = self._wait(async_result, f"Reading children of {path}", remaining)
            except KazooNoNodeError:
                continue  # removed between listing and reading
            result[name] = NodeData(data, stat.version)
        return result

    def _wait(self, async_result, operation: str, timeout: float):
        if timeout <= 0:
            raise PropertySourceTimeoutError(operation, 0)
        try:
            return async_result.get(timeout=timeout)
        except self._client.handler.timeout_exception as exc:
            raise PropertySourceTimeoutError(operation, timeout) from exc


def _forward(event: KazooTreeEvent, listener: Callable[[TreeEvent], None]) -> None:
    if event.event_type in _CONNECTION_EVENTS:
        logger.warning("ZooKeeper connection %s", _CONNECTION_EVENTS[event.event_type])
        return
    event_type = _EVENT_TYPES.get(event.event_type)
    if event_type is None:
        return
    node = event.event_data
    if node is None:
        listener(TreeEvent(event_type))
        return
    version = node.stat.version if node.stat is not None else -1
    listener(TreeEvent(event_type, node.path, node.data, version))


def connect(settings: ZkSettings, marshaller: DynamicPropertyMarshaller | None = None) -> TreePropertySource:
    """Start a kazoo client from settings and return a property source on it.

    Usage:
        source = connect(ZkSettings.from_env())
        pool_size = SourcedProperty(source, "pool.size", int, OptionalDefaultValue.of(4))
    """
    client = KazooClient(
        hosts=settings.hosts,
        connection_retry=KazooRetry(
            max_tries=settings.connection_retries,
            delay=settings.retry_delay,
            backoff=2,
        ),
    )
    store = KazooTreeStore(client, connect_timeout=settings.connect_timeout)
    logger.info("Connected to ZooKeeper at %s, properties root %s", settings.hosts, settings.root)
    return TreePropertySource(store, settings.root, marshaller, read_timeout=settings.read_timeout)
