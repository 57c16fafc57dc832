"""TreePropertySource — reconciles properties with a watched subtree.

The source keeps a local mirror of every node below its root, fed by the
store's watch. Each change is decoded and dispatched to the listeners
registered for that exact path. Writes go straight to the store and use an
optimistic read-compare-write loop so concurrent writers cannot make an
upsert fail spuriously.

Bulk reads bypass the mirror: they ask the store directly, so they never
return a value the mirror has not caught up to yet.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from dynprop.exceptions import (
    DynamicPropertyError,
    NodeExistsError,
    NoNodeError,
    PropertyMarshallingError,
    PropertySourceTimeoutError,
    UpsertConflictError,
)
from dynprop.marshaller import DynamicPropertyMarshaller, JsonPropertyMarshaller
from dynprop.source.base import DynamicPropertySource, OptionalDefaultValue
from dynprop.source.store import NodeData, TreeEvent, TreeEventType, TreeStore


UPSERT_PROPERTY_RETRY_COUNT = 10
DEFAULT_READ_TIMEOUT = 120.0


class _Registration:
    __slots__ = ("path", "key", "type", "default", "listener", "active")

    def __init__(self, path: str, key: str, type_: Any, default: OptionalDefaultValue, listener) -> None:
        self.path = path
        self.key = key
        self.type = type_
        self.default = default
        self.listener = listener
        self.active = True


class SourceSubscription:
    """Handle returned by subscribe_and_call_listener. close() is idempotent."""

    __slots__ = ("_source", "_registration")

    def __init__(self, source: TreePropertySource, registration: _Registration) -> None:
        self._source = source
        self._registration = registration

    @property
    def closed(self) -> bool:
        return not self._registration.active

    def close(self) -> None:
        self._source._unregister(self._registration)


class TreePropertySource(DynamicPropertySource):
    """Property source over a TreeStore subtree rooted at ``root``.

    Usage:
        store = InMemoryTreeStore()
        source = TreePropertySource(store, "/app/config")
        source.upsert_property("pool.size", 8)
        source.get_property("pool.size", int)  # 8
    """

    def __init__(
        self,
        store: TreeStore,
        root: str,
        marshaller: DynamicPropertyMarshaller | None = None,
        *,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        if not root.startswith("/"):
            raise ValueError(f"root must be an absolute path, got {root!r}")
        self._store = store
        self._root = root.rstrip("/") or "/"
        self._marshaller = marshaller or JsonPropertyMarshaller()
        self._read_timeout = read_timeout
        self._logger = logger or logging.getLogger("dynprop.source.tree")

        self._mirror: dict[str, NodeData] = {}
        self._mirror_lock = threading.Lock()
        # Held while dispatching events and while delivering a first value,
        # so a subscriber never sees an older value after a newer one.
        self._dispatch_lock = threading.RLock()
        self._registrations: dict[str, tuple[_Registration, ...]] = {}
        self._registrations_lock = threading.Lock()
        self._initialized = threading.Event()
        self._closed = False

        self._watch = store.watch(self._root, self._on_event)
        if not self._initialized.wait(read_timeout):
            self._watch.close()
            raise PropertySourceTimeoutError(f"Initial load of {self._root}", read_timeout)

    @property
    def root(self) -> str:
        return self._root

    @property
    def marshaller(self) -> DynamicPropertyMarshaller:
        return self._marshaller

    # ─── Subscriptions ───────────────────────────────────────────────────

    def subscribe_and_call_listener(
        self,
        key: str,
        type_: Any,
        default_value: OptionalDefaultValue,
        listener: Callable[[Any], None],
    ) -> SourceSubscription:
        path = self._absolute_path(key)
        registration = _Registration(path, key, type_, default_value, listener)
        with self._dispatch_lock:
            with self._mirror_lock:
                node = self._mirror.get(path)
            value = self._initial_value(registration, node)
            self._register(registration)
            try:
                listener(value)
            except BaseException:
                self._unregister(registration)
                raise
        return SourceSubscription(self, registration)

    def _initial_value(self, registration: _Registration, node: NodeData | None) -> Any:
        if node is None:
            return registration.default.get(registration.key)
        try:
            return self._decode(registration, node.data)
        except PropertyMarshallingError:
            if not registration.default.is_present:
                raise
            self._logger.exception(
                "Failed to decode property %s, using default value %r",
                registration.key, registration.default.get(),
            )
            return registration.default.get()

    def _register(self, registration: _Registration) -> None:
        with self._registrations_lock:
            existing = self._registrations.get(registration.path, ())
            self._registrations[registration.path] = existing + (registration,)

    def _unregister(self, registration: _Registration) -> None:
        with self._registrations_lock:
            registration.active = False
            remaining = tuple(
                r for r in self._registrations.get(registration.path, ()) if r is not registration
            )
            if remaining:
                self._registrations[registration.path] = remaining
            else:
                self._registrations.pop(registration.path, None)

    def listener_count(self, key: str) -> int:
        return len(self._registrations.get(self._absolute_path(key), ()))

    # ─── Watch events ────────────────────────────────────────────────────

    def _on_event(self, event: TreeEvent) -> None:
        if event.type is TreeEventType.INITIALIZED:
            self._initialized.set()
            return
        if self._closed:
            return
        with self._dispatch_lock:
            if event.type is TreeEventType.NODE_REMOVED:
                with self._mirror_lock:
                    self._mirror.pop(event.path, None)
                payload = None
            else:
                payload = event.data or b""
                self._remember(event.path, payload, event.version)

            self._logger.info(
                "Event type %s for node '%s'. New value is %r",
                event.type.name, event.path, _preview(payload),
            )
            for registration in self._registrations.get(event.path, ()):
                self._deliver(registration, payload)

    def _deliver(self, registration: _Registration, payload: bytes | None) -> None:
        if not registration.active:
            return
        try:
            if payload is None:
                value = registration.default.get(registration.key)
            else:
                value = self._decode(registration, payload)
        except DynamicPropertyError:
            self._logger.exception("Failed to read new value of property %s", registration.key)
            return
        try:
            registration.listener(value)
        except Exception:
            self._logger.exception("Failed to update property %s", registration.path)

    def _decode(self, registration: _Registration, payload: bytes) -> Any:
        text = _text(registration.key, payload, registration.type)
        return self._marshaller.unmarshall(text, registration.type)

    def _remember(self, path: str, payload: bytes, version: int) -> None:
        with self._mirror_lock:
            current = self._mirror.get(path)
            if current is None or version >= current.version:
                self._mirror[path] = NodeData(payload, version)

    # ─── Writes ──────────────────────────────────────────────────────────

    def upsert_property(self, key: str, value: Any) -> None:
        path = self._absolute_path(key)
        payload = self._encode(value)
        conflict: DynamicPropertyError | None = None
        for attempt in range(1, UPSERT_PROPERTY_RETRY_COUNT + 1):
            current = self._read_node(path, authoritative=conflict is not None)
            try:
                if current is None:
                    version = self._store.create(path, payload)
                elif current.data == payload:
                    return
                else:
                    version = self._store.set_data(path, payload)
            except (NodeExistsError, NoNodeError) as exc:
                conflict = exc
                self._logger.debug(
                    "upserting property '%s'='%s', iteration %d", path, value, attempt
                )
                continue
            self._remember(path, payload, version)
            return
        raise UpsertConflictError(key, UPSERT_PROPERTY_RETRY_COUNT) from conflict

    def put_if_absent(self, key: str, value: Any) -> None:
        path = self._absolute_path(key)
        if self._read_node(path) is not None:
            return
        payload = self._encode(value)
        try:
            version = self._store.create(path, payload)
        except NodeExistsError:
            self._logger.debug("Property '%s' was created concurrently, keeping it", path)
            return
        self._remember(path, payload, version)

    def update_property(self, key: str, value: Any) -> None:
        path = self._absolute_path(key)
        payload = self._encode(value)
        version = self._store.set_data(path, payload)
        self._remember(path, payload, version)

    def _encode(self, value: Any) -> bytes:
        return self._marshaller.marshall(value).encode("utf-8")

    def _read_node(self, path: str, authoritative: bool = False) -> NodeData | None:
        if authoritative:
            return self._store.get_data(path, self._read_timeout)
        with self._mirror_lock:
            return self._mirror.get(path)

    # ─── Reads ───────────────────────────────────────────────────────────

    def get_property(self, key: str, type_: Any = str, default: Any = None) -> Any:
        node = self._read_node(self._absolute_path(key))
        if node is None:
            return default
        return self._marshaller.unmarshall(_text(key, node.data, type_), type_)

    def read_all_properties(self) -> dict[str, str]:
        children = self._store.get_children_data(self._root, self._read_timeout)
        if children is None:
            return {}
        return {name: _text(name, node.data) for name, node in children.items()}

    def read_all_subtree_properties(self, root: str | None = None) -> dict[str, str]:
        deadline = time.monotonic() + self._read_timeout
        result: dict[str, str] = {}
        self._collect_subtree((root or "").strip("/"), result, deadline)
        return result

    def _collect_subtree(self, relative: str, result: dict[str, str], deadline: float) -> None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PropertySourceTimeoutError(f"Reading subtree of {self._root}", self._read_timeout)
        children = self._store.get_children_data(self._absolute_path(relative), remaining)
        if not children:
            return
        for name, node in sorted(children.items()):
            child = f"{relative}/{name}" if relative else name
            result[child] = _text(child, node.data)
            self._collect_subtree(child, result, deadline)

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._watch.close()
        with self._registrations_lock:
            for registrations in self._registrations.values():
                for registration in registrations:
                    registration.active = False
            self._registrations.clear()

    def _absolute_path(self, key: str | None) -> str:
        if not key:
            return self._root
        if self._root == "/":
            return "/" + key
        return f"{self._root}/{key}"

    def __repr__(self) -> str:
        return f"TreePropertySource({self._root!r})"


def _text(key: str, payload: bytes, type_: Any = str) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PropertyMarshallingError(f"Property {key} is not valid UTF-8", type_, exc) from exc


def _preview(payload: bytes | None) -> str | None:
    if payload is None:
        return None
    return payload.decode("utf-8", errors="replace")
