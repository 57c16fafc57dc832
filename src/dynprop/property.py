"""DynamicProperty — the capability every live value implements.

A property has a current value, listeners that are called with
(old_value, new_value) on every change, and close() which unsubscribes
everything while leaving the last value readable.

Variants: AtomicProperty (settable root), MappedProperty and
CombinedProperty (derived), SourcedProperty (bound to a remote key),
ConstantProperty and DelegatedProperty (never notify).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from dynprop._listeners import Listener, PropertyCell
from dynprop.subscription import PropertySubscription

if TYPE_CHECKING:
    from dynprop.mapped import MappedProperty

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger("dynprop.property")


class DynamicProperty(ABC, Generic[T]):
    """A live, observable, typed value."""

    @abstractmethod
    def get(self) -> T:
        """Current value."""

    @abstractmethod
    def add_listener(self, listener: Listener) -> PropertySubscription[T]:
        """Register listener(old, new). Keep the returned subscription."""

    @abstractmethod
    def add_and_call_listener(self, listener: Listener) -> PropertySubscription[T]:
        """Register listener, then call it at once with (None, current value)."""

    @abstractmethod
    def remove_listener(self, listener: Listener) -> bool:
        """Remove the first registration of listener. Returns False if none."""

    @abstractmethod
    def close(self) -> None:
        """Drop all listeners and upstream subscriptions. get() keeps working."""

    def map(self, fn: Callable[[T], R]) -> MappedProperty[T, R]:
        """Derive a property whose value is fn(self.get()).

        Usage:
            port = AtomicProperty("8080")
            port_number = port.map(int)
            port_number.get()  # 8080
        """
        from dynprop.mapped import MappedProperty

        return MappedProperty(self, fn)

    @staticmethod
    def of(value: T) -> ConstantProperty[T]:
        """A property that always holds value."""
        return ConstantProperty(value)

    @staticmethod
    def delegated(supplier: Callable[[], T]) -> DelegatedProperty[T]:
        """A property that calls supplier on every get()."""
        return DelegatedProperty(supplier)

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class CellProperty(DynamicProperty[T]):
    """Shared implementation for variants backed by a PropertyCell."""

    def __init__(self, name: str, *, logger: logging.Logger | None = None, **cell_kwargs) -> None:
        self._cell: PropertyCell[T] = PropertyCell(name, logger or _default_logger(self), **cell_kwargs)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self) -> T:
        return self._cell.value

    def add_listener(self, listener: Listener) -> PropertySubscription[T]:
        registration = self._cell.listeners.add(listener)
        return PropertySubscription(self, self._cell.listeners, registration)

    def add_and_call_listener(self, listener: Listener) -> PropertySubscription[T]:
        registration = self._cell.register_and_call(listener, self.get)
        return PropertySubscription(self, self._cell.listeners, registration)

    def remove_listener(self, listener: Listener) -> bool:
        return self._cell.listeners.remove(listener)

    def listener_count(self) -> int:
        return len(self._cell.listeners)

    def close(self) -> None:
        self._closed = True
        self._cell.listeners.clear()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._cell.name!r}, {self.get()!r})"


def _default_logger(prop: DynamicProperty) -> logging.Logger:
    return logging.getLogger(type(prop).__module__)


class ConstantProperty(CellProperty[T]):
    """A property whose value never changes. Listeners are accepted but never called."""

    def __init__(self, value: T) -> None:
        super().__init__("constant", logger=logger, value=value)


class DelegatedProperty(CellProperty[T]):
    """A property that reads its value from supplier on every get().

    There is no change signal to observe, so listeners only ever receive the
    add-and-call invocation.
    """

    def __init__(self, supplier: Callable[[], T]) -> None:
        super().__init__(getattr(supplier, "__name__", "delegated"), logger=logger)
        self._supplier = supplier

    def get(self) -> T:
        return self._supplier()
