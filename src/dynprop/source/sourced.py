"""SourcedProperty — a property bound to one key of a DynamicPropertySource.

Construction subscribes to the source and receives the first value (the
stored one, or the default when the key is missing) before returning, so
get() is valid as soon as the object exists. Afterwards every remote change
of the key is applied and fanned out under the property's own lock; removal
of the key falls back to the default.

If the property becomes unreachable without being closed, its source
subscription is released when it is garbage collected.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, TypeVar

from dynprop.property import CellProperty
from dynprop.source.base import DynamicPropertySource, OptionalDefaultValue
from dynprop.subscription import release_on_collect, weak_listener

T = TypeVar("T")


class SourcedState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class SourcedProperty(CellProperty[T]):
    """Live, cached value of ``key`` in ``source``.

    Usage:
        timeout = SourcedProperty(source, "http.timeout", float, OptionalDefaultValue.of(2.5))
        timeout.get()  # 2.5 until the key is written remotely
    """

    def __init__(
        self,
        source: DynamicPropertySource,
        key: str,
        type_: Any = str,
        default_value: OptionalDefaultValue[T] | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(key, logger=logger)
        self._key = key
        self._type = type_
        self._state = SourcedState.UNINITIALIZED
        subscription = source.subscribe_and_call_listener(
            key,
            type_,
            default_value if default_value is not None else OptionalDefaultValue.none(),
            weak_listener(self._on_source_value),
        )
        self._state = SourcedState.ACTIVE
        self._release = release_on_collect(self, subscription)

    @property
    def key(self) -> str:
        return self._key

    @property
    def state(self) -> SourcedState:
        return self._state

    def _on_source_value(self, value: T) -> None:
        self._cell.set_if(self._accepts_updates, value)

    def _accepts_updates(self) -> bool:
        return self._state is not SourcedState.CLOSED

    def close(self) -> None:
        """Stop receiving source updates and drop listeners. Idempotent."""
        # An update racing with close either lands before it or not at all.
        with self._cell.lock:
            self._state = SourcedState.CLOSED
        self._release()
        super().close()

    def __repr__(self) -> str:
        return f"SourcedProperty(key={self._key!r}, type={self._type!r}, value={self.get()!r})"
