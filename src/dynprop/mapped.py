"""MappedProperty — a property derived from one source through a pure function.

The mapped value is recomputed eagerly inside the source's notification,
so listeners of the mapped property see the change right after the
source's own listeners registered before it.

If fn raises during construction the error propagates. If it raises on a
later change, the failure is logged by the source's fan-out and the mapped
value keeps its previous value.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from dynprop.property import CellProperty, DynamicProperty
from dynprop.subscription import release_on_collect, weak_listener

T = TypeVar("T")
R = TypeVar("R")


class MappedProperty(CellProperty[R]):
    """Holds fn(source.get()), kept up to date."""

    def __init__(
        self,
        source: DynamicProperty[T],
        fn: Callable[[T], R],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(getattr(fn, "__name__", "mapped"), logger=logger)
        self._fn = fn
        subscription = source.add_and_call_listener(weak_listener(self._on_source_changed))
        self._release = release_on_collect(self, subscription)

    def _on_source_changed(self, old_value: T | None, new_value: T) -> None:
        self._cell.set(self._fn(new_value))

    def close(self) -> None:
        """Release the source subscription, then drop own listeners."""
        self._release()
        super().close()
