"""CombinedProperty — a property derived from several sources.

fn takes no arguments; it reads whatever it needs through closures over
the sources. Any source change triggers one recomputation over the current
values of all sources. Changes are not coalesced: two quick upstream
changes produce two recomputations.

Usage:
    host = AtomicProperty("localhost")
    port = AtomicProperty(8080)
    url = CombinedProperty([host, port], lambda: f"http://{host.get()}:{port.get()}")
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from dynprop.property import CellProperty, DynamicProperty
from dynprop.subscription import release_on_collect, weak_listener

R = TypeVar("R")


class CombinedProperty(CellProperty[R]):
    """Holds fn(), recomputed whenever any source changes."""

    def __init__(
        self,
        sources: Iterable[DynamicProperty],
        fn: Callable[[], R],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(getattr(fn, "__name__", "combined"), logger=logger)
        self._fn = fn
        listener = weak_listener(self._on_source_changed)
        subscriptions = [source.add_listener(listener) for source in sources]
        self._release = release_on_collect(self, *subscriptions)
        # A source change racing with construction recomputes via the listener.
        try:
            self._cell.compute_and_set(fn)
        except BaseException:
            self._release()
            raise

    def _on_source_changed(self, old_value, new_value) -> None:
        self._cell.compute_and_set(self._fn)

    def close(self) -> None:
        self._release()
        super().close()
