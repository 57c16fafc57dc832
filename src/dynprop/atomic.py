"""AtomicProperty — a settable root property.

set() swaps the value and calls every listener with (old, new) in
registration order, serialized per instance. get() already returns the
new value while listeners run, and every set() notifies, even when the
value is equal to the previous one.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from dynprop.property import CellProperty

T = TypeVar("T")


class AtomicProperty(CellProperty[T]):
    """A mutable property with listener fan-out.

    Usage:
        pool_size = AtomicProperty(4)
        sub = pool_size.add_listener(lambda old, new: print(old, "->", new))
        pool_size.set(8)  # prints "4 -> 8"
        sub.close()
    """

    def __init__(self, value: T, *, name: str | None = None, logger: logging.Logger | None = None) -> None:
        super().__init__(name or "atomic", logger=logger, value=value)

    def set(self, value: T) -> None:
        """Write a new value and notify listeners.

        Must not be called from a listener of this same property.
        """
        self._cell.set(value)
