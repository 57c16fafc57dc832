"""Listener fan-out — the shared core of every notifying property.

A PropertyCell owns a value, an ordered set of listener registrations and
the per-instance lock that serializes "swap value, then notify everyone".
Registrations live in an immutable tuple that is replaced on every add or
remove. Removing one registration waits only for an in-flight call of that
same registration, so no call starts after removal returns.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

from dynprop.exceptions import ReentrantUpdateError

T = TypeVar("T")

Listener = Callable[["T | None", T], None]

_UNSET = object()


class Registration:
    """One listener registration. Duplicates of the same callable are distinct."""

    __slots__ = ("listener", "active", "lock")

    def __init__(self, listener: Listener) -> None:
        self.listener = listener
        self.active = True
        # Held for the duration of each call; re-entrant so a listener can close itself.
        self.lock = threading.RLock()

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"Registration({self.listener!r}, {state})"


class ListenerSet:
    """Copy-on-write list of registrations, in insertion order."""

    def __init__(self, name: str, logger: logging.Logger) -> None:
        self._name = name
        self._logger = logger
        self._lock = threading.Lock()
        self._registrations: tuple[Registration, ...] = ()

    def add(self, listener: Listener) -> Registration:
        registration = Registration(listener)
        with self._lock:
            self._registrations = self._registrations + (registration,)
        return registration

    def discard(self, registration: Registration) -> bool:
        """Deactivate and drop one registration. Returns False if already gone."""
        with registration.lock:
            was_active = registration.active
            registration.active = False
        with self._lock:
            self._registrations = tuple(r for r in self._registrations if r is not registration)
        return was_active

    def remove(self, listener: Listener) -> bool:
        """Drop the first active registration of ``listener``."""
        with self._lock:
            for registration in self._registrations:
                if registration.active and registration.listener == listener:
                    break
            else:
                return False
        return self.discard(registration)

    def clear(self) -> None:
        with self._lock:
            registrations, self._registrations = self._registrations, ()
        for registration in registrations:
            with registration.lock:
                registration.active = False

    def notify(self, old_value, new_value) -> None:
        """Call every active listener; a failing listener never stops the rest."""
        for registration in self._registrations:
            with registration.lock:
                if not registration.active:
                    continue
                try:
                    registration.listener(old_value, new_value)
                except Exception:
                    self._logger.exception(
                        "Failed to update property %s from oldValue %r to newValue %r",
                        self._name, old_value, new_value,
                    )

    def __len__(self) -> int:
        return len(self._registrations)


class PropertyCell(Generic[T]):
    """Value + listeners + per-instance delivery lock.

    Listeners run while the lock is held, so a listener must not call set()
    on the property that is notifying it. Doing so raises ReentrantUpdateError
    (which the fan-out then logs) instead of deadlocking or recursing.
    """

    def __init__(self, name: str, logger: logging.Logger, value=_UNSET) -> None:
        self.name = name
        self._logger = logger
        self._lock = threading.RLock()
        self._value = value
        self._delivering = False
        self.listeners = ListenerSet(name, logger)

    @property
    def lock(self):
        """The delivery lock. Holding it excludes every set() on this cell."""
        return self._lock

    @property
    def value(self):
        return None if self._value is _UNSET else self._value

    def set(self, value: T) -> None:
        with self._lock:
            if self._delivering:
                raise ReentrantUpdateError(self.name)
            old = self._value
            self._value = value
            if old is _UNSET:
                old = None
            self._logger.debug(
                "Property update: name: %s, oldValue: %r, newValue: %r", self.name, old, value
            )
            self._delivering = True
            try:
                self.listeners.notify(old, value)
            finally:
                self._delivering = False

    def set_if(self, predicate: Callable[[], bool], value: T) -> bool:
        """Store value only if predicate() holds, checked under the lock."""
        with self._lock:
            if not predicate():
                return False
            self.set(value)
            return True

    def compute_and_set(self, compute: Callable[[], T]) -> None:
        """Evaluate compute and store its result as one step under the lock."""
        with self._lock:
            self.set(compute())

    def register_and_call(self, listener: Listener, current: Callable[[], T]) -> Registration:
        """Register ``listener`` and call it with (None, current) atomically.

        Errors from this first call propagate and leave nothing registered.
        """
        with self._lock:
            registration = self.listeners.add(listener)
            previous = self._delivering
            self._delivering = True
            try:
                with registration.lock:
                    listener(None, current())
            except BaseException:
                self.listeners.discard(registration)
                raise
            finally:
                self._delivering = previous
        return registration
