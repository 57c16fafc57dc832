"""Subscriptions — owned tokens for listener registrations.

Every add_listener() call returns a PropertySubscription. Closing it removes
exactly that registration. A registration stays active until the token is
closed, the listener is removed, or the property itself is closed; dropping
the token does not unsubscribe.

Derived properties are the exception on the other side of the edge: a parent
holds them only through weak_listener, and they release their parent
subscriptions when they are garbage collected.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from dynprop._listeners import ListenerSet, Registration
    from dynprop.property import DynamicProperty

T = TypeVar("T")


class PropertySubscription(Generic[T]):
    """Disposable handle for one listener registration on a property."""

    __slots__ = ("_property", "_listeners", "_registration")

    def __init__(
        self,
        prop: DynamicProperty[T],
        listeners: ListenerSet,
        registration: Registration,
    ) -> None:
        self._property = prop
        self._listeners = listeners
        self._registration = registration

    @property
    def closed(self) -> bool:
        return not self._registration.active

    @property
    def subscribed_property(self) -> DynamicProperty[T]:
        """The property this subscription listens to."""
        return self._property

    def get(self) -> T:
        """Current value of the subscribed property."""
        return self._property.get()

    def close(self) -> None:
        """Remove the registration. Safe to call more than once.

        A call already in progress on another thread finishes before close()
        returns; no call starts afterwards.
        """
        self._listeners.discard(self._registration)

    def __enter__(self) -> PropertySubscription[T]:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "active"
        return f"PropertySubscription({self._property!r}, {state})"


def weak_listener(method: Callable) -> Callable:
    """Wrap a bound method so the registration does not keep its owner alive.

    Derived properties subscribe to their parents this way: the parent holds
    only a weak reference, the derived property holds the subscription.
    """
    ref = weakref.WeakMethod(method)

    def listener(*args) -> None:
        target = ref()
        if target is not None:
            target(*args)

    return listener


def release_on_collect(owner: object, *subscriptions) -> weakref.finalize:
    """Close subscriptions once owner is garbage collected.

    The finalizer holds the subscriptions, never the owner. Calling the
    returned finalizer closes them early; later calls do nothing.
    """

    def release() -> None:
        for subscription in subscriptions:
            subscription.close()

    finalizer = weakref.finalize(owner, release)
    finalizer.atexit = False
    return finalizer
