"""Property sources — where SourcedProperty values come from."""

from dynprop.source.base import DynamicPropertySource, OptionalDefaultValue
from dynprop.source.memory import InMemoryTreeStore
from dynprop.source.sourced import SourcedProperty, SourcedState
from dynprop.source.store import NodeData, TreeEvent, TreeEventType, TreeStore
from dynprop.source.tree import SourceSubscription, TreePropertySource

__all__ = [
    "DynamicPropertySource",
    "OptionalDefaultValue",
    "InMemoryTreeStore",
    "SourcedProperty",
    "SourcedState",
    "NodeData",
    "TreeEvent",
    "TreeEventType",
    "TreeStore",
    "SourceSubscription",
    "TreePropertySource",
]
