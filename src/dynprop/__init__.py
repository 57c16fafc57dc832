"""dynprop: live configuration properties backed by a watchable tree store."""

from importlib.metadata import version as _version

__version__ = _version("dynprop")

from dynprop.property import DynamicProperty, ConstantProperty, DelegatedProperty
from dynprop.subscription import PropertySubscription
from dynprop.atomic import AtomicProperty
from dynprop.mapped import MappedProperty
from dynprop.combined import CombinedProperty
from dynprop.marshaller import DynamicPropertyMarshaller, JsonPropertyMarshaller
from dynprop.source import (
    DynamicPropertySource,
    InMemoryTreeStore,
    OptionalDefaultValue,
    SourcedProperty,
    TreePropertySource,
)
from dynprop.exceptions import (
    DynamicPropertyError,
    DefaultValueNotFoundError,
    PropertyMarshallingError,
    PropertySourceTimeoutError,
    NodeExistsError,
    NoNodeError,
    UpsertConflictError,
    ReentrantUpdateError,
)
# kazoo and injection NOT auto-imported — opt-in only

__all__ = [
    "DynamicProperty",
    "ConstantProperty",
    "DelegatedProperty",
    "PropertySubscription",
    "AtomicProperty",
    "MappedProperty",
    "CombinedProperty",
    "DynamicPropertyMarshaller",
    "JsonPropertyMarshaller",
    "DynamicPropertySource",
    "InMemoryTreeStore",
    "OptionalDefaultValue",
    "SourcedProperty",
    "TreePropertySource",
    "DynamicPropertyError",
    "DefaultValueNotFoundError",
    "PropertyMarshallingError",
    "PropertySourceTimeoutError",
    "NodeExistsError",
    "NoNodeError",
    "UpsertConflictError",
    "ReentrantUpdateError",
]
