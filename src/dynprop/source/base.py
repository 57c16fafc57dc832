"""The property source contract and optional default values.

A DynamicPropertySource owns the authoritative values for a set of keys and
pushes changes to subscribers. SourcedProperty is the only consumer the
engine itself needs; everything else on the contract serves application
code and bootstrap tooling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Mapping, Protocol, TypeVar

from dynprop.exceptions import DefaultValueNotFoundError

T = TypeVar("T")

_ABSENT = object()


class OptionalDefaultValue(Generic[T]):
    """A default that is either present (possibly None) or absent.

    Absent means "no default configured": a missing key is then an error,
    never silently None.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Any = _ABSENT) -> None:
        self._value = value

    @classmethod
    def of(cls, value: T) -> OptionalDefaultValue[T]:
        return cls(value)

    @classmethod
    def none(cls) -> OptionalDefaultValue[T]:
        return cls()

    @property
    def is_present(self) -> bool:
        return self._value is not _ABSENT

    def get(self, key: str = "") -> T:
        if self._value is _ABSENT:
            raise DefaultValueNotFoundError(key)
        return self._value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OptionalDefaultValue):
            return NotImplemented
        return self._value is other._value or self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value) if self.is_present else hash(_ABSENT)

    def __repr__(self) -> str:
        if self._value is _ABSENT:
            return "OptionalDefaultValue.none()"
        return f"OptionalDefaultValue.of({self._value!r})"


class Subscription(Protocol):
    """What subscribe_and_call_listener returns."""

    def close(self) -> None: ...


class DynamicPropertySource(ABC):
    """Authoritative store of property values that notifies on change."""

    @abstractmethod
    def subscribe_and_call_listener(
        self,
        key: str,
        type_: Any,
        default_value: OptionalDefaultValue,
        listener: Callable[[Any], None],
    ) -> Subscription:
        """Call listener(value) once before returning, then on every change.

        A missing key delivers the default. Raises DefaultValueNotFoundError
        when the key is missing and there is no default.
        """

    @abstractmethod
    def upsert_property(self, key: str, value: Any) -> None:
        """Create or overwrite key. Writing the current value is a no-op."""

    @abstractmethod
    def put_if_absent(self, key: str, value: Any) -> None:
        """Create key only when it does not exist yet."""

    @abstractmethod
    def update_property(self, key: str, value: Any) -> None:
        """Overwrite an existing key. Raises NoNodeError if it is missing."""

    @abstractmethod
    def get_property(self, key: str, type_: Any = str, default: Any = None) -> Any:
        """Current value of key, or default when it is missing."""

    @abstractmethod
    def read_all_properties(self) -> dict[str, str]:
        """Direct children of the source root, read from the authoritative store."""

    @abstractmethod
    def read_all_subtree_properties(self, root: str | None = None) -> dict[str, str]:
        """Every node below root (relative keys), read from the authoritative store."""

    @abstractmethod
    def close(self) -> None:
        """Stop watching and drop all subscriptions."""

    def upload_initial_properties(self, defaults: Mapping[str, Any]) -> dict[str, str]:
        """Create every key of defaults that is missing from the source.

        Returns the merged view: stored values win over defaults.
        """
        current = self.read_all_properties()
        for key, value in defaults.items():
            if key not in current:
                self.put_if_absent(key, value)
                current[key] = self.marshaller.marshall(value)
        return current

    @property
    @abstractmethod
    def marshaller(self):
        """The DynamicPropertyMarshaller used for reads and writes."""

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()
