"""Marshallers convert stored text to typed values and back.

Strings are stored as-is, so a property of type str reads exactly the text
that was written to the store. Every other type is stored as JSON and
validated with pydantic against the declared type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import TypeAdapter, ValidationError

from dynprop.exceptions import PropertyMarshallingError


class DynamicPropertyMarshaller(ABC):
    """Converts between stored text and typed property values."""

    @abstractmethod
    def marshall(self, value: Any) -> str:
        """Encode value as stored text."""

    @abstractmethod
    def unmarshall(self, text: str, type_: Any) -> Any:
        """Decode stored text into an instance of type_."""


class JsonPropertyMarshaller(DynamicPropertyMarshaller):
    """JSON via pydantic TypeAdapter, with raw passthrough for str."""

    def __init__(self) -> None:
        self._adapters: dict[Any, TypeAdapter] = {}

    def _adapter(self, type_: Any) -> TypeAdapter:
        try:
            return self._adapters[type_]
        except KeyError:
            adapter = self._adapters[type_] = TypeAdapter(type_)
            return adapter
        except TypeError:
            # unhashable type descriptor
            return TypeAdapter(type_)

    def marshall(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        try:
            return self._adapter(type(value)).dump_json(value).decode("utf-8")
        except Exception as exc:
            raise PropertyMarshallingError(
                f"Failed to marshall value {value!r}", type(value), exc
            ) from exc

    def unmarshall(self, text: str, type_: Any) -> Any:
        if type_ is str:
            return text
        try:
            return self._adapter(type_).validate_json(text)
        except ValidationError as exc:
            raise PropertyMarshallingError(
                f"Failed to unmarshall {text!r} as {type_!r}", type_, exc
            ) from exc
