"""Inject SourcedProperty instances into annotated attributes. Opt-in.

Mark an attribute with PropertyId and give it a default:

    class Worker:
        pool_size: Annotated[DynamicProperty[int], PropertyId("worker.pool.size")] = DynamicProperty.of(4)

    worker = DynamicPropertyInjector(source).process(Worker())
    worker.pool_size.get()  # value stored under worker.pool.size, 4 until set

The default is registered in the source if the key is absent, then the
attribute is replaced by a SourcedProperty on that key. Registration and
first delivery are finished before process() returns.
"""

from __future__ import annotations

import logging
import time
import typing
from dataclasses import dataclass
from typing import Any, TypeVar

from dynprop.exceptions import DefaultValueNotFoundError
from dynprop.property import DynamicProperty
from dynprop.source.base import DynamicPropertySource, OptionalDefaultValue
from dynprop.source.sourced import SourcedProperty

logger = logging.getLogger("dynprop.injection")

Target = TypeVar("Target")


@dataclass(frozen=True)
class PropertyId:
    """Marks an attribute as bound to ``key`` in the property source."""

    key: str


class DynamicPropertyInjector:
    """Replaces PropertyId-marked attributes with source-bound properties."""

    def __init__(self, source: DynamicPropertySource) -> None:
        self._source = source
        self._processing_time = 0.0

    def process(self, target: Target, name: str | None = None) -> Target:
        start = time.monotonic()
        name = name or type(target).__name__
        hints = typing.get_type_hints(type(target), include_extras=True)
        for attribute, hint in hints.items():
            property_id = _property_id(hint)
            if property_id is None:
                continue
            value_type = _element_type(hint)
            if value_type is None:
                logger.warning(
                    "PropertyId is applicable only on attributes of DynamicProperty type, "
                    "not '%s', object '%s'",
                    hint, name,
                )
                continue
            setattr(target, attribute, self._bind(target, attribute, property_id, value_type, name))

        elapsed = time.monotonic() - start
        self._processing_time += elapsed
        logger.debug(
            "Resolving PropertyId for '%s' took %.1f ms. Sum of processing times is %.1f ms now.",
            name, elapsed * 1000, self._processing_time * 1000,
        )
        return target

    def _bind(
        self, target: Any, attribute: str, property_id: PropertyId, value_type: Any, name: str
    ) -> SourcedProperty:
        default = _default_value(target, attribute)
        if default is None:
            raise DefaultValueNotFoundError(
                property_id.key,
                f"Illegal default property value '{attribute}' of object '{name}'. "
                "DynamicProperty attribute marked with PropertyId must have default value other than None",
            )
        try:
            self._source.put_if_absent(property_id.key, default)
        except Exception:
            logger.exception(
                "Failed to put default value %r to property '%s'", default, property_id.key
            )
        return SourcedProperty(
            self._source, property_id.key, value_type, OptionalDefaultValue.of(default)
        )


def _property_id(hint: Any) -> PropertyId | None:
    if typing.get_origin(hint) is not typing.Annotated:
        return None
    for marker in hint.__metadata__:
        if isinstance(marker, PropertyId):
            return marker
    return None


def _element_type(hint: Any) -> Any:
    """int for Annotated[DynamicProperty[int], ...]; None for non-property hints."""
    declared = typing.get_args(hint)[0]
    origin = typing.get_origin(declared) or declared
    if not (isinstance(origin, type) and issubclass(origin, DynamicProperty)):
        return None
    args = typing.get_args(declared)
    return args[0] if args else str


def _default_value(target: Any, attribute: str) -> Any:
    current = getattr(target, attribute, None)
    if isinstance(current, DynamicProperty):
        return current.get()
    return None
