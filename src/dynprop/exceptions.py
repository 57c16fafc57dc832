"""Exceptions raised by dynprop.

Delivery-path failures (bad payloads, failing listeners) are logged and
contained. These types surface at construction time or from write/read
operations on a property source.
"""


class DynamicPropertyError(Exception):
    """Base exception for all dynprop errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DefaultValueNotFoundError(DynamicPropertyError):
    """Raised when a property has no value and no default was supplied."""

    def __init__(self, key: str, reason: str | None = None):
        message = reason or f"Property '{key}' is absent and has no default value"
        super().__init__(message, {"key": key})
        self.key = key


class PropertyMarshallingError(DynamicPropertyError):
    """Raised when text cannot be converted to or from a typed value."""

    def __init__(self, message: str, type_: object = None, cause: Exception | None = None):
        details = {}
        if type_ is not None:
            details["type"] = repr(type_)
        if cause is not None:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.type = type_


class PropertySourceTimeoutError(DynamicPropertyError):
    """Raised when a source operation exceeds its bounded wait."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} did not complete within {timeout:g}s",
            {"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout


class NodeExistsError(DynamicPropertyError):
    """Raised by a tree store when creating a node that already exists."""

    def __init__(self, path: str):
        super().__init__(f"Node already exists: {path}", {"path": path})
        self.path = path


class NoNodeError(DynamicPropertyError):
    """Raised by a tree store when updating a node that does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Node does not exist: {path}", {"path": path})
        self.path = path


class UpsertConflictError(DynamicPropertyError):
    """Raised when an upsert keeps losing races with concurrent writers."""

    def __init__(self, key: str, attempts: int):
        super().__init__(
            f"Failed to upsert property '{key}' after {attempts} attempts",
            {"key": key, "attempts": attempts},
        )
        self.key = key
        self.attempts = attempts


class ReentrantUpdateError(DynamicPropertyError):
    """Raised when a listener tries to set the property that is notifying it."""

    def __init__(self, name: str):
        super().__init__(
            f"Property {name} was updated from inside its own listener",
            {"property": name},
        )
        self.name = name
