"""
Serialization Utilities

This module provides utilities for serializing identities and sessions to the
plain JSON blobs kept in the persisted session cache, with support for enums,
datetimes, tuples and nested dataclasses.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar
from dataclasses import is_dataclass, fields

# Type variable for generic typing
T = TypeVar('T')


def serialize(
    obj: Any,
    exclude_none: bool = False,
    exclude_fields: Optional[List[str]] = None
) -> Any:
    """
    Convert an object into JSON-compatible Python values.

    Args:
        obj: The object to serialize
        exclude_none: Whether to exclude None values from mappings
        exclude_fields: Optional list of field names to exclude

    Returns:
        A value made only of dicts, lists, strings, numbers, booleans and None
    """
    exclude_fields = exclude_fields or []

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [serialize(item, exclude_none, exclude_fields) for item in obj]

    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in exclude_fields:
                continue
            if exclude_none and value is None:
                continue
            result[str(key)] = serialize(value, exclude_none, exclude_fields)
        return result

    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none, exclude_fields)

    # Shallow field walk so nested objects keep their own to_dict
    if is_dataclass(obj):
        return serialize(
            {f.name: getattr(obj, f.name) for f in fields(obj)},
            exclude_none,
            exclude_fields
        )

    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Args:
        obj: The object to serialize
        pretty: Whether to format the JSON with indentation
        exclude_none: Whether to exclude None values

    Returns:
        JSON string representation
    """
    indent = 2 if pretty else None
    return json.dumps(serialize(obj, exclude_none), indent=indent, ensure_ascii=False, default=str)


class SerializableMixin:
    """
    Mixin that provides dict/JSON round-tripping to a class.

    Classes using this mixin must define:
    1. __serializable_fields__ - list of field names to include in serialization
    2. __optional_fields__ - list of field names that are optional during deserialization

    Keys outside ``__serializable_fields__`` are ignored when loading, so blobs
    written by an older release still load.
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert the object to a dictionary."""
        result = {}
        for field_name in self.__serializable_fields__:
            if hasattr(self, field_name):
                result[field_name] = serialize(getattr(self, field_name))
        return result

    def to_json(self, pretty: bool = False) -> str:
        """Convert the object to a JSON string."""
        return to_json(self.to_dict(), pretty)

    @classmethod
    def _load_field(cls, name: str, value: Any) -> Any:
        """Hook for subclasses to rebuild nested values."""
        return value

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create an instance from a dictionary."""
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping, got {type(data).__name__}")

        init_kwargs = {}
        for field_name in cls.__serializable_fields__:
            if field_name in data:
                init_kwargs[field_name] = cls._load_field(field_name, data[field_name])
            elif field_name not in cls.__optional_fields__:
                raise ValueError(f"Missing required field: {field_name}")

        return cls(**init_kwargs)

    @classmethod
    def from_json(cls: Type[T], json_str: str) -> T:
        """Create an instance from a JSON string."""
        return cls.from_dict(json.loads(json_str))
