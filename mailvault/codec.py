"""
Canonical text form of setting values.

Values are written as compact JSON with sorted keys, so the same value always
encodes to the same bytes and therefore the same checksum.
"""

import dataclasses
import json
import logging
from typing import Any, Dict, Type

logger = logging.getLogger(__name__)

_BUILTIN_TYPES = (str, int, float, bool, list, dict, type(None))


def type_name(value_type: type) -> str:
    """Return the stable identifier recorded for a value type."""
    return f"{value_type.__module__}:{value_type.__qualname__}"


def _to_plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, _BUILTIN_TYPES):
        return value
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def encode_value(value: Any) -> str:
    """Encode a value to its canonical JSON text."""
    return json.dumps(_to_plain(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def decode_value(text: str, value_type: Type) -> Any:
    """
    Decode canonical JSON text into an instance of value_type.

    Args:
        text: Output of encode_value
        value_type: Class exposing from_dict, a dataclass, or a JSON builtin

    Returns:
        The decoded value
    """
    data = json.loads(text)
    if hasattr(value_type, "from_dict"):
        return value_type.from_dict(data)
    if dataclasses.is_dataclass(value_type):
        return _dataclass_from_dict(value_type, data)
    if value_type is float and isinstance(data, int) and not isinstance(data, bool):
        return float(data)
    if value_type in _BUILTIN_TYPES and isinstance(data, value_type):
        return data
    raise TypeError(f"Cannot decode {type(data).__name__} as {value_type.__name__}")


def _dataclass_from_dict(value_type: type, data: Dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise TypeError(f"Expected an object for {value_type.__name__}")
    field_names = {f.name for f in dataclasses.fields(value_type)}
    unknown = set(data) - field_names
    if unknown:
        logger.debug(f"Ignoring unknown fields for {value_type.__name__}: {sorted(unknown)}")
    return value_type(**{k: v for k, v in data.items() if k in field_names})
