from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional, Protocol

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError, from_json, to_json

from dte.domain.errors import SerializationError


class Serializer(Protocol):
    """
    Codec for everything that crosses the backend boundary: params, results,
    checkpoint values, event payloads and headers.
    """

    def encode(self, value: Any) -> bytes: ...

    def decode(self, data: bytes, type_: Optional[type] = None) -> Any: ...


@lru_cache(maxsize=256)
def _adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


class JsonSerializer:
    """
    JSON codec built on pydantic.

    encode() accepts plain JSON values as well as pydantic models, dataclasses
    and datetimes. decode() without a type returns plain JSON values; with a
    type it validates into that type (models, dataclasses, datetime, ...).
    """

    def encode(self, value: Any) -> bytes:
        try:
            return to_json(value)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise SerializationError(f"Failed to encode value: {e}") from e

    def decode(self, data: bytes, type_: Optional[type] = None) -> Any:
        try:
            if type_ is None:
                return from_json(data)
            return _adapter(type_).validate_json(data)
        except PydanticValidationError as e:
            raise SerializationError(
                f"Failed to deserialize value into {getattr(type_, '__name__', type_)}: {e}",
            ) from e
        except ValueError as e:
            raise SerializationError(f"Failed to decode JSON: {e}") from e
