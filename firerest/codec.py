# firerest/codec.py
from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from firerest.errors import SerializationError


class JsonCodec:
    """
    encode(value) -> bytes, decode(bytes, target) -> value.

    `target` may be any type pydantic can validate (a BaseModel subclass,
    dict[str, int], list[Model], ...). Without a target the plain json value
    is returned.
    """

    def encode(self, value: Any) -> bytes:
        try:
            if isinstance(value, BaseModel):
                return value.model_dump_json().encode("utf-8")
            return json.dumps(value, ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot encode value: {e}") from e

    def decode(self, body: bytes, target: Optional[Any] = None) -> Any:
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise SerializationError(f"cannot decode response body: {e}") from e
        if target is None:
            return data
        try:
            return TypeAdapter(target).validate_python(data)
        except ValidationError as e:
            raise SerializationError(str(e)) from e


default_codec = JsonCodec()
