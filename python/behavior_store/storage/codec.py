"""
Record codec between pydantic models and the medium's stored values.

Stored values are JSON text with camelCase field names. Decoding never
fills in missing required fields: a record that does not validate is
reported as a DecodeError so it cannot leak into indexes or results.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from behavior_store.exceptions import DecodeError

M = TypeVar("M", bound=BaseModel)


def _summarize(error: ValidationError) -> str:
    """Compact one-line description of the first few validation failures."""
    parts = []
    for item in error.errors()[:3]:
        location = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    if error.error_count() > 3:
        parts.append(f"+{error.error_count() - 3} more")
    return "; ".join(parts)


class Codec:
    """Pure encode/decode transform; holds no state."""

    def encode(self, record: BaseModel) -> str:
        """Serialize a record to its stored JSON text."""
        return record.model_dump_json(by_alias=True)

    def to_value(self, record: BaseModel) -> dict[str, Any]:
        """Serialize a record to a JSON-compatible dict."""
        return record.model_dump(mode="json", by_alias=True)

    def decode(self, model: type[M], raw: str | bytes | dict[str, Any], key: str | None = None) -> M:
        """
        Deserialize a stored value into ``model``.

        Args:
            model: Record type expected at this location.
            raw: JSON text or an already-parsed JSON object.
            key: Primary key, used only for error context.

        Raises:
            DecodeError: if the value is not valid JSON or misses required fields.
        """
        try:
            if isinstance(raw, (str, bytes)):
                return model.model_validate_json(raw)
            return model.model_validate(raw)
        except ValidationError as e:
            raise DecodeError.invalid_record(model.__name__, key, _summarize(e)) from e


default_codec = Codec()
