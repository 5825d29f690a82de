from __future__ import annotations

import json
import re
from typing import Any

DATA_URI_PATTERN = re.compile(r"data:[\w.+-]+/[\w.+-]+(?:;[\w.+-]+=[^;,]*)*;base64,", re.IGNORECASE)
BINARY_FIELD_NAMES = frozenset({"base64", "base64Data"})


def parse_customization_value(raw: Any) -> dict[str, Any]:
    """Decode a persisted customization value. Malformed or non-object content yields {}."""
    if isinstance(raw, dict):
        return raw
    if not raw or not isinstance(raw, (str, bytes)):
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def serialize_customization_value(data: dict[str, Any]) -> str:
    # None values are dropped so cleared fields do not linger as nulls.
    return json.dumps(_drop_none(data), ensure_ascii=False, default=str)


def contains_data_uri(value: str | None) -> bool:
    return bool(value) and DATA_URI_PATTERN.search(value) is not None


def is_data_uri(value: Any) -> bool:
    """An embedded base64 payload (`data:<mime>;base64,...`), not free text that starts with "data:"."""
    return isinstance(value, str) and DATA_URI_PATTERN.match(value) is not None


def is_inline_reference(value: Any) -> bool:
    """True for client-only references that never point at stored bytes."""
    return isinstance(value, str) and value.startswith(("data:", "blob:"))


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _drop_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_drop_none(item) for item in value]
    return value
