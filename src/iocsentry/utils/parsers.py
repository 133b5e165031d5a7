"""Parsers and helpers for interpreting macOS outputs and preference values."""
from __future__ import annotations

import json
import plistlib
from typing import Any, Dict, Iterable, List, Tuple

BOOLEAN_TRUE = {"1", "true", "yes", "on", "enabled"}
BOOLEAN_FALSE = {"0", "false", "no", "off", "disabled"}


def parse_defaults_bool(value: str | None) -> bool | None:
    """Interpret a defaults plist boolean-style output."""

    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in BOOLEAN_TRUE:
        return True
    if normalized in BOOLEAN_FALSE:
        return False
    return None


def load_plist_bytes(data: bytes) -> dict[str, Any]:
    """Parse plist bytes (XML or binary).

    Raises ValueError when the payload is not a dictionary plist.
    """
    try:
        parsed = plistlib.loads(data)
    except (plistlib.InvalidFileException, ValueError, TypeError) as exc:
        raise ValueError(f"invalid plist: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("plist root is not a dictionary")
    return parsed


def safe_json_loads(data: str) -> Any | None:
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return None


def parse_ndjson_events(output: str) -> List[Dict[str, Any]]:
    """Return log events from ``log show --style ndjson`` output.

    Trailing summary objects carry no ``eventMessage`` and are dropped.
    """
    events = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        record = safe_json_loads(line)
        if isinstance(record, dict) and "eventMessage" in record:
            events.append(record)
    return events


def parse_mode(value: Any) -> int:
    """Parse a permission mode given as ``"0755"``, ``"755"``, ``"0o755"`` or int."""
    if isinstance(value, bool):
        raise ValueError(f"invalid permission mode: {value!r}")
    if isinstance(value, int):
        mode = value
    else:
        text = str(value).strip().lower()
        if text.startswith("0o"):
            text = text[2:]
        mode = int(text, 8)
    if not 0 <= mode <= 0o7777:
        raise ValueError(f"permission mode out of range: {value!r}")
    return mode


def format_mode(mode: int) -> str:
    return f"{mode & 0o7777:04o}"


def _scalar_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.hex()
    return str(value).strip()


def scalars_equal(observed: Any, expected: Any) -> bool:
    """Compare two scalar preference values the way ``defaults`` prints them."""
    if isinstance(observed, bool) or isinstance(expected, bool):
        left = observed if isinstance(observed, bool) else parse_defaults_bool(_scalar_text(observed))
        right = expected if isinstance(expected, bool) else parse_defaults_bool(_scalar_text(expected))
        return left is not None and left == right
    if isinstance(observed, (int, float)) and isinstance(expected, (int, float)):
        return observed == expected
    return _scalar_text(observed) == _scalar_text(expected)


def _as_items(value: Any) -> Tuple[Any, ...] | None:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return None


def values_equal(observed: Any, expected: Any) -> bool:
    """Equality with order-independent comparison for arrays."""
    observed_items = _as_items(observed)
    expected_items = _as_items(expected)
    if observed_items is None and expected_items is None:
        return scalars_equal(observed, expected)
    if observed_items is None or expected_items is None:
        return False
    return missing_values(observed_items, expected_items) == [] and missing_values(
        expected_items, observed_items
    ) == []


def missing_values(observed: Any, required: Iterable[Any]) -> List[Any]:
    """Required values not present in ``observed``.

    Arrays use set membership; strings use substring containment.
    """
    items = _as_items(observed)
    missing = []
    for value in required:
        if items is not None:
            if not any(scalars_equal(item, value) for item in items):
                missing.append(value)
        elif _scalar_text(value) not in _scalar_text(observed):
            missing.append(value)
    return missing
