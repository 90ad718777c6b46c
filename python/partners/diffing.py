"""Canonical value comparison shared by audits and the SAP reverse sync."""

import copy
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


def normalize_comparison_value(value: Any) -> Any:
    """
    Canonical form of a value for equality checks.

    Strings are trimmed and blank strings count as missing. Dates become
    one ISO-8601 UTC format, dict keys are sorted and containers are
    normalized recursively.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return normalize_comparison_value(value.value)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).isoformat()
    if isinstance(value, (list, tuple)):
        return [normalize_comparison_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): normalize_comparison_value(value[key]) for key in sorted(value, key=str)}
    return str(value)


def values_equal(before: Any, after: Any) -> bool:
    """Structural equality of the canonical forms"""
    return (
        json.dumps(normalize_comparison_value(before), sort_keys=True)
        == json.dumps(normalize_comparison_value(after), sort_keys=True)
    )


def clone_value(value: Any) -> Any:
    """JSON-safe deep copy; enum members become their values"""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return normalize_comparison_value(value)
    return copy.deepcopy(value)
