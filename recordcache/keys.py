from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple
from uuid import UUID

from pydantic import BaseModel


class CacheError(Exception):
    """Base class for errors raised by the record cache."""


class SerializationError(CacheError, ValueError):
    """A cache key could not be turned into a stable, deterministic text."""


class CacheKey(NamedTuple):
    namespace: str
    key: str


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True, allow_nan=False)


def _json_compatible(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    raise SerializationError(f"{type(value).__name__} is not a supported cache key component")


def _normalize(value: Any, active: set[int]) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if not isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return _normalize(_json_compatible(value), active)

    marker = id(value)
    if marker in active:
        raise SerializationError("Cache key contains a reference cycle")
    active.add(marker)
    try:
        if isinstance(value, Mapping):
            normalized: dict[str, Any] = {}
            for field_name, item in value.items():
                # json would coerce 1 and "1" to the same field name
                if not isinstance(field_name, str):
                    raise SerializationError(
                        f"Cache key mappings need str field names, got {type(field_name).__name__}"
                    )
                normalized[field_name] = _normalize(item, active)
            return normalized
        items = [_normalize(item, active) for item in value]
        if isinstance(value, (set, frozenset)):
            items.sort(key=_dumps)
        return items
    finally:
        active.discard(marker)


def canonicalize_key(value: Any) -> str:
    """Serialize ``value`` so that structurally equal keys produce the same text.

    Mapping fields are sorted, whitespace is fixed and NaN/infinity are
    rejected because they do not compare equal to themselves. Mappings must
    use ``str`` field names.
    """
    try:
        return _dumps(_normalize(value, set()))
    except SerializationError:
        raise
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationError(f"Cannot build a cache key from {type(value).__name__}: {exc}") from exc


def make_cache_key(namespace: str, key: Any) -> CacheKey:
    return CacheKey(namespace=namespace, key=canonicalize_key(key))
