"""Narrowing helpers for untyped data (TOML config, ``gh api`` JSON).

Each helper returns ``None`` instead of raising when the shape is wrong, so
parsers can turn a malformed payload into a single descriptive error.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TypeGuard, cast

StrDict = dict[str, object]
ObjList = list[object]

__all__ = [
    "StrDict",
    "ObjList",
    "is_str_dict",
    "as_str_dict",
    "as_obj_list",
    "get_str",
    "get_int",
    "get_float",
    "get_bool",
    "get_table",
    "get_list",
    "get_str_list",
    "get_nested_str",
]


def is_str_dict(obj: object) -> TypeGuard[StrDict]:
    if not isinstance(obj, dict):
        return False
    d = cast(dict[object, object], obj)
    return all(isinstance(k, str) for k in d)


def as_str_dict(obj: object) -> StrDict | None:
    return obj if is_str_dict(obj) else None


def as_obj_list(obj: object) -> ObjList | None:
    if isinstance(obj, list):
        return cast(ObjList, obj)
    return None


def get_str(table: Mapping[str, object], key: str) -> str | None:
    """String value with surrounding whitespace stripped; empty counts as missing."""
    value = table.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def get_int(table: Mapping[str, object], key: str) -> int | None:
    value = table.get(key)
    # bool is an int subclass; a JSON true is never a PR number
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def get_float(table: Mapping[str, object], key: str) -> float | None:
    value = table.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def get_bool(table: Mapping[str, object], key: str) -> bool | None:
    value = table.get(key)
    return value if isinstance(value, bool) else None


def get_table(table: Mapping[str, object], key: str) -> StrDict | None:
    return as_str_dict(table.get(key))


def get_list(table: Mapping[str, object], key: str) -> ObjList | None:
    return as_obj_list(table.get(key))


def get_str_list(table: Mapping[str, object], key: str) -> list[str] | None:
    """List of non-empty strings, or None if any element is not a string."""
    items = get_list(table, key)
    if items is None:
        return None
    out: list[str] = []
    for item in items:
        if not isinstance(item, str) or not item.strip():
            return None
        out.append(item.strip())
    return out


def get_nested_str(table: Mapping[str, object], *keys: str) -> str | None:
    """Walk nested tables, e.g. ``get_nested_str(pull, "head", "ref")``."""
    if not keys:
        return None
    current: Mapping[str, object] = table
    for key in keys[:-1]:
        nested = get_table(current, key)
        if nested is None:
            return None
        current = nested
    return get_str(current, keys[-1])
