"""Closed catalog of attribute data types: defaults, option checks, storage mapping."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Tuple

from attribute_errors import Issue, issue


class DataType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    MULTISELECT = "multiselect"
    TREE_SELECT = "tree_select"
    MULTI_TREE_SELECT = "multi_tree_select"
    CHECKBOX = "checkbox"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DATE = "date"
    DATETIME = "datetime"


SELECTION_TYPES: FrozenSet[DataType] = frozenset(
    {
        DataType.SELECT,
        DataType.MULTISELECT,
        DataType.TREE_SELECT,
        DataType.MULTI_TREE_SELECT,
        DataType.CHECKBOX,
    }
)
TREE_TYPES: FrozenSet[DataType] = frozenset({DataType.TREE_SELECT, DataType.MULTI_TREE_SELECT})
MULTI_VALUE_TYPES: FrozenSet[DataType] = frozenset(
    {DataType.MULTISELECT, DataType.MULTI_TREE_SELECT, DataType.CHECKBOX}
)
TEXT_INPUT_KINDS: FrozenSet[str] = frozenset({"text", "password", "tel", "fax", "email", "url"})

DEFAULT_MAXLENGTH = 255

# Undirected pairs; a type is always compatible with itself.
_COMPATIBLE_PAIRS: FrozenSet[FrozenSet[DataType]] = frozenset(
    frozenset(pair)
    for pair in (
        (DataType.TEXT, DataType.SELECT),
        (DataType.TEXT, DataType.TREE_SELECT),
        (DataType.SELECT, DataType.TREE_SELECT),
        (DataType.TEXT, DataType.TEXTAREA),
        (DataType.MULTISELECT, DataType.MULTI_TREE_SELECT),
        (DataType.SELECT, DataType.CHECKBOX),
    )
)


@dataclass(frozen=True)
class ColumnSpec:
    sql_type: str
    nullable: bool = True
    limit: int | None = None

    def to_dict(self) -> dict:
        return {"sql_type": self.sql_type, "nullable": self.nullable, "limit": self.limit}


def parse_data_type(value: Any) -> DataType | None:
    if isinstance(value, DataType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return DataType(value.strip().lower())
    except ValueError:
        return None


def defaults_for(data_type: DataType | str | None) -> Dict[str, Any]:
    dtype = parse_data_type(data_type)
    defaults: Dict[str, Any] = {"null": True}
    if dtype in SELECTION_TYPES:
        defaults["maxlength"] = DEFAULT_MAXLENGTH
        defaults["nulloption"] = True
    return defaults


def apply_defaults(data_type: DataType | str | None, data_option: dict | None) -> dict:
    """Fill unset options in place and return the mapping.

    Only ``None``/missing values are replaced, so an explicit ``False`` survives
    every pass.
    """
    if data_option is None:
        data_option = {}
    for key, value in defaults_for(data_type).items():
        if data_option.get(key) is None:
            data_option[key] = copy.deepcopy(value)
    return data_option


def is_compatible(old_type: DataType | str, new_type: DataType | str) -> bool:
    old = parse_data_type(old_type)
    new = parse_data_type(new_type)
    if old is None or new is None:
        return False
    if old == new:
        return True
    return frozenset((old, new)) in _COMPATIBLE_PAIRS


def is_enumeration(data_type: DataType | str | None) -> bool:
    return parse_data_type(data_type) in SELECTION_TYPES


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _truthy_key(key: Any) -> bool:
    return key is True or (isinstance(key, str) and key.lower() == "true")


def _falsy_key(key: Any) -> bool:
    return key is False or (isinstance(key, str) and key.lower() == "false")


def _tree_issues(nodes: Any, path: str) -> List[Issue]:
    issues: List[Issue] = []
    if not isinstance(nodes, list) or not nodes:
        return [issue("OPTIONS_INVALID", "options must be a non-empty list of nodes", path)]
    for idx, node in enumerate(nodes):
        node_path = f"{path}[{idx}]"
        if not isinstance(node, dict):
            issues.append(issue("OPTIONS_INVALID", "option node must be an object", node_path))
            continue
        if not isinstance(node.get("name"), str) or not isinstance(node.get("value"), str):
            issues.append(issue("OPTIONS_INVALID", "option node needs name and value", node_path))
        children = node.get("children")
        if children:
            issues.extend(_tree_issues(children, f"{node_path}.children"))
    return issues


def validate_options(data_type: DataType | str | None, data_option: dict) -> List[Issue]:
    dtype = parse_data_type(data_type)
    if dtype is None:
        return [issue("DATA_TYPE_UNKNOWN", f"Unknown data_type: {data_type}", "data_type")]
    if not isinstance(data_option, dict):
        return [issue("DATA_OPTION_INVALID", "data_option must be an object", "data_option")]

    issues: List[Issue] = []

    def _add(code: str, message: str, key: str) -> None:
        issues.append(issue(code, message, f"data_option.{key}"))

    if not isinstance(data_option.get("null"), bool):
        _add("DATA_OPTION_INVALID", "null must be a boolean", "null")

    if dtype in (DataType.TEXT, DataType.TEXTAREA):
        maxlength = data_option.get("maxlength")
        if not _is_int(maxlength) or maxlength <= 0:
            _add("DATA_OPTION_REQUIRED", "maxlength must be a positive integer", "maxlength")
        kind = data_option.get("type")
        if dtype == DataType.TEXT and kind is not None and kind not in TEXT_INPUT_KINDS:
            _add("DATA_OPTION_INVALID", f"type must be one of {sorted(TEXT_INPUT_KINDS)}", "type")
    elif dtype in SELECTION_TYPES:
        options = data_option.get("options")
        if dtype in TREE_TYPES:
            issues.extend(_tree_issues(options, "data_option.options"))
        elif not isinstance(options, (dict, list)) or not options:
            _add("DATA_OPTION_REQUIRED", "options must be a non-empty mapping", "options")
        maxlength = data_option.get("maxlength")
        if not _is_int(maxlength) or maxlength <= 0:
            _add("DATA_OPTION_INVALID", "maxlength must be a positive integer", "maxlength")
        if not isinstance(data_option.get("nulloption"), bool):
            _add("DATA_OPTION_INVALID", "nulloption must be a boolean", "nulloption")
    elif dtype == DataType.BOOLEAN:
        options = data_option.get("options")
        if not isinstance(options, dict) or not any(_truthy_key(k) for k in options) or not any(_falsy_key(k) for k in options):
            _add("DATA_OPTION_REQUIRED", "options must map both true and false", "options")
    elif dtype == DataType.INTEGER:
        low = data_option.get("min")
        high = data_option.get("max")
        if not _is_int(low):
            _add("DATA_OPTION_REQUIRED", "min must be an integer", "min")
        if not _is_int(high):
            _add("DATA_OPTION_REQUIRED", "max must be an integer", "max")
        if _is_int(low) and _is_int(high) and low > high:
            _add("DATA_OPTION_INVALID", "min must not exceed max", "min")
    elif dtype == DataType.DATE:
        diff = data_option.get("diff")
        if diff is not None and not _is_int(diff):
            _add("DATA_OPTION_INVALID", "diff must be an integer or null", "diff")
    elif dtype == DataType.DATETIME:
        for key in ("future", "past"):
            if not isinstance(data_option.get(key), bool):
                _add("DATA_OPTION_REQUIRED", f"{key} must be a boolean", key)
        diff = data_option.get("diff")
        if diff is not None and not _is_int(diff):
            _add("DATA_OPTION_INVALID", "diff must be an integer or null", "diff")
    return issues


def column_for(data_type: DataType | str, data_option: dict) -> ColumnSpec:
    dtype = parse_data_type(data_type)
    if dtype is None:
        raise ValueError(f"Unknown data_type: {data_type}")
    nullable = data_option.get("null") is not False
    if dtype in MULTI_VALUE_TYPES:
        return ColumnSpec("jsonb", nullable)
    if dtype in (DataType.TEXT, DataType.SELECT, DataType.TREE_SELECT):
        return ColumnSpec("varchar", nullable, data_option.get("maxlength") or DEFAULT_MAXLENGTH)
    if dtype == DataType.TEXTAREA:
        return ColumnSpec("text", nullable)
    if dtype == DataType.BOOLEAN:
        return ColumnSpec("boolean", nullable)
    if dtype == DataType.INTEGER:
        return ColumnSpec("integer", nullable)
    if dtype == DataType.DATE:
        return ColumnSpec("date", nullable)
    return ColumnSpec("timestamp", nullable)


def _flatten_tree(nodes: list) -> List[Tuple[str, str]]:
    items: List[Tuple[str, str]] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        value = node.get("value")
        if isinstance(value, str):
            items.append((value, node.get("name") or value))
        if node.get("children"):
            items.extend(_flatten_tree(node["children"]))
    return items


def enumeration_values(data_type: DataType | str, data_option: dict) -> List[Tuple[str, str]]:
    """Return ``(value, label)`` pairs of an enumeration, sorted by value."""
    options = data_option.get("options")
    if parse_data_type(data_type) in TREE_TYPES and isinstance(options, list):
        pairs = _flatten_tree(options)
    elif isinstance(options, dict):
        pairs = [(_option_key(k), str(v)) for k, v in options.items()]
    elif isinstance(options, list):
        pairs = []
        for opt in options:
            if isinstance(opt, dict) and "value" in opt:
                pairs.append((_option_key(opt["value"]), str(opt.get("name") or opt.get("label") or opt["value"])))
            else:
                pairs.append((_option_key(opt), str(opt)))
    else:
        pairs = []
    return sorted(dict(pairs).items())


def _option_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
