"""Per-viewer screen visibility from wildcard and permission-scoped rules.

Rules live under ``definition.screens[screen][key]`` where ``key`` is either the
wildcard ``-all-`` or a permission name. The effective record for a viewer is
built in layers:

1. the wildcard rule, if any (never skipped, even next to specific rules);
2. every rule whose permission the viewer holds, in precedence order
   (``admin`` scoped permissions first, then the rest, alphabetical within
   each group), merged key by key;
3. engine defaults for keys no layer set (``shown=True``).

Boolean flags are permissive while merging: once a layer set a flag to
``True`` a later ``False`` leaves it ``True``. Every other key takes the value
of the last layer that carries it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from attribute_errors import Issue, issue


WILDCARD = "-all-"
DEFAULT_SHOWN = True


@dataclass(frozen=True)
class Viewer:
    permissions: Tuple[str, ...] = ()
    user_id: str | None = None

    def has_permission(self, name: str) -> bool:
        for held in self.permissions:
            if held == name or name.startswith(f"{held}."):
                return True
        return False


def as_viewer(viewer: Any) -> Any:
    """Accept a permission-store viewer, a plain collection of names, or ``None``."""
    if viewer is None:
        return Viewer()
    if hasattr(viewer, "has_permission"):
        return viewer
    if isinstance(viewer, str):
        return Viewer((viewer,))
    if isinstance(viewer, (set, frozenset, list, tuple)):
        return Viewer(tuple(sorted(set(viewer))))
    raise TypeError(f"Unsupported viewer: {type(viewer).__name__}")


@dataclass
class VisibilityRule:
    shown: bool | None = None
    item_class: str | None = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | None) -> "VisibilityRule":
        data = dict(data or {})
        shown = data.pop("shown", None)
        item_class = data.pop("item_class", None)
        return cls(shown=shown, item_class=item_class, extra=copy.deepcopy(data))

    def to_dict(self) -> dict:
        result = copy.deepcopy(self.extra)
        if self.shown is not None:
            result["shown"] = self.shown
        if self.item_class is not None:
            result["item_class"] = self.item_class
        return result

    def merged(self, other: "VisibilityRule") -> "VisibilityRule":
        result = VisibilityRule(self.shown, self.item_class, copy.deepcopy(self.extra))
        if other.shown is not None:
            result.shown = _merge_value(result.shown, other.shown)
        if other.item_class is not None:
            result.item_class = other.item_class
        for key, value in other.extra.items():
            result.extra[key] = _merge_value(result.extra.get(key), copy.deepcopy(value))
        return result

    def with_defaults(self) -> "VisibilityRule":
        shown = DEFAULT_SHOWN if self.shown is None else self.shown
        return VisibilityRule(shown, self.item_class, copy.deepcopy(self.extra))


def _merge_value(current: Any, incoming: Any) -> Any:
    if current is True and isinstance(incoming, bool):
        return True
    return incoming


def permission_precedence(permission: str) -> Tuple[int, str]:
    scope = permission.split(".", 1)[0]
    return (0 if scope == "admin" else 1, permission)


def applicable_permissions(rules: dict, viewer: Any) -> List[str]:
    viewer = as_viewer(viewer)
    keys = sorted((k for k in rules if k != WILDCARD), key=permission_precedence)
    # lookup failures from the permission store propagate to the caller
    return [key for key in keys if viewer.has_permission(key)]


def effective_visibility(definition: Any, screen: str, viewer: Any) -> VisibilityRule:
    screens = getattr(definition, "screens", None) or {}
    rules = screens.get(screen) or {}
    result = VisibilityRule.from_dict(rules.get(WILDCARD))
    for permission in applicable_permissions(rules, viewer):
        result = result.merged(VisibilityRule.from_dict(rules[permission]))
    return result.with_defaults()


def effective_screens(definition: Any, viewer: Any) -> Dict[str, dict]:
    viewer = as_viewer(viewer)
    screens = getattr(definition, "screens", None) or {}
    return {screen: effective_visibility(definition, screen, viewer).to_dict() for screen in screens}


def normalize_screens(screens: Any) -> tuple[Dict[str, Dict[str, dict]], List[Issue]]:
    issues: List[Issue] = []
    if screens is None:
        return {}, issues
    if not isinstance(screens, dict):
        return {}, [issue("SCREENS_INVALID", "screens must be an object", "screens")]
    normalized: Dict[str, Dict[str, dict]] = {}
    for screen, rules in screens.items():
        screen_key = str(screen)
        path = f"screens.{screen_key}"
        if rules is None:
            normalized[screen_key] = {}
            continue
        if not isinstance(rules, dict):
            issues.append(issue("SCREENS_INVALID", "screen rules must be an object", path))
            continue
        bucket: Dict[str, dict] = {}
        for key, rule in rules.items():
            rule_key = str(key)
            rule_path = f"{path}.{rule_key}"
            if not isinstance(rule, dict):
                issues.append(issue("SCREENS_INVALID", "visibility rule must be an object", rule_path))
                continue
            rule = {str(k): copy.deepcopy(v) for k, v in rule.items()}
            if "shown" in rule and not isinstance(rule["shown"], bool):
                issues.append(issue("SCREENS_INVALID", "shown must be a boolean", f"{rule_path}.shown"))
            if rule.get("item_class") is not None and not isinstance(rule["item_class"], str):
                issues.append(issue("SCREENS_INVALID", "item_class must be a string", f"{rule_path}.item_class"))
            bucket[rule_key] = rule
        normalized[screen_key] = bucket
    return normalized, issues
