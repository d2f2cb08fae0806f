import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from attribute_definition import AttributeDefinition
from visibility_merge import (
    Viewer,
    VisibilityRule,
    applicable_permissions,
    as_viewer,
    effective_screens,
    effective_visibility,
    normalize_screens,
)


def _definition(screens):
    return AttributeDefinition(object_type="Ticket", name="test_permissions", screens=screens)


AGENT_ADMIN = Viewer(("admin.organization", "ticket.agent"), user_id="u1")


class TestViewer(unittest.TestCase):
    def test_hierarchical_permission(self) -> None:
        viewer = Viewer(("admin",))
        self.assertTrue(viewer.has_permission("admin.organization"))
        self.assertTrue(viewer.has_permission("admin"))
        self.assertFalse(viewer.has_permission("administrator"))
        self.assertFalse(Viewer(("admin.organization",)).has_permission("admin"))

    def test_as_viewer(self) -> None:
        self.assertEqual(as_viewer(None).permissions, ())
        self.assertEqual(as_viewer("ticket.agent").permissions, ("ticket.agent",))
        self.assertEqual(as_viewer(["b", "a", "b"]).permissions, ("a", "b"))
        self.assertIs(as_viewer(AGENT_ADMIN), AGENT_ADMIN)
        with self.assertRaises(TypeError):
            as_viewer(42)


class TestEffectiveVisibility(unittest.TestCase):
    def test_held_rules_merge_permissively(self) -> None:
        definition = _definition({"create": {"admin.organization": {"shown": True}, "ticket.agent": {"shown": False}}})
        rule = effective_visibility(definition, "create", AGENT_ADMIN)
        self.assertIs(rule.shown, True)

    def test_wildcard_true_survives_false_role_rules(self) -> None:
        definition = _definition(
            {"create": {"-all-": {"shown": True}, "admin.organization": {"shown": False}, "ticket.agent": {"shown": False}}}
        )
        self.assertIs(effective_visibility(definition, "create", AGENT_ADMIN).shown, True)

    def test_non_boolean_values_carry_through(self) -> None:
        definition = _definition(
            {
                "create": {
                    "-all-": {"shown": True, "item_class": "column"},
                    "admin.organization": {"shown": False},
                    "ticket.agent": {"shown": False},
                }
            }
        )
        rule = effective_visibility(definition, "create", AGENT_ADMIN)
        self.assertEqual(rule.item_class, "column")
        self.assertEqual(rule.to_dict(), {"shown": True, "item_class": "column"})

    def test_wildcard_applies_without_permissions(self) -> None:
        definition = _definition({"edit": {"-all-": {"shown": False}, "ticket.agent": {"shown": True}}})
        self.assertIs(effective_visibility(definition, "edit", None).shown, False)
        self.assertIs(effective_visibility(definition, "edit", ["ticket.agent"]).shown, True)

    def test_unheld_rules_are_ignored(self) -> None:
        definition = _definition({"edit": {"ticket.customer": {"shown": False}}})
        self.assertIs(effective_visibility(definition, "edit", AGENT_ADMIN).shown, True)

    def test_missing_screen_uses_defaults(self) -> None:
        self.assertEqual(effective_visibility(_definition({}), "view", AGENT_ADMIN).to_dict(), {"shown": True})

    def test_later_rule_wins_for_non_boolean_keys(self) -> None:
        definition = _definition(
            {"edit": {"admin.organization": {"item_class": "half"}, "ticket.agent": {"item_class": "full"}}}
        )
        self.assertEqual(effective_visibility(definition, "edit", AGENT_ADMIN).item_class, "full")

    def test_extra_keys_merge(self) -> None:
        definition = _definition({"edit": {"-all-": {"null": False}, "ticket.agent": {"null": True, "hint": "x"}}})
        rule = effective_visibility(definition, "edit", AGENT_ADMIN)
        self.assertEqual(rule.extra, {"null": True, "hint": "x"})

    def test_admin_scope_precedes(self) -> None:
        rules = {"ticket.agent": {}, "admin.organization": {}, "-all-": {}, "ticket.customer": {}}
        self.assertEqual(applicable_permissions(rules, AGENT_ADMIN), ["admin.organization", "ticket.agent"])

    def test_effective_screens(self) -> None:
        definition = _definition({"create": {"ticket.agent": {"shown": False}}, "edit": {}})
        self.assertEqual(
            effective_screens(definition, AGENT_ADMIN),
            {"create": {"shown": False}, "edit": {"shown": True}},
        )

    def test_rule_round_trip_keeps_unknown_keys(self) -> None:
        rule = VisibilityRule.from_dict({"shown": False, "item_class": "x", "null": True})
        self.assertEqual(rule.to_dict(), {"shown": False, "item_class": "x", "null": True})


class TestNormalizeScreens(unittest.TestCase):
    def test_keys_stringified(self) -> None:
        screens, issues = normalize_screens({"create": {"-all-": {"shown": True}}, "edit": None})
        self.assertEqual(issues, [])
        self.assertEqual(screens, {"create": {"-all-": {"shown": True}}, "edit": {}})

    def test_invalid_shown(self) -> None:
        _, issues = normalize_screens({"create": {"-all-": {"shown": "yes"}}})
        self.assertEqual([i["path"] for i in issues], ["screens.create.-all-.shown"])

    def test_invalid_shape(self) -> None:
        _, issues = normalize_screens(["create"])
        self.assertEqual(issues[0]["code"], "SCREENS_INVALID")


if __name__ == "__main__":
    unittest.main()
