import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import InMemorySchemaBackend, MemoryPermissionStore
from attribute_errors import PermissionLookupError, ValidationError
from attribute_store import AttributeStore
from object_manager import ObjectManager


def _text_attribute(name, screens):
    return {
        "name": name,
        "display": name,
        "data_type": "text",
        "data_option": {"type": "text", "maxlength": 200, "null": True, "default": ""},
        "screens": screens,
        "position": 20,
    }


class TestAttributePermissions(unittest.TestCase):
    def setUp(self) -> None:
        self.manager = ObjectManager(AttributeStore(), InMemorySchemaBackend())
        self.permissions = MemoryPermissionStore()
        self.permissions.grant("agent_admin", "admin.organization")
        self.permissions.grant("agent_admin", "ticket.agent")
        self.permissions.assign("user-1", "agent_admin")
        self.viewer = self.permissions.viewer_for("user-1")

    def _screen(self, name):
        for attribute in self.manager.by_object("Ticket", self.viewer):
            if attribute["name"] == name:
                return attribute["screen"]
        self.fail(f"attribute {name} not listed")

    def test_merges_attribute_permissions(self) -> None:
        screens = {"create": {"admin.organization": {"shown": True}, "ticket.agent": {"shown": False}}}
        self.manager.add("Ticket", _text_attribute("test_permissions", screens))
        self.assertTrue(self.manager.migration_execute())
        self.assertIs(self._screen("test_permissions")["create"]["shown"], True)

    def test_wildcard_overrides_role_rules(self) -> None:
        screens = {
            "create": {
                "-all-": {"shown": True},
                "admin.organization": {"shown": False},
                "ticket.agent": {"shown": False},
            }
        }
        self.manager.add("Ticket", _text_attribute("test_permissions_all", screens))
        self.assertTrue(self.manager.migration_execute())
        self.assertIs(self._screen("test_permissions_all")["create"]["shown"], True)

    def test_handles_non_boolean_values(self) -> None:
        screens = {
            "create": {
                "-all-": {"shown": True, "item_class": "column"},
                "admin.organization": {"shown": False},
                "ticket.agent": {"shown": False},
            }
        }
        self.manager.add("Ticket", _text_attribute("test_permissions_item", screens))
        self.assertTrue(self.manager.migration_execute())
        self.assertEqual(self._screen("test_permissions_item")["create"]["item_class"], "column")

    def test_effective_visibility_for_single_screen(self) -> None:
        screens = {"edit": {"ticket.customer": {"shown": False}}}
        self.manager.add("Ticket", _text_attribute("customer_note", screens))
        customer = self.permissions
        customer.grant("customer", "ticket.customer")
        customer.assign("user-2", "customer")
        rule = self.manager.effective_visibility("Ticket", "customer_note", "edit", customer.viewer_for("user-2"))
        self.assertIs(rule.shown, False)
        rule = self.manager.effective_visibility("Ticket", "customer_note", "edit", self.viewer)
        self.assertIs(rule.shown, True)

    def test_effective_visibility_unknown_attribute(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.manager.effective_visibility("Ticket", "missing", "edit", self.viewer)
        self.assertEqual(ctx.exception.code, "NOT_FOUND")

    def test_unknown_user(self) -> None:
        with self.assertRaises(PermissionLookupError):
            self.permissions.viewer_for("nobody")

    def test_list_validates_object_type(self) -> None:
        with self.assertRaises(ValidationError):
            self.manager.list("Invoice")


if __name__ == "__main__":
    unittest.main()
