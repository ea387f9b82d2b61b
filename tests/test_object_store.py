import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from association_graph import AssociationGraph
from object_store import ObjectStore
from schema_types import derive_api_name
from template_catalog import get_template


class TestDeriveApiName(unittest.TestCase):
    def test_examples(self) -> None:
        self.assertEqual(derive_api_name("Loan Application"), "loan_application")
        self.assertEqual(derive_api_name("  Branch / ATM  "), "branch_atm")
        self.assertEqual(derive_api_name("401k Plan"), "obj_401k_plan")
        self.assertEqual(derive_api_name("!!!"), "obj")


class TestObjectStore(unittest.TestCase):
    def setUp(self) -> None:
        self.store = ObjectStore()

    def _create(self, label: str = "Loan Application", **extra) -> dict:
        result = self.store.create_object({"label": label, **extra})
        self.assertTrue(result["ok"], result["errors"])
        return result["object"]

    def test_create_assigns_ids_and_api_name(self) -> None:
        obj = self._create(fields=[{"id": "caller", "name": "amount", "type": "number"}])
        self.assertEqual(obj["api_name"], "loan_application")
        self.assertEqual(obj["icon"], "Database")
        self.assertFalse(obj["is_template"])
        self.assertNotEqual(obj["fields"][0]["id"], "caller")
        self.assertEqual(obj["fields"][0]["label"], "amount")
        self.assertEqual(self.store.get_object(obj["id"]), obj)

    def test_create_requires_label(self) -> None:
        result = self.store.create_object({"label": "   "})
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "VALUE_REQUIRED")
        self.assertIsNone(result["object"])

    def test_api_name_collision_rejected(self) -> None:
        self._create("Loan Application")
        result = self.store.create_object({"label": "loan-application"})
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "API_NAME_TAKEN")
        self.assertEqual(result["errors"][0]["message"], "An object with this name already exists")
        self.assertEqual(len(self.store.list_objects()), 1)

    def test_invalid_field_rejected(self) -> None:
        result = self.store.create_object({"label": "Account", "fields": [{"name": "1st", "type": "text"}]})
        self.assertEqual(result["errors"][0]["code"], "FIELD_NAME_INVALID")
        result = self.store.create_object({"label": "Account", "fields": [{"name": "tier", "type": "enum"}]})
        self.assertEqual(result["errors"][0]["code"], "OPTIONS_REQUIRED")
        result = self.store.create_object({"label": "Account", "fields": [{"name": "tier", "type": "colour"}]})
        self.assertEqual(result["errors"][0]["code"], "ENUM_INVALID")
        result = self.store.create_object(
            {"label": "Account", "fields": [{"name": "Tier", "type": "text"}, {"name": "tier", "type": "text"}]}
        )
        self.assertEqual(result["errors"][0]["code"], "FIELD_NAME_DUPLICATE")
        self.assertEqual(self.store.list_objects(), [])

    def test_create_from_template(self) -> None:
        result = self.store.create_from_template("tpl_loan_application")
        self.assertTrue(result["ok"])
        obj = result["object"]
        self.assertTrue(obj["is_template"])
        self.assertEqual(obj["template_id"], "tpl_loan_application")
        self.assertEqual(len(obj["fields"]), 7)
        self.assertFalse(any(f["id"].startswith("tpl_") for f in obj["fields"]))
        template = get_template("tpl_loan_application")
        self.assertEqual(
            [(f["name"], f["type"]) for f in obj["fields"]],
            [(bp.name, bp.type.value) for bp in template.fields],
        )

        again = self.store.create_from_template("tpl_loan_application", {"label": "Mortgage Application"})
        self.assertTrue(again["ok"])
        ids = {f["id"] for f in obj["fields"]} & {f["id"] for f in again["object"]["fields"]}
        self.assertEqual(ids, set())

    def test_create_from_missing_template(self) -> None:
        result = self.store.create_from_template("tpl_nope")
        self.assertEqual(result["errors"][0]["code"], "TEMPLATE_NOT_FOUND")
        self.assertEqual(result["errors"][0]["kind"], "NotFoundError")

    def test_update_object(self) -> None:
        obj = self._create()
        result = self.store.update_object(obj["id"], {"label": "Home Loan", "icon": "Home"})
        self.assertTrue(result["ok"])
        self.assertEqual(result["object"]["api_name"], "home_loan")
        self.assertEqual(result["object"]["icon"], "Home")
        self.assertEqual(result["object"]["created_at"], obj["created_at"])

    def test_update_rejects_unknown_keys(self) -> None:
        obj = self._create()
        result = self.store.update_object(obj["id"], {"api_name": "hack"})
        self.assertEqual(result["errors"][0]["code"], "PATCH_FIELD_UNKNOWN")
        self.assertEqual(self.store.get_object(obj["id"])["api_name"], "loan_application")

    def test_update_missing_object(self) -> None:
        result = self.store.update_object("missing", {"label": "x"})
        self.assertEqual(result["errors"][0]["code"], "OBJECT_NOT_FOUND")

    def test_duplicate_object(self) -> None:
        obj = self._create(fields=[{"name": "amount", "type": "number"}])
        first = self.store.duplicate_object(obj["id"])["object"]
        second = self.store.duplicate_object(obj["id"])["object"]
        self.assertEqual(first["label"], "Loan Application (Copy)")
        self.assertEqual(first["api_name"], "loan_application_copy")
        self.assertEqual(second["api_name"], "loan_application_copy_2")
        self.assertNotEqual(first["id"], obj["id"])
        self.assertNotEqual(first["fields"][0]["id"], obj["fields"][0]["id"])
        self.assertEqual(first["fields"][0]["name"], "amount")
        self.assertEqual(
            [(f["name"], f["type"], f["required"]) for f in first["fields"]],
            [(f["name"], f["type"], f["required"]) for f in obj["fields"]],
        )
        self.assertEqual(self.store.get_object(obj["id"]), obj)
        self.assertEqual(len(self.store.list_objects()), 3)

    def test_duplicate_missing(self) -> None:
        result = self.store.duplicate_object("missing")
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["kind"], "NotFoundError")

    def test_delete_blocked_by_reference(self) -> None:
        graph = AssociationGraph(self.store)
        a = self._create("Customer")
        b = self._create("Account")
        graph.add_association(a["id"], b["id"], "one-to-many", "holds")
        result = self.store.delete_object(a["id"])
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["kind"], "ReferentialIntegrityError")
        self.assertEqual(result["errors"][0]["detail"]["associations"][0]["label"], "holds")
        self.assertTrue(self.store.has_object(a["id"]))

    def test_delete_and_reinstate_keeps_position(self) -> None:
        ids = [self._create(label)["id"] for label in ("One", "Two", "Three")]
        position = self.store.position_of(ids[1])
        removed = self.store.delete_object(ids[1])["object"]
        self.assertEqual([o["id"] for o in self.store.list_objects()], [ids[0], ids[2]])
        self.store.reinstate(removed, position)
        self.assertEqual([o["id"] for o in self.store.list_objects()], ids)

    def test_reserved_api_name_blocks_create_until_released(self) -> None:
        removed = self.store.delete_object(self._create("Loan")["id"])["object"]
        self.store.reserve_api_name(removed["id"], removed["api_name"])
        self.assertEqual(self.store.create_object({"label": "LOAN"})["errors"][0]["code"], "API_NAME_TAKEN")
        self.store.release_api_name(removed["id"])
        self.assertTrue(self.store.create_object({"label": "Loan"})["ok"])

    def test_replace_object_keeps_order_and_changes_id(self) -> None:
        ids = [self._create(label)["id"] for label in ("One", "Two")]
        data = self.store.get_object(ids[0])
        data["id"] = "server-id"
        result = self.store.replace_object(ids[0], data)
        self.assertTrue(result["ok"])
        self.assertEqual([o["id"] for o in self.store.list_objects()], ["server-id", ids[1]])

    def test_replace_object_rejects_api_name_clash(self) -> None:
        one = self._create("One")
        self._create("Two")
        data = dict(one, api_name="two")
        result = self.store.replace_object(one["id"], data)
        self.assertEqual(result["errors"][0]["code"], "API_NAME_TAKEN")
        self.assertEqual(self.store.get_object(one["id"])["api_name"], "one")


class TestObjectFields(unittest.TestCase):
    def setUp(self) -> None:
        self.store = ObjectStore()
        self.obj = self.store.create_object(
            {"label": "Card", "fields": [{"name": "tier", "type": "enum", "options": ["gold", {"value": "silver"}]}]}
        )["object"]
        self.tier_id = self.obj["fields"][0]["id"]

    def test_enum_option_dicts_accepted(self) -> None:
        self.assertEqual(self.obj["fields"][0]["options"], ["gold", "silver"])

    def test_add_field(self) -> None:
        result = self.store.add_field(self.obj["id"], {"name": "limit", "type": "number", "required": True})
        self.assertTrue(result["ok"])
        self.assertTrue(result["field"]["required"])
        self.assertEqual(len(self.store.get_object(self.obj["id"])["fields"]), 2)

    def test_add_field_duplicate_name(self) -> None:
        result = self.store.add_field(self.obj["id"], {"name": "TIER", "type": "text"})
        self.assertEqual(result["errors"][0]["code"], "FIELD_NAME_DUPLICATE")
        self.assertEqual(len(self.store.get_object(self.obj["id"])["fields"]), 1)

    def test_update_field_type_clears_options(self) -> None:
        result = self.store.update_field(self.obj["id"], self.tier_id, {"type": "text"})
        self.assertTrue(result["ok"])
        self.assertEqual(result["field"]["options"], [])
        self.assertEqual(result["field"]["id"], self.tier_id)

    def test_update_field_validates(self) -> None:
        result = self.store.update_field(self.obj["id"], self.tier_id, {"options": []})
        self.assertEqual(result["errors"][0]["code"], "OPTIONS_REQUIRED")
        missing = self.store.update_field(self.obj["id"], "nope", {"label": "x"})
        self.assertEqual(missing["errors"][0]["code"], "FIELD_NOT_FOUND")

    def test_remove_field(self) -> None:
        result = self.store.remove_field(self.obj["id"], self.tier_id)
        self.assertTrue(result["ok"])
        self.assertEqual(self.store.get_object(self.obj["id"])["fields"], [])
        again = self.store.remove_field(self.obj["id"], self.tier_id)
        self.assertEqual(again["errors"][0]["code"], "FIELD_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
