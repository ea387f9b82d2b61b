import asyncio
import copy
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from schema_coordinator import SchemaMutationCoordinator
from strategist.schema_hash import schema_hash


def _populated() -> SchemaMutationCoordinator:
    coord = SchemaMutationCoordinator()
    customer = coord.create_object({"label": "Customer", "fields": [{"name": "segment", "type": "enum", "options": ["retail", "business"]}]})
    loan = coord.create_from_template("tpl_loan_application")
    coord.add_association(customer["object"]["id"], loan["object"]["id"], "one-to-many", "applies for")
    return coord


class TestSchemaExport(unittest.TestCase):
    def test_export_shape(self) -> None:
        export = _populated().export_schema()
        self.assertEqual(export["version"], "1")
        self.assertEqual(len(export["objects"]), 2)
        self.assertEqual(len(export["associations"]), 1)
        self.assertEqual(export["schema_hash"], schema_hash(export))

    def test_import_into_fresh_coordinator(self) -> None:
        export = _populated().export_schema()
        target = SchemaMutationCoordinator()
        result = target.import_schema(copy.deepcopy(export))
        self.assertTrue(result["ok"], result["errors"])
        self.assertEqual(result["schema"], export)
        self.assertEqual(target.export_schema(), export)

    def test_import_without_hash_is_accepted(self) -> None:
        export = _populated().export_schema()
        del export["schema_hash"]
        self.assertTrue(SchemaMutationCoordinator().import_schema(export)["ok"])

    def test_tampered_export_rejected(self) -> None:
        export = _populated().export_schema()
        export["objects"][0]["label"] = "Tampered"
        target = _populated()
        before = target.export_schema()
        result = target.import_schema(export)
        self.assertFalse(result["ok"])
        self.assertEqual(result["errors"][0]["code"], "SCHEMA_HASH_MISMATCH")
        self.assertIsNone(result["schema"])
        self.assertEqual(target.export_schema(), before)

    def test_unsupported_version(self) -> None:
        export = _populated().export_schema()
        export["version"] = "2"
        result = SchemaMutationCoordinator().import_schema(export)
        self.assertEqual(result["errors"][0]["code"], "EXPORT_VERSION_UNSUPPORTED")

    def test_dangling_association_leaves_model_untouched(self) -> None:
        export = _populated().export_schema()
        export["associations"][0]["target_object_id"] = "ghost"
        del export["schema_hash"]
        target = _populated()
        before = target.export_schema()
        result = target.import_schema(export)
        self.assertEqual(result["errors"][0]["kind"], "NotFoundError")
        self.assertEqual(target.export_schema(), before)

    def test_duplicate_api_names_rejected(self) -> None:
        export = _populated().export_schema()
        clone = dict(export["objects"][0], id="other-id")
        export["objects"].append(clone)
        del export["schema_hash"]
        result = SchemaMutationCoordinator().import_schema(export)
        self.assertEqual(result["errors"][0]["code"], "API_NAME_TAKEN")

    def test_non_list_sections_rejected(self) -> None:
        result = SchemaMutationCoordinator().import_schema({"version": "1", "objects": {"a": 1}})
        self.assertEqual(result["errors"][0]["code"], "TYPE_INVALID")


class _NeverReplies:
    def __init__(self) -> None:
        self.gate = asyncio.Event()

    async def duplicate_custom_object(self, object_id: str) -> dict:
        await self.gate.wait()
        return {"data": None, "error": "stopped"}

    async def delete_custom_object(self, object_id: str) -> dict:
        await self.gate.wait()
        return {"data": None, "error": "stopped"}


class TestImportWhilePending(unittest.IsolatedAsyncioTestCase):
    async def test_import_refused_while_pending(self) -> None:
        persistence = _NeverReplies()
        coord = SchemaMutationCoordinator(persistence)
        source = coord.create_object({"label": "Customer"})["object"]
        task = asyncio.ensure_future(coord.duplicate_object_optimistic(source["id"]))
        await asyncio.sleep(0)
        result = coord.import_schema({"version": "1", "objects": [], "associations": []})
        self.assertEqual(result["errors"][0]["kind"], "BusyError")
        self.assertEqual(len(coord.objects.list_objects()), 2)
        persistence.gate.set()
        await task
        self.assertTrue(coord.import_schema({"version": "1", "objects": [], "associations": []})["ok"])
        self.assertEqual(coord.pending_ids(), [])


if __name__ == "__main__":
    unittest.main()
