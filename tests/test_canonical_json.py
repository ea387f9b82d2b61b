import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from strategist.canonical_json import CanonicalJsonTypeError, canonical_dumps


class TestCanonicalJson(unittest.TestCase):
    def test_key_ordering_is_deterministic(self) -> None:
        a = {"b": 1, "a": 2}
        b = {"a": 2, "b": 1}
        self.assertEqual(canonical_dumps(a), canonical_dumps(b))

    def test_nested_dict_ordering(self) -> None:
        obj = {"objects": [{"label": "B", "id": "1"}], "version": "1"}
        expected = '{"objects":[{"id":"1","label":"B"}],"version":"1"}'
        self.assertEqual(canonical_dumps(obj), expected)

    def test_tuples_serialize_as_lists(self) -> None:
        self.assertEqual(canonical_dumps({"options": ("gold", "silver")}), '{"options":["gold","silver"]}')

    def test_non_ascii_preserved(self) -> None:
        out = canonical_dumps({"label": "Crédit"})
        self.assertIn("Crédit", out)
        self.assertNotIn("\\u", out)

    def test_unsupported_type_raises(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError):
            canonical_dumps({"bad": {1, 2, 3}})

    def test_non_string_key_raises(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError):
            canonical_dumps({1: "a"})

    def test_reject_non_finite(self) -> None:
        for value in (float("nan"), float("inf"), float("-inf")):
            with self.assertRaises(ValueError):
                canonical_dumps({"bad": value})

    def test_numeric_distinction(self) -> None:
        self.assertNotEqual(canonical_dumps({"n": 1}), canonical_dumps({"n": 1.0}))


if __name__ == "__main__":
    unittest.main()
