"""Tests for structural comparison and metadata stripping."""

from __future__ import annotations

import copy

import pytest

from contract_guard.utils.comparator import (
    DEFAULT_META_FIELDS,
    Difference,
    DiffType,
    deep_compare,
    strip_meta_fields,
)


@pytest.fixture
def sample_resource():
    """A resource body as returned by a GET."""
    return {
        "id": "ABC123",
        "name": "orders",
        "system": "SAP",
        "enabled": True,
        "columns": [
            {"name": "order_id", "type": "int"},
            {"name": "amount", "type": "decimal"},
        ],
        "options": {"delimiter": ",", "header": None},
        "createdAt": "2024-01-01T00:00:00Z",
    }


class TestDeepCompareEquality:
    """Test that equal values produce no differences."""

    @pytest.mark.parametrize(
        "value",
        [None, 0, 1.5, "text", True, [], {}, [1, [2, [3]]], {"a": {"b": {"c": [None]}}}],
    )
    def test_value_equals_itself(self, value):
        """Test any value compared with itself yields no differences."""
        assert deep_compare(value, value) == []

    def test_resource_equals_copy(self, sample_resource):
        """Test a deep copy of a resource compares equal."""
        assert deep_compare(sample_resource, copy.deepcopy(sample_resource)) == []

    def test_key_order_is_irrelevant(self):
        """Test objects with the same keys in a different order are equal."""
        assert deep_compare({"a": 1, "b": 2}, {"b": 2, "a": 1}) == []


class TestDeepCompareDifferences:
    """Test detection of added, removed and changed values."""

    def test_changed_primitive(self):
        """Test a changed nested value is reported with its dotted path."""
        diffs = deep_compare({"spec": {"port": 80}}, {"spec": {"port": 8080}})
        assert diffs == [Difference("spec.port", 80, 8080, DiffType.CHANGED)]

    def test_added_key(self):
        """Test a key only present in the actual value is ADDED."""
        diffs = deep_compare({"a": 1}, {"a": 1, "b": 2})
        assert diffs == [Difference("b", None, 2, DiffType.ADDED)]

    def test_removed_key(self):
        """Test a key only present in the expected value is REMOVED."""
        diffs = deep_compare({"a": 1, "b": 2}, {"a": 1})
        assert diffs == [Difference("b", 2, None, DiffType.REMOVED)]

    def test_added_and_removed_are_symmetric(self):
        """Test swapping arguments turns ADDED into REMOVED."""
        forward = deep_compare({"a": 1}, {"a": 1, "extra": "x"})
        backward = deep_compare({"a": 1, "extra": "x"}, {"a": 1})
        assert [d.type for d in forward] == [DiffType.ADDED]
        assert [d.type for d in backward] == [DiffType.REMOVED]
        assert forward[0].path == backward[0].path == "extra"

    def test_non_empty_difference_is_detected_both_ways(self):
        """Test unequal values produce differences in both directions."""
        a = {"name": "x", "tags": ["a"]}
        b = {"name": "y", "tags": ["a", "b"]}
        assert deep_compare(a, b)
        assert deep_compare(b, a)

    def test_null_against_value(self):
        """Test null against a value is a CHANGED difference."""
        diffs = deep_compare({"a": None}, {"a": "set"})
        assert diffs == [Difference("a", None, "set", DiffType.CHANGED)]

    def test_root_level_difference(self):
        """Test differing top-level primitives use the root path."""
        diffs = deep_compare(1, 2)
        assert diffs == [Difference("root", 1, 2, DiffType.CHANGED)]

    def test_boolean_is_not_number(self):
        """Test True and 1 are different JSON values."""
        diffs = deep_compare({"flag": True}, {"flag": 1})
        assert len(diffs) == 1
        assert diffs[0].type == DiffType.CHANGED

    def test_array_against_object(self):
        """Test an array compared with an object is a single CHANGED difference."""
        diffs = deep_compare({"a": [1]}, {"a": {"0": 1}})
        assert diffs == [Difference("a", [1], {"0": 1}, DiffType.CHANGED)]


class TestDeepCompareArrays:
    """Test array comparison."""

    def test_length_change_is_reported(self):
        """Test a length change yields a length difference and element differences."""
        diffs = deep_compare({"tags": ["a", "b"]}, {"tags": ["a"]})
        assert diffs[0] == Difference("tags.length", 2, 1, DiffType.CHANGED)
        assert diffs[1] == Difference("tags[1]", "b", None, DiffType.CHANGED)
        assert len(diffs) == 2

    def test_top_level_array_paths(self):
        """Test top-level array paths have no leading dot."""
        diffs = deep_compare([1, 2], [1, 3])
        assert diffs == [Difference("[1]", 2, 3, DiffType.CHANGED)]

    def test_nested_array_of_objects(self, sample_resource):
        """Test a changed field inside an array element uses bracket notation."""
        changed = copy.deepcopy(sample_resource)
        changed["columns"][1]["type"] = "float"
        diffs = deep_compare(sample_resource, changed)
        assert diffs == [Difference("columns[1].type", "decimal", "float", DiffType.CHANGED)]

    def test_output_is_deterministic(self):
        """Test repeated comparisons produce identical output."""
        a = {"z": 1, "a": [1, 2, 3], "m": {"x": 1}}
        b = {"m": {"y": 2}, "a": [1], "q": True}
        assert deep_compare(a, b) == deep_compare(a, b)


class TestStripMetaFields:
    """Test removal of volatile fields."""

    def test_default_fields_removed(self, sample_resource):
        """Test id and timestamps are removed at the top level."""
        stripped = strip_meta_fields(sample_resource)
        assert "id" not in stripped
        assert "createdAt" not in stripped
        assert stripped["name"] == "orders"

    def test_nested_fields_removed(self):
        """Test meta fields are removed inside nested objects and arrays."""
        data = {"items": [{"_id": 1, "value": "a"}, {"updated_at": "x", "value": "b"}]}
        assert strip_meta_fields(data) == {"items": [{"value": "a"}, {"value": "b"}]}

    def test_extra_fields(self):
        """Test caller-supplied fields are removed as well."""
        data = {"id": 1, "etag": "abc", "name": "n"}
        assert strip_meta_fields(data, ["etag"]) == {"name": "n"}

    def test_input_not_modified(self, sample_resource):
        """Test the input value is left untouched."""
        strip_meta_fields(sample_resource)
        assert sample_resource["id"] == "ABC123"
        assert "createdAt" in sample_resource

    def test_idempotent(self, sample_resource):
        """Test stripping twice equals stripping once."""
        once = strip_meta_fields(sample_resource)
        assert strip_meta_fields(once) == once

    def test_primitives_pass_through(self):
        """Test non-container values are returned unchanged."""
        assert strip_meta_fields("id") == "id"
        assert strip_meta_fields(None) is None

    def test_recreated_resource_compares_equal(self, sample_resource):
        """Test a recreated copy with new id and timestamps compares equal after stripping."""
        recreated = dict(sample_resource, id="NEW999", createdAt="2025-06-01T00:00:00Z", updatedAt="now")
        assert deep_compare(strip_meta_fields(sample_resource), strip_meta_fields(recreated)) == []

    def test_default_field_list(self):
        """Test the default list covers identifier and timestamp fields."""
        for name in ("id", "_id", "createdAt", "updatedAt", "created_at", "updated_at", "timestamp"):
            assert name in DEFAULT_META_FIELDS
