"""
Unit tests for keys and the key codec.

Tests cover:
- Key construction and validation
- Completeness rules
- Wire encoding and decoding
- Malformed wire keys
"""

import pytest

from sdk.datastore_sdk.errors import InvalidArgumentError, ProtocolError
from sdk.datastore_sdk.key import (
    Key,
    PathElement,
    is_key_complete,
    key_from_wire,
    key_to_wire,
)


class TestKeyConstruction:
    """Tests for building keys."""

    def test_from_path_with_id(self):
        """Integer identifiers become ids."""
        key = Key.from_path("Company", 123)

        assert key.kind == "Company"
        assert key.id == 123
        assert key.name is None
        assert key.namespace is None

    def test_from_path_with_name(self):
        """String identifiers become names."""
        key = Key.from_path("Product", "Computer")

        assert key.name == "Computer"
        assert key.id is None
        assert key.id_or_name == "Computer"

    def test_trailing_kind_is_incomplete(self):
        """A bare trailing kind yields an incomplete key."""
        key = Key.from_path("Company", 1, "Employee")

        assert len(key.path) == 2
        assert key.kind == "Employee"
        assert not key.is_complete

    def test_namespace(self):
        """Namespace is kept on the key."""
        key = Key.from_path("Company", None, namespace="ns-test")

        assert key.namespace == "ns-test"

    def test_empty_namespace_is_default(self):
        """Empty namespace is the same as no namespace."""
        assert Key.from_path("A", 1, namespace="") == Key.from_path("A", 1)

    def test_parent(self):
        """Parent drops the last element."""
        key = Key.from_path("Company", 1, "Employee", "bob", namespace="ns")

        assert key.parent == Key.from_path("Company", 1, namespace="ns")
        assert key.parent.parent is None

    def test_child(self):
        """Child appends an element."""
        key = Key.from_path("Company", 1).child("Employee")

        assert key.flat_path == ("Company", 1, "Employee", None)

    def test_empty_path_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Key(())

    def test_incomplete_ancestor_rejected(self):
        """Only the last element may be incomplete."""
        with pytest.raises(InvalidArgumentError):
            Key.from_path("Company", None, "Employee", 5)

    def test_invalid_id_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Key.from_path("Company", 0)
        with pytest.raises(InvalidArgumentError):
            Key.from_path("Company", True)

    def test_empty_kind_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Key.from_path("", 1)

    def test_id_and_name_rejected(self):
        with pytest.raises(InvalidArgumentError):
            PathElement("Company", id=1, name="acme")

    def test_keys_are_hashable_values(self):
        """Equal keys hash equal."""
        a = Key.from_path("Company", 1, namespace="ns")
        b = Key.from_path("Company", 1, namespace="ns")

        assert a == b
        assert len({a, b}) == 1


class TestCompleteness:
    """Tests for key completeness."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            (("Company", 1), True),
            (("Company", "acme"), True),
            (("Company", None), False),
            (("Company", 1, "Employee", 2), True),
            (("Company", 1, "Employee", None), False),
            (("A", "a", "B", "b", "C", None), False),
            (("A", "a", "B", "b", "C", 3), True),
        ],
    )
    def test_only_last_element_decides(self, path, expected):
        """Completeness depends on the last element only."""
        key = Key.from_path(*path)

        assert is_key_complete(key) is expected
        assert key.is_complete is expected

    def test_complete_with_returns_new_key(self):
        """Completing a key leaves the original untouched."""
        incomplete = Key.from_path("Company", 1, "Employee", namespace="ns")

        complete = incomplete.complete_with(42)

        assert complete == Key.from_path("Company", 1, "Employee", 42, namespace="ns")
        assert not incomplete.is_complete

    def test_complete_with_on_complete_key(self):
        with pytest.raises(InvalidArgumentError):
            Key.from_path("Company", 1).complete_with(2)


class TestKeyCodec:
    """Tests for key wire encoding."""

    def test_encode_id_as_string(self):
        """Ids travel as decimal strings."""
        wire = key_to_wire(Key.from_path("Company", 123))

        assert wire == {"pathElement": [{"kind": "Company", "id": "123"}]}

    def test_encode_namespace_and_incomplete(self):
        wire = key_to_wire(Key.from_path("Company", "acme", "Employee", namespace="ns"))

        assert wire == {
            "partitionId": {"namespace": "ns"},
            "pathElement": [
                {"kind": "Company", "name": "acme"},
                {"kind": "Employee"},
            ],
        }

    @pytest.mark.parametrize(
        "key",
        [
            Key.from_path("Company", 1),
            Key.from_path("Company", None),
            Key.from_path("Company", "acme", namespace="ns"),
            Key.from_path("Company", 9007199254740993, "Employee", "bob"),
            Key.from_path("A", 1, "B", "b", "C", None, namespace="deep"),
        ],
    )
    def test_round_trip(self, key):
        """decode(encode(key)) == key."""
        assert key_from_wire(key_to_wire(key)) == key

    @pytest.mark.parametrize(
        "wire",
        [
            None,
            [],
            {},
            {"pathElement": []},
            {"pathElement": ["Company"]},
            {"pathElement": [{"id": "1"}]},
            {"pathElement": [{"kind": "Company", "id": "abc"}]},
            {"pathElement": [{"kind": "Company", "id": "1", "name": "x"}]},
            {"pathElement": [{"kind": "A"}, {"kind": "B", "id": "1"}]},
            {"partitionId": "ns", "pathElement": [{"kind": "A", "id": "1"}]},
        ],
    )
    def test_malformed_wire_key(self, wire):
        """Malformed wire keys raise ProtocolError."""
        with pytest.raises(ProtocolError):
            key_from_wire(wire)
