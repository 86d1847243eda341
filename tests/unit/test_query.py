"""
Unit tests for query descriptors.
"""

import pytest

from sdk.datastore_sdk.errors import InvalidArgumentError
from sdk.datastore_sdk.key import Key, key_to_wire
from sdk.datastore_sdk.query import Query, QueryResult


class TestQueryBuilders:
    """Tests for copy-on-write query builders."""

    def test_builders_return_copies(self):
        base = Query(("Company",))

        filtered = base.filter("rating >", 5)

        assert base.filters == ()
        assert filtered.filters == (("rating", "GREATER_THAN", 5),)

    def test_single_kind_string(self):
        assert Query("Company").kinds == ("Company",)

    def test_requires_kind(self):
        with pytest.raises(InvalidArgumentError):
            Query(())

    @pytest.mark.parametrize("expression", ["rating", "rating !=", "rating > 5", ""])
    def test_invalid_filter(self, expression):
        with pytest.raises(InvalidArgumentError):
            Query(("Company",)).filter(expression, 1)

    def test_negative_limit_and_offset(self):
        with pytest.raises(InvalidArgumentError):
            Query(("Company",)).limit(-1)
        with pytest.raises(InvalidArgumentError):
            Query(("Company",)).offset(-1)

    def test_empty_order(self):
        with pytest.raises(InvalidArgumentError):
            Query(("Company",)).order("-")


class TestQueryWire:
    """Tests for Query.to_wire."""

    def test_minimal(self):
        assert Query(("Company",)).to_wire() == {"kinds": [{"name": "Company"}]}

    def test_single_filter(self):
        wire = Query(("Company",)).filter("HQ =", "Dallas, TX").to_wire()

        assert wire["filter"] == {
            "propertyFilter": {
                "property": {"name": "HQ"},
                "operator": "EQUAL",
                "value": {"stringValue": "Dallas, TX"},
            }
        }

    def test_composite_filter_with_ancestor(self):
        ancestor = Key.from_path("Company", 1)

        wire = Query(("Employee",)).filter("age >=", 30).has_ancestor(ancestor).to_wire()

        composite = wire["filter"]["compositeFilter"]
        assert composite["operator"] == "AND"
        assert len(composite["filters"]) == 2
        assert composite["filters"][1]["propertyFilter"] == {
            "property": {"name": "__key__"},
            "operator": "HAS_ANCESTOR",
            "value": {"keyValue": key_to_wire(ancestor)},
        }

    def test_order_projection_and_paging(self):
        wire = (
            Query(("Company",))
            .order("-rating")
            .order("name")
            .select("name")
            .limit(10)
            .offset(5)
            .start("c1")
            .end("c2")
            .to_wire()
        )

        assert wire["order"] == [
            {"property": {"name": "rating"}, "direction": "DESCENDING"},
            {"property": {"name": "name"}, "direction": "ASCENDING"},
        ]
        assert wire["projection"] == [{"property": {"name": "name"}}]
        assert wire["limit"] == 10
        assert wire["offset"] == 5
        assert wire["startCursor"] == "c1"
        assert wire["endCursor"] == "c2"


class TestQueryResult:
    def test_unpacks_as_entities_and_cursor(self):
        entities, cursor = QueryResult(entities=[], cursor="c1", more_results="NOT_FINISHED")

        assert entities == []
        assert cursor == "c1"
