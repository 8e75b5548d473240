import json

import pytest

from exscout_core.json_tree import (
    JsonKind,
    as_positive_number,
    find_min_amount,
    kind_of,
    looks_like_json,
    parse_json,
    walk,
)
from exscout_core.patterns import MIN_AMOUNT_KEYS


class TestKinds:
    @pytest.mark.parametrize("value,kind", [
        (None, JsonKind.NULL),
        (True, JsonKind.BOOL),
        (3, JsonKind.NUMBER),
        (0.5, JsonKind.NUMBER),
        ("x", JsonKind.STRING),
        ([1], JsonKind.ARRAY),
        ({"a": 1}, JsonKind.OBJECT),
    ])
    def test_kind_of(self, value, kind):
        assert kind_of(value) == kind

    def test_not_json(self):
        with pytest.raises(TypeError):
            kind_of(object())

    def test_parse_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            parse_json("{broken")

    def test_looks_like_json(self):
        assert looks_like_json('  {"a": 1}')
        assert looks_like_json("[1, 2]")
        assert not looks_like_json("<html>")


class TestWalk:
    def test_document_order(self):
        doc = {"a": {"b": 1}, "c": [2, 3]}
        entries = list(walk(doc))
        assert [(e.key, e.value) for e in entries][1:] == [
            ("a", {"b": 1}),
            ("b", 1),
            ("c", [2, 3]),
            ("c", 2),
            ("c", 3),
        ]

    def test_array_items_inherit_key_and_parent(self):
        doc = {"wallets": ["x", "y"]}
        items = [e for e in walk(doc) if e.kind == JsonKind.STRING]
        assert all(e.key == "wallets" for e in items)
        assert all(e.parent is doc for e in items)

    def test_depth_bound(self):
        doc = {"a": {"b": {"c": 1}}}
        keys = [e.key for e in walk(doc, max_depth=2)]
        assert keys == [None, "a", "b"]


class TestNumbers:
    def test_positive_numbers(self):
        assert as_positive_number(5) == 5.0
        assert as_positive_number("0.002") == 0.002
        assert as_positive_number("0,5") == 0.5

    def test_rejected_values(self):
        assert as_positive_number(True) is None
        assert as_positive_number(0) is None
        assert as_positive_number(-1) is None
        assert as_positive_number("n/a") is None
        assert as_positive_number(None) is None
        assert as_positive_number(float("nan")) is None

    def test_non_finite_values_rejected(self):
        assert as_positive_number(float("inf")) is None
        assert as_positive_number(json.loads('{"m": 1e999}')["m"]) is None
        assert as_positive_number("inf") is None
        assert as_positive_number("NaN") is None
        assert as_positive_number(10 ** 400) is None

    def test_thousands_separator(self):
        assert as_positive_number("1,500") == 1500.0
        assert as_positive_number("12,000.5") == 12000.5
        assert as_positive_number("0,001") == 0.001
        assert as_positive_number("10,5") == 10.5

    def test_find_min_amount_nested(self):
        doc = {"data": {"direction": {"limits": {"min_amount": "0.002", "max_amount": 5}}}}
        assert find_min_amount(doc, MIN_AMOUNT_KEYS) == 0.002

    def test_find_min_amount_in_array(self):
        doc = {"directions": [{"from": "BTC", "minimum": 0.01}]}
        assert find_min_amount(doc, MIN_AMOUNT_KEYS) == 0.01

    def test_find_min_amount_respects_depth(self):
        doc = {"a": {"b": {"min": 1}}}
        assert find_min_amount(doc, MIN_AMOUNT_KEYS, max_depth=2) is None
        assert find_min_amount(doc, MIN_AMOUNT_KEYS, max_depth=3) == 1.0

    def test_no_min_key(self):
        assert find_min_amount({"rate": 65000}, MIN_AMOUNT_KEYS) is None
        assert find_min_amount([1, 2, 3], MIN_AMOUNT_KEYS) is None
