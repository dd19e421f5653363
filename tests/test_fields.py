"""Tests for the payload field resolver."""
from utils.fields import get_nested_value, resolve_field


class TestGetNestedValue:
    def test_flat_key(self):
        assert get_nested_value({"nama": "CV Maju"}, "nama") == "CV Maju"

    def test_nested_key(self):
        data = {"rekanan": {"nama": "CV Maju", "npwp": "01.234"}}
        assert get_nested_value(data, "rekanan.npwp") == "01.234"

    def test_missing_key(self):
        assert get_nested_value({"a": 1}, "b") is None
        assert get_nested_value({"a": {"b": 1}}, "a.c") is None

    def test_non_dict(self):
        assert get_nested_value(None, "a") is None


class TestResolveField:
    data = {"a": "X", "b": "Y", "name": "Bob", "city": "Bandung"}

    def test_literal_key(self):
        assert resolve_field(self.data, "name") == "Bob"

    def test_literal_key_wins_over_expression(self):
        data = {"CONCAT:-|a|b": "stored"}
        assert resolve_field(data, "CONCAT:-|a|b") == "stored"

    def test_missing_key(self):
        assert resolve_field(self.data, "unknown") is None

    def test_unknown_expression(self):
        assert resolve_field(self.data, "UPPER:a") is None

    def test_concat(self):
        assert resolve_field(self.data, 'CONCAT:","|a|b') == "X,Y"

    def test_concat_trims_refs(self):
        assert resolve_field(self.data, "CONCAT:-| a | b ") == "X-Y"

    def test_concat_missing_ref_is_empty(self):
        assert resolve_field(self.data, "CONCAT:/|a|missing|b") == "X//Y"

    def test_format(self):
        assert resolve_field(self.data, 'FORMAT:"Hello %1%"|name') == "Hello Bob"

    def test_format_replaces_every_occurrence(self):
        key = "FORMAT:%1% from %2%, %1%!|name|city"
        assert resolve_field(self.data, key) == "Bob from Bandung, Bob!"

    def test_format_placeholder_without_ref(self):
        assert resolve_field(self.data, "FORMAT:%1% %2%|name") == "Bob %2%"

    def test_expression_type_is_case_insensitive(self):
        assert resolve_field(self.data, "concat:+|a|b") == "X+Y"

    def test_ref_names_a_literal_key(self):
        data = {"first": "Ani", "full": "CONCAT: |first|last"}
        assert resolve_field(data, "FORMAT:Dear %1%|full") == "Dear CONCAT: |first|last"
