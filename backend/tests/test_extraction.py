"""Tests for payload extraction and coercion."""

import pytest

from webhook_pipeline.models.database.datasets import DatasetField, FieldType
from webhook_pipeline.services.extraction import coerce, extract, resolve_path


def _field(slug, field_type=FieldType.TEXT, source_path=None, formula=None, sort_order=0):
    return DatasetField(
        slug=slug,
        name=slug,
        field_type=field_type,
        source_path=source_path,
        formula=formula,
        sort_order=sort_order,
    )


class TestResolvePath:

    def test_nested_keys(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$.data.customer.email") == "jane@example.com"

    def test_without_dollar_prefix(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "data.order_id") == "ord_1001"

    def test_array_index(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$.data.items[0].sku") == "SKU-1"

    def test_index_out_of_range(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$.data.items[3].sku") is None

    def test_missing_key(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$.data.shipping.city") is None

    def test_through_scalar(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$.event.name") is None

    def test_root(self, sample_order_payload):
        assert resolve_path(sample_order_payload, "$") == sample_order_payload


class TestCoerce:

    def test_numeric_string(self):
        assert coerce("49.90", FieldType.NUMBER) == (49.9, None)

    def test_integer_string(self):
        assert coerce("7", FieldType.NUMBER) == (7, None)

    def test_bad_number(self):
        value, error = coerce("abc", FieldType.NUMBER)
        assert value is None
        assert "expected number" in error

    def test_integer_too_large_for_float(self):
        value, error = coerce(10**400, FieldType.NUMBER)
        assert value is None
        assert "out of range" in error

    def test_boolean_not_a_number(self):
        value, error = coerce(True, FieldType.NUMBER)
        assert value is None and error

    @pytest.mark.parametrize("raw,expected", [("true", True), ("0", False), (1, True), (False, False)])
    def test_booleans(self, raw, expected):
        assert coerce(raw, FieldType.BOOLEAN) == (expected, None)

    def test_date_normalized_to_utc(self):
        value, error = coerce("2026-01-05T12:00:00+02:00", FieldType.DATE)
        assert error is None
        assert value == "2026-01-05T10:00:00+00:00"

    def test_bad_date(self):
        value, error = coerce("yesterday", FieldType.DATE)
        assert value is None and error

    def test_text_from_object(self):
        assert coerce({"b": 1, "a": 2}, FieldType.TEXT) == ('{"a": 2, "b": 1}', None)

    def test_none_passes_through(self):
        assert coerce(None, FieldType.NUMBER) == (None, None)


class TestExtract:

    def test_extracts_all_fields(self, sample_order_payload):
        fields = [
            _field("order_id", source_path="$.data.order_id"),
            _field("amount", FieldType.NUMBER, "$.data.amount"),
            _field("paid", FieldType.BOOLEAN, "$.data.paid"),
            _field("email", source_path="$.data.customer.email"),
        ]
        result = extract(sample_order_payload, fields)

        assert result.data == {"order_id": "ord_1001", "amount": 49.9, "paid": True, "email": "jane@example.com"}
        assert result.extracted_count == 4
        assert not result.is_partial

    def test_missing_path_is_null_without_affecting_others(self, sample_order_payload):
        fields = [
            _field("order_id", source_path="$.data.order_id"),
            _field("coupon", source_path="$.data.coupon.code"),
        ]
        result = extract(sample_order_payload, fields)

        assert result.data == {"order_id": "ord_1001", "coupon": None}
        assert result.extracted_count == 1
        assert not result.is_partial

    def test_coercion_failure_is_partial(self, sample_order_payload):
        fields = [
            _field("order_id", source_path="$.data.order_id"),
            _field("email_number", FieldType.NUMBER, "$.data.customer.email"),
        ]
        result = extract(sample_order_payload, fields)

        assert result.data["order_id"] == "ord_1001"
        assert result.data["email_number"] is None
        assert result.is_partial
        assert result.failures[0].startswith("email_number: expected number")

    def test_computed_field_uses_extracted_values(self):
        payload = {"price": "2.5", "qty": 4}
        fields = [
            _field("price", FieldType.NUMBER, "$.price"),
            _field("qty", FieldType.NUMBER, "$.qty"),
            _field("total", FieldType.NUMBER, formula="price * qty", sort_order=-1),
        ]
        result = extract(payload, fields)

        assert result.data["total"] == 10

    def test_computed_division_by_zero_is_null(self):
        fields = [
            _field("a", FieldType.NUMBER, "$.a"),
            _field("b", FieldType.NUMBER, "$.b"),
            _field("ratio", FieldType.NUMBER, formula="a / b"),
        ]
        result = extract({"a": 1, "b": 0}, fields)

        assert result.data["ratio"] is None
        assert not result.is_partial

    def test_oversized_integer_fails_only_its_field(self):
        fields = [
            _field("amount", FieldType.NUMBER, "$.amount"),
            _field("double", FieldType.NUMBER, formula="amount * 2"),
            _field("name", source_path="$.name"),
        ]
        result = extract({"amount": 10**400, "name": "x"}, fields)

        assert result.data == {"amount": None, "double": None, "name": "x"}
        assert len(result.failures) == 1
        assert result.failures[0].startswith("amount:")
