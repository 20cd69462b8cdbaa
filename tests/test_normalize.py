"""Tests for extraction payload normalization."""

from datetime import date
from decimal import Decimal

import pytest

from eobflow.extraction.normalize import normalize_date, normalize_item, normalize_items, parse_currency


class TestParseCurrency:

    @pytest.mark.parametrize("raw,expected", [
        ("$1,234.56", Decimal("1234.56")),
        ("1234.56", Decimal("1234.56")),
        ("($15.00)", Decimal("-15.00")),
        (42, Decimal("42")),
        (12.5, Decimal("12.5")),
    ])
    def test_parses_amounts(self, raw, expected):
        assert parse_currency(raw) == expected

    @pytest.mark.parametrize("raw", [
        None, "", "N/A", True, "NaN",
        float("nan"), float("inf"), float("-inf"), Decimal("Infinity"),
    ])
    def test_unusable_values_are_none(self, raw):
        assert parse_currency(raw) is None


class TestNormalizeDate:

    @pytest.mark.parametrize("raw", ["2025-03-04", "03/04/2025", "3/4/2025", "2025-03-04T10:00:00Z"])
    def test_accepted_formats(self, raw):
        assert normalize_date(raw) == date(2025, 3, 4)

    @pytest.mark.parametrize("raw", [None, "", "null", "13/45/2025", "yesterday"])
    def test_invalid_dates_are_none(self, raw):
        assert normalize_date(raw) is None


class TestNormalizeItem:

    def test_missing_line_type_defaults_to_medical_service(self):
        item = normalize_item({"patient_name": "  DOE, JANE ", "paid_amount": "$90.00"})

        assert item.line_type == "medical_service"
        assert item.patient_name == "DOE, JANE"
        assert item.paid_amount == Decimal("90.00")

    def test_unknown_line_type_defaults_to_medical_service(self):
        assert normalize_item({"line_type": "bogus"}).line_type == "medical_service"

    def test_known_line_type_kept(self):
        item = normalize_item({"line_type": "summary_total", "remark_code": "CHK123", "paid_amount": "500"})

        assert item.line_type == "summary_total"
        assert item.remark_code == "CHK123"

    def test_blank_strings_become_none(self):
        item = normalize_item({"claim_number": "   ", "confidence_score": "high"})

        assert item.claim_number is None
        assert item.confidence_score is None

    def test_normalize_items_skips_non_objects(self):
        items = normalize_items([{"cpt_code": "99213"}, "garbage", None, {"cpt_code": "99214"}])

        assert [item.cpt_code for item in items] == ["99213", "99214"]
