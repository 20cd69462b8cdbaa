"""Tests for duplicate line item merging."""

from decimal import Decimal

from eobflow.extraction.dedup import dedup_items, dedup_key, merge_items, quality_score


class TestDedupKey:

    def test_key_ignores_case_and_whitespace(self, service_line):
        a = service_line(patient_name="doe,  jane", claim_number=" clm-1 ")
        b = service_line(patient_name="DOE, JANE", claim_number="CLM-1")

        assert dedup_key(a) == dedup_key(b)

    def test_paid_amount_compared_to_the_cent(self, service_line):
        a = service_line(paid_amount=Decimal("90"))
        b = service_line(paid_amount=Decimal("90.001"))
        c = service_line(paid_amount=Decimal("90.10"))

        assert dedup_key(a) == dedup_key(b)
        assert dedup_key(a) != dedup_key(c)


class TestMergeItems:

    def test_higher_quality_item_wins_and_blanks_are_filled(self, service_line):
        sparse = service_line(allowed_amount=None, remark_code="CO-45", confidence_score=80.0)
        rich = service_line(
            allowed_amount=Decimal("120.00"),
            contractual_adjustment=Decimal("30.00"),
            remark_code=None,
            confidence_score=90.0,
        )

        merged = merge_items(sparse, rich)

        assert merged.allowed_amount == Decimal("120.00")
        assert merged.contractual_adjustment == Decimal("30.00")
        assert merged.remark_code == "CO-45"
        assert merged.confidence_score == 90.0

    def test_tie_keeps_first(self, service_line):
        first = service_line(cpt_description="first")
        second = service_line(cpt_description="second")
        assert quality_score(first) == quality_score(second)

        assert merge_items(first, second).cpt_description == "first"

    def test_merge_is_never_worse_than_either_input(self, service_line):
        a = service_line(allowed_amount=Decimal("1"), confidence_score=70.0)
        b = service_line(deductible_amount=Decimal("2"), confidence_score=99.0)

        merged = merge_items(a, b)

        assert quality_score(merged) >= max(quality_score(a), quality_score(b))


class TestDedupItems:

    def test_collapses_duplicates_in_first_appearance_order(self, service_line):
        items = [
            service_line(claim_number="A"),
            service_line(claim_number="B"),
            service_line(claim_number="A", allowed_amount=Decimal("100")),
        ]

        result = dedup_items(items)

        assert [item.claim_number for item in result] == ["A", "B"]
        assert result[0].allowed_amount == Decimal("100")

    def test_summary_rows_are_never_merged(self, service_line):
        summary = service_line(line_type="summary_total", remark_code="CHK1")

        result = dedup_items([summary, summary.model_copy()])

        assert len(result) == 2

    def test_distinct_items_pass_through(self, service_line):
        items = [service_line(cpt_code="99213"), service_line(cpt_code="99214")]

        assert dedup_items(items) == items
