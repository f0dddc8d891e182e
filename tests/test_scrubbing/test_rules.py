"""
Rule tests: each rule is a plain (claim, ctx) -> Finding | None callable,
so these run with no database and no engine.
"""

import copy
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import TODAY
from app.services.scrubbing.rules import (
    DEFAULT_RULES,
    FixNotApplicable,
    RuleCategory,
    Severity,
    auto_fixable_rules,
    get_rule,
    line_total,
    procedure_line_sum,
    rules_by_category,
    timely_filing_limit,
)


def check(rule_id, claim, ctx):
    return get_rule(rule_id).check(claim, ctx)


def fix(rule_id, claim, ctx):
    return get_rule(rule_id).fix(claim, ctx)


class TestRuleSet:
    def test_clean_claim_passes_every_rule(self, valid_snapshot, ctx):
        failing = [r.id for r in DEFAULT_RULES if r.check(valid_snapshot, ctx) is not None]
        assert failing == []

    def test_rule_ids_are_unique(self):
        ids = [r.id for r in DEFAULT_RULES]
        assert len(ids) == len(set(ids))

    def test_declaration_order_follows_category_order(self):
        order = {c: i for i, c in enumerate(RuleCategory.ORDER)}
        positions = [order[r.category] for r in DEFAULT_RULES]
        assert positions == sorted(positions)

    def test_fixable_rules(self):
        assert [r.id for r in auto_fixable_rules()] == [
            "PI006",
            "PR004",
            "DX004",
            "PC006",
            "BL002",
        ]

    def test_timely_filing_is_never_fixable(self):
        assert get_rule("DT003").auto_fixable is False

    def test_rules_by_category(self):
        assert [r.id for r in rules_by_category(RuleCategory.BILLING)] == ["BL001", "BL002"]

    def test_unknown_rule_id(self):
        assert get_rule("ZZ999") is None


class TestPatientAndProviderRules:
    def test_missing_patient_reference(self, valid_snapshot, ctx):
        valid_snapshot["patient_id"] = "  "
        assert check("PI001", valid_snapshot, ctx).field == "patient_id"

    def test_future_date_of_birth(self, valid_snapshot, ctx):
        valid_snapshot["patient"]["date_of_birth"] = (TODAY + timedelta(days=1)).isoformat()
        finding = check("PI003", valid_snapshot, ctx)
        assert "future" in finding.message

    def test_unparseable_date_of_birth(self, valid_snapshot, ctx):
        valid_snapshot["patient"]["date_of_birth"] = "05/01/1980"
        assert check("PI003", valid_snapshot, ctx).message == "Patient date of birth is invalid"

    def test_invalid_gender(self, valid_snapshot, ctx):
        valid_snapshot["patient"]["gender"] = "X"
        assert check("PI004", valid_snapshot, ctx) is not None

    def test_address_lists_missing_parts(self, valid_snapshot, ctx):
        valid_snapshot["patient"]["address"]["city"] = ""
        valid_snapshot["patient"]["address"]["zip_code"] = None
        finding = check("PI005", valid_snapshot, ctx)
        assert finding.details == {"missing": ["city", "ZIP code"]}

    @pytest.mark.parametrize(
        "raw,expected", [("627041234", "62704-1234"), ("62 704", "62704")]
    )
    def test_zip_fix_formats_digits(self, valid_snapshot, ctx, raw, expected):
        valid_snapshot["patient"]["address"]["zip_code"] = raw
        assert check("PI006", valid_snapshot, ctx) is not None
        outcome = fix("PI006", valid_snapshot, ctx)
        assert valid_snapshot["patient"]["address"]["zip_code"] == expected
        assert outcome.changes["patient.address.zip_code"] == {"from": raw, "to": expected}

    def test_zip_fix_not_applicable_for_wrong_length(self, valid_snapshot, ctx):
        valid_snapshot["patient"]["address"]["zip_code"] = "1234"
        with pytest.raises(FixNotApplicable):
            fix("PI006", valid_snapshot, ctx)

    def test_npi_must_be_ten_digits(self, valid_snapshot, ctx):
        valid_snapshot["provider"]["npi"] = "12345"
        finding = check("PR002", valid_snapshot, ctx)
        assert finding.expected_value == "10 digits"

    def test_tax_id_fix(self, valid_snapshot, ctx):
        valid_snapshot["provider"]["tax_id"] = "123456789"
        assert check("PR004", valid_snapshot, ctx).severity is None
        fix("PR004", valid_snapshot, ctx)
        assert valid_snapshot["provider"]["tax_id"] == "12-3456789"
        assert check("PR004", valid_snapshot, ctx) is None


class TestInsuranceRules:
    def test_policy_number_not_required_for_self_pay(self, valid_snapshot, ctx):
        valid_snapshot["insurance"] = {"payer_id": "SELF", "plan_type": "self_pay"}
        assert check("IN002", valid_snapshot, ctx) is None

    def test_group_number_required_for_group_plan(self, valid_snapshot, ctx):
        valid_snapshot["insurance"].update(
            payer_id="SMALLPAYER", plan_type="group", group_number=None
        )
        finding = check("IN003", valid_snapshot, ctx)
        assert finding.message == "Group number is required for group plans"

    def test_group_number_required_for_listed_payer(self, valid_snapshot, ctx):
        valid_snapshot["insurance"].update(payer_id="bcbs", group_number="")
        finding = check("IN003", valid_snapshot, ctx)
        assert finding.message == "Group number is required for payer BCBS"

    def test_group_number_optional_otherwise(self, valid_snapshot, ctx):
        valid_snapshot["insurance"].update(payer_id="SMALLPAYER", group_number=None)
        assert check("IN003", valid_snapshot, ctx) is None

    def test_service_outside_coverage(self, valid_snapshot, ctx):
        valid_snapshot["insurance"]["coverage_end"] = (TODAY - timedelta(days=30)).isoformat()
        finding = check("IN004", valid_snapshot, ctx)
        assert finding.field == "insurance.coverage_end"


class TestDiagnosisRules:
    def test_invalid_icd10_codes_listed(self, valid_snapshot, ctx):
        valid_snapshot["diagnosis_codes"] = ["J06.9", "12345", "r05"]
        finding = check("DX002", valid_snapshot, ctx)
        assert finding.details == {"invalid_codes": ["12345", "r05"]}

    def test_too_many_codes_uses_context_cap(self, valid_snapshot, ctx):
        valid_snapshot["diagnosis_codes"] = ["J06.9"] * 13
        finding = check("DX003", valid_snapshot, ctx)
        assert finding.value == 13
        assert finding.expected_value == 12

    def test_duplicate_fix_remaps_pointers(self, valid_snapshot, ctx):
        # positions 1 and 3 are the same code; line 2 points at 3
        valid_snapshot["diagnosis_codes"] = ["J06.9", "R05.9", "J06.9"]
        valid_snapshot["procedures"][1]["diagnosis_pointers"] = [3, 2]

        outcome = fix("DX004", valid_snapshot, ctx)

        assert valid_snapshot["diagnosis_codes"] == ["J06.9", "R05.9"]
        assert valid_snapshot["procedures"][1]["diagnosis_pointers"] == [1, 2]
        assert outcome.message == "Removed 1 duplicate diagnosis code(s)"
        assert check("PC005", valid_snapshot, ctx) is None


class TestProcedureRules:
    def test_invalid_procedure_code(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][0]["code"] = "9921"
        assert check("PC002", valid_snapshot, ctx).value == ["9921"]

    def test_hcpcs_code_accepted(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][0]["code"] = "J3420"
        assert check("PC002", valid_snapshot, ctx) is None

    def test_zero_charge_positions(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][1]["charge"] = "0"
        assert check("PC003", valid_snapshot, ctx).value == [2]

    def test_fractional_units_rejected(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][0]["units"] = 1.5
        assert check("PC004", valid_snapshot, ctx).value == [1]

    def test_pointer_out_of_range(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][0]["diagnosis_pointers"] = [5]
        finding = check("PC005", valid_snapshot, ctx)
        assert finding.message == "Procedure 1: invalid pointer 5"

    def test_missing_pointer(self, valid_snapshot, ctx):
        valid_snapshot["procedures"][1]["diagnosis_pointers"] = []
        finding = check("PC005", valid_snapshot, ctx)
        assert finding.message == "Procedure 2: missing diagnosis pointer"

    def test_duplicate_lines_merged_by_units(self, valid_snapshot, ctx):
        valid_snapshot["procedures"].append(
            {"code": "99213", "charge": "150.00", "units": 1, "diagnosis_pointers": [2]}
        )
        assert check("PC006", valid_snapshot, ctx).value == [[1, 3]]

        fix("PC006", valid_snapshot, ctx)

        lines = valid_snapshot["procedures"]
        assert len(lines) == 2
        assert lines[0]["units"] == 2
        assert lines[0]["diagnosis_pointers"] == [1, 2]
        assert check("PC006", valid_snapshot, ctx) is None

    def test_different_modifiers_are_not_duplicates(self, valid_snapshot, ctx):
        valid_snapshot["procedures"].append(
            {"code": "99213", "charge": "150.00", "modifiers": ["25"], "diagnosis_pointers": [1]}
        )
        assert check("PC006", valid_snapshot, ctx) is None

    def test_duplicates_with_different_charges_not_merged(self, valid_snapshot, ctx):
        valid_snapshot["procedures"].append(
            {"code": "99213", "charge": "175.00", "units": 1, "diagnosis_pointers": [1]}
        )
        before = copy.deepcopy(valid_snapshot)
        with pytest.raises(FixNotApplicable):
            fix("PC006", valid_snapshot, ctx)
        assert valid_snapshot == before


class TestDateRules:
    def test_missing_service_date(self, valid_snapshot, ctx):
        valid_snapshot["service_date"] = None
        assert check("DT001", valid_snapshot, ctx) is not None
        # later date rules stay quiet rather than double-reporting
        assert check("DT003", valid_snapshot, ctx) is None

    def test_future_service_date(self, valid_snapshot, ctx):
        valid_snapshot["service_date"] = TODAY + timedelta(days=2)
        assert check("DT002", valid_snapshot, ctx) is not None

    def test_past_filing_limit_is_error(self, valid_snapshot, ctx):
        valid_snapshot["service_date"] = TODAY - timedelta(days=400)
        valid_snapshot["insurance"]["timely_filing_limit"] = 365

        finding = check("DT003", valid_snapshot, ctx)

        assert finding.severity is None  # rule default: error
        assert get_rule("DT003").severity == Severity.ERROR
        assert finding.message == "Service date was 400 days ago (limit: 365 days)"
        assert finding.details["timely_filing_days"] == 365

    def test_inside_warning_window_is_warning(self, valid_snapshot, ctx):
        valid_snapshot["service_date"] = TODAY - timedelta(days=80)
        finding = check("DT003", valid_snapshot, ctx)
        assert finding.severity == Severity.WARNING
        assert finding.details["days_remaining"] == 10

    def test_exactly_at_limit_is_not_an_error(self, valid_snapshot, ctx):
        valid_snapshot["service_date"] = TODAY - timedelta(days=90)
        assert check("DT003", valid_snapshot, ctx).severity == Severity.WARNING

    def test_limit_override_ignored_when_invalid(self, valid_snapshot, ctx):
        valid_snapshot["insurance"]["timely_filing_limit"] = "365"
        assert timely_filing_limit(valid_snapshot, ctx) == 90


class TestBillingRules:
    def test_place_of_service_two_digits(self, valid_snapshot, ctx):
        valid_snapshot["place_of_service"] = "office"
        assert check("BL001", valid_snapshot, ctx) is not None

    def test_line_total_uses_units(self):
        assert line_total({"charge": "50.00", "units": 2}) == Decimal("100.00")
        assert line_total({"charge": "19.99"}) == Decimal("19.99")

    def test_charge_mismatch(self, valid_snapshot, ctx):
        valid_snapshot["total_charges"] = Decimal("300.00")
        finding = check("BL002", valid_snapshot, ctx)
        assert finding.value == Decimal("300.00")
        assert finding.expected_value == Decimal("250.00")

    def test_within_tolerance(self, valid_snapshot, ctx):
        valid_snapshot["total_charges"] = "250.01"
        assert check("BL002", valid_snapshot, ctx) is None

    def test_fix_recomputes_total(self, valid_snapshot, ctx):
        valid_snapshot["total_charges"] = Decimal("300.00")
        outcome = fix("BL002", valid_snapshot, ctx)
        assert valid_snapshot["total_charges"] == procedure_line_sum(valid_snapshot)
        assert outcome.changes["total_charges"]["to"] == Decimal("250.00")
