"""
Scrub report analytics: compare_reports / report_statistics / attention order.
Reports are built in memory; nothing is persisted.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.models.scrub_report import ScrubReport
from app.services.scrubbing.reports import (
    attention_sort_key,
    compare_reports,
    report_statistics,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def _issue(rule_id, name="Rule", severity="error"):
    return {"rule_id": rule_id, "rule_name": name, "severity": severity, "message": "x"}


def _report(status, errors=(), warnings=(), scrubbed_at=NOW, duration_ms=5, total_checks=29):
    errors, warnings = list(errors), list(warnings)
    return ScrubReport(
        id=uuid.uuid4(),
        claim_id=uuid.uuid4(),
        claim_number="CLM-20250315-000001",
        status=status,
        errors=errors,
        warnings=warnings,
        info=[],
        fixed_issues=[],
        summary={
            "total_checks": total_checks,
            "error_count": len(errors),
            "warning_count": len(warnings),
            "info_count": 0,
            "fixed_count": 0,
            "auto_fixable_count": 0,
        },
        categories=[],
        duration_ms=duration_ms,
        scrubbed_at=scrubbed_at,
    )


class TestCompareReports:
    def test_first_report_has_nothing_to_compare(self):
        current = _report("fail", errors=[_issue("BL002")])
        result = compare_reports(current, None)
        assert result["has_previous"] is False
        assert result["message"] == "No previous report to compare"

    def test_new_resolved_and_persisting(self):
        previous = _report("fail", errors=[_issue("BL002"), _issue("PC005")])
        current = _report(
            "fail", errors=[_issue("PC005")], warnings=[_issue("PI006", severity="warning")]
        )

        result = compare_reports(current, previous)

        assert [i["rule_id"] for i in result["new_issues"]] == ["PI006"]
        assert [i["rule_id"] for i in result["resolved_issues"]] == ["BL002"]
        assert [i["rule_id"] for i in result["persisting_issues"]] == ["PC005"]
        assert result["error_delta"] == -1
        assert result["warning_delta"] == 1
        assert result["status_changed"] is False
        assert result["improved"] is False

    def test_fully_fixed_claim_improves(self):
        previous = _report("fail", errors=[_issue("BL002")])
        current = _report("pass")
        result = compare_reports(current, previous)
        assert result["improved"] is True
        assert result["status_changed"] is True
        assert (result["previous_status"], result["current_status"]) == ("fail", "pass")


class TestReportStatistics:
    def test_empty(self):
        stats = report_statistics([])
        assert stats["total_reports"] == 0
        assert stats["pass_rate"] == 0.0
        assert stats["most_common_issues"] == []

    def test_counts_and_rates(self):
        reports = [
            _report("pass", duration_ms=4),
            _report("pass_with_warnings", warnings=[_issue("PI006", "ZIP")], duration_ms=6),
            _report("fail", errors=[_issue("BL002", "Charges"), _issue("PI006", "ZIP")]),
            _report("fail", errors=[_issue("BL002", "Charges")]),
        ]

        stats = report_statistics(reports)

        assert stats["total_reports"] == 4
        assert stats["by_status"] == {"pass": 1, "pass_with_warnings": 1, "fail": 2}
        assert stats["pass_rate"] == 50.0
        assert stats["average_errors"] == 0.75
        assert stats["average_duration_ms"] == 5.0
        assert stats["most_common_issues"] == [
            {"rule_id": "PI006", "rule_name": "ZIP", "count": 2},
            {"rule_id": "BL002", "rule_name": "Charges", "count": 2},
        ]

    def test_fixed_runs_count_as_passing(self):
        reports = [_report("fixed"), _report("pass"), _report("fail", errors=[_issue("BL002")])]
        stats = report_statistics(reports)
        assert stats["by_status"]["fixed"] == 1
        assert stats["pass_rate"] == 66.67

    def test_top_limits_issue_list(self):
        reports = [_report("fail", errors=[_issue(f"R{i:03d}") for i in range(5)])]
        assert len(report_statistics(reports, top=3)["most_common_issues"]) == 3


class TestReportViews:
    def test_attention_order(self):
        older = _report("fail", errors=[_issue("A")], scrubbed_at=NOW - timedelta(hours=1))
        newer = _report("fail", errors=[_issue("B")])
        worst = _report("fail", errors=[_issue("A"), _issue("B")])
        warn = _report("pass_with_warnings", warnings=[_issue("C", severity="warning")])

        ordered = sorted([warn, older, newer, worst], key=attention_sort_key)

        assert ordered == [worst, newer, older, warn]

    @pytest.mark.parametrize(
        "status,can_submit,review",
        [
            ("pass", True, False),
            ("pass_with_warnings", True, True),
            ("fixed", True, True),
            ("fail", False, False),
        ],
    )
    def test_submit_and_review_flags(self, status, can_submit, review):
        report = _report(status)
        assert report.can_submit is can_submit
        assert report.review_required is review

    def test_pass_rate(self):
        report = _report("fail", errors=[_issue("A")], total_checks=4)
        assert report.pass_rate == 75.0

    def test_summary_text(self):
        report = _report("fail", errors=[_issue("A"), _issue("B")])
        assert report.summary_text == (
            "Claim failed with 2 error(s). 2 error(s) must be corrected"
        )
