"""
Scrub report analytics: pure functions over persisted report rows.

Kept free of queries: the claims service loads the rows and these helpers
shape them. Issues are matched across runs by rule_id, which is stable
because rules always run in declaration order.
"""

from collections import Counter
from typing import Any, Optional, Sequence

from app.models.claim import ScrubStatus
from app.models.scrub_report import ScrubReport


def _rule_ids(issues: Sequence[dict]) -> list[str]:
    seen: list[str] = []
    for issue in issues:
        rule_id = issue.get("rule_id")
        if rule_id not in seen:
            seen.append(rule_id)
    return seen


def compare_reports(
    current: ScrubReport, previous: Optional[ScrubReport]
) -> dict[str, Any]:
    """
    Diff two runs of the same claim.

    new_issues:        rules failing now that did not fail before
    resolved_issues:   rules that failed before and pass now
    persisting_issues: rules failing in both runs
    """
    if previous is None:
        return {
            "report_id": current.id,
            "previous_report_id": None,
            "has_previous": False,
            "message": "No previous report to compare",
        }

    now = [*current.errors, *current.warnings]
    before = [*previous.errors, *previous.warnings]
    now_ids = set(_rule_ids(now))
    before_ids = set(_rule_ids(before))

    new_issues = [i for i in now if i.get("rule_id") not in before_ids]
    resolved = [i for i in before if i.get("rule_id") not in now_ids]
    persisting = [i for i in now if i.get("rule_id") in before_ids]

    cur_summary, prev_summary = current.summary or {}, previous.summary or {}
    return {
        "report_id": current.id,
        "previous_report_id": previous.id,
        "has_previous": True,
        "status_changed": current.status != previous.status,
        "previous_status": previous.status,
        "current_status": current.status,
        "new_issues": new_issues,
        "resolved_issues": resolved,
        "persisting_issues": persisting,
        "error_delta": cur_summary.get("error_count", 0)
        - prev_summary.get("error_count", 0),
        "warning_delta": cur_summary.get("warning_count", 0)
        - prev_summary.get("warning_count", 0),
        "improved": len(resolved) > len(new_issues),
    }


def report_statistics(reports: Sequence[ScrubReport], top: int = 10) -> dict[str, Any]:
    """Aggregate counts across many reports, e.g. for a date range."""
    total = len(reports)
    by_status: Counter = Counter(r.status for r in reports)
    rule_counts: Counter = Counter()
    rule_names: dict[str, str] = {}
    for report in reports:
        for issue in [*report.errors, *report.warnings]:
            rule_counts[issue.get("rule_id")] += 1
            rule_names.setdefault(issue.get("rule_id"), issue.get("rule_name"))

    def avg(key: str) -> float:
        if total == 0:
            return 0.0
        return round(sum((r.summary or {}).get(key, 0) for r in reports) / total, 2)

    return {
        "total_reports": total,
        "by_status": dict(by_status),
        "average_errors": avg("error_count"),
        "average_warnings": avg("warning_count"),
        "average_fixed": avg("fixed_count"),
        "average_duration_ms": (
            round(sum(r.duration_ms for r in reports) / total, 2) if total else 0.0
        ),
        # Share of runs that left the claim submittable
        "pass_rate": (
            round(
                sum(by_status.get(s, 0) for s in ScrubStatus.SUBMITTABLE) / total * 100,
                2,
            )
            if total
            else 0.0
        ),
        # most_common() orders ties by first occurrence
        "most_common_issues": [
            {"rule_id": rule_id, "rule_name": rule_names.get(rule_id), "count": count}
            for rule_id, count in rule_counts.most_common(top)
        ],
    }


def attention_sort_key(report: ScrubReport) -> tuple:
    """Most errors first, then most warnings, then newest."""
    summary = report.summary or {}
    scrubbed = report.scrubbed_at.timestamp() if report.scrubbed_at else 0.0
    return (
        -summary.get("error_count", 0),
        -summary.get("warning_count", 0),
        -scrubbed,
    )
