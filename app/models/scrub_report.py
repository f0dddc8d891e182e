"""
ScrubReport: one immutable row per scrub run.

These records are append-only: they represent what the rule engine found at
a specific point in time. Re-scrubbing creates a new row linked to the
previous one through previous_report_id. The before_update listener at the
bottom of this module rejects any attempt to modify a persisted report.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid, event, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONPortable


class ReportAction:
    SCRUBBED = "scrubbed"
    AUTO_FIXED = "auto_fixed"
    BATCH_SCRUBBED = "batch_scrubbed"


class ImmutableReportError(Exception):
    """Raised when code tries to modify a persisted scrub report."""


class ScrubReport(Base):
    """
    Audit record of a single scrub run against a single claim.

    Issue lists hold plain dicts (rule_id, rule_name, category, severity, field,
    value, expected_value, message, auto_fixable, details, timestamp) so the
    report stays readable even after rule definitions change.
    """

    __tablename__ = "scrub_reports"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    claim_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    claim_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # ── Result ────────────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        comment="pass | pass_with_warnings | fail | fixed",
    )
    errors: Mapped[list] = mapped_column(JSONPortable, nullable=False, default=list)
    warnings: Mapped[list] = mapped_column(JSONPortable, nullable=False, default=list)
    info: Mapped[list] = mapped_column(JSONPortable, nullable=False, default=list)
    fixed_issues: Mapped[list] = mapped_column(
        JSONPortable, nullable=False, default=list
    )
    summary: Mapped[dict] = mapped_column(JSONPortable, nullable=False, default=dict)
    categories: Mapped[list] = mapped_column(
        JSONPortable,
        nullable=False,
        default=list,
        comment="Ordered [{category, errors, warnings, info, fixed}]",
    )

    # ── Run configuration ─────────────────────────────────────────────────────
    config: Mapped[dict] = mapped_column(
        JSONPortable, nullable=False, default=dict, comment="{auto_fix, categories}"
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Audit ─────────────────────────────────────────────────────────────────
    scrubbed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    scrubbed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    claim_snapshot: Mapped[dict] = mapped_column(
        JSONPortable, nullable=False, default=dict
    )
    actions: Mapped[list] = mapped_column(JSONPortable, nullable=False, default=list)
    recommendations: Mapped[list] = mapped_column(
        JSONPortable, nullable=False, default=list
    )

    previous_report_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scrub_reports.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ── Derived views ─────────────────────────────────────────────────────────

    @property
    def can_submit(self) -> bool:
        return self.status != "fail"

    @property
    def review_required(self) -> bool:
        return self.status in ("fixed", "pass_with_warnings")

    @property
    def pass_rate(self) -> float:
        """Percentage of checks that did not produce an error (0–100)."""
        total = self.summary.get("total_checks", 0)
        if total == 0:
            return 100.0
        passed = total - self.summary.get("error_count", 0)
        return round(passed / total * 100, 2)

    @property
    def summary_text(self) -> str:
        s = self.summary
        parts: list[str] = []
        if self.status == "pass":
            parts.append("Claim passed all validations")
        elif self.status == "pass_with_warnings":
            parts.append(f"Claim passed with {s.get('warning_count', 0)} warning(s)")
        elif self.status == "fail":
            parts.append(f"Claim failed with {s.get('error_count', 0)} error(s)")
        elif self.status == "fixed":
            parts.append(f"{s.get('fixed_count', 0)} issue(s) were automatically fixed")

        if s.get("error_count", 0) > 0:
            parts.append(f"{s['error_count']} error(s) must be corrected")
        if s.get("auto_fixable_count", 0) > 0:
            parts.append(f"{s['auto_fixable_count']} issue(s) can be auto-fixed")
        return ". ".join(parts)

    def __repr__(self) -> str:
        return (
            f"<ScrubReport claim_number={self.claim_number!r} status={self.status!r}>"
        )


@event.listens_for(ScrubReport, "before_update")
def _reject_report_update(mapper, connection, target: ScrubReport) -> None:
    raise ImmutableReportError(
        f"Scrub report {target.id} is append-only and cannot be modified"
    )
