"""Scrub report schemas."""

import uuid
from datetime import datetime
from typing import Any, Optional

from app.schemas.claim import ClaimResponse
from app.schemas.common import BaseSchema


class ScrubIssueView(BaseSchema):
    rule_id: str
    rule_name: str
    category: str
    severity: str
    message: str
    field: Optional[str] = None
    value: Any = None
    expected_value: Any = None
    auto_fixable: bool = False
    details: Any = None
    timestamp: Optional[datetime] = None


class FieldChangeView(BaseSchema):
    field: str
    before: Any = None
    after: Any = None


class FixedIssueView(BaseSchema):
    rule_id: str
    rule_name: str
    category: str
    changes: dict[str, Any]
    message: str
    timestamp: Optional[datetime] = None


class CategoryCountsView(BaseSchema):
    category: str
    errors: int = 0
    warnings: int = 0
    info: int = 0
    fixed: int = 0


class ScrubSummaryView(BaseSchema):
    total_checks: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    fixed_count: int = 0
    auto_fixable_count: int = 0


class RecommendationView(BaseSchema):
    priority: str
    action: str
    message: str
    details: list[str] = []


class ScrubReportResponse(BaseSchema):
    id: uuid.UUID
    claim_id: uuid.UUID
    claim_number: str
    status: str
    can_submit: bool
    review_required: bool
    pass_rate: float
    summary_text: str
    errors: list[ScrubIssueView]
    warnings: list[ScrubIssueView]
    info: list[ScrubIssueView]
    fixed_issues: list[FixedIssueView]
    summary: ScrubSummaryView
    categories: list[CategoryCountsView]
    config: dict[str, Any]
    duration_ms: int
    scrubbed_by: Optional[str]
    scrubbed_at: datetime
    actions: list[dict[str, Any]]
    recommendations: list[RecommendationView]
    previous_report_id: Optional[uuid.UUID]


class ScrubReportListItem(BaseSchema):
    id: uuid.UUID
    status: str
    summary: ScrubSummaryView
    scrubbed_by: Optional[str]
    scrubbed_at: datetime
    previous_report_id: Optional[uuid.UUID]


class AutoFixResponse(BaseSchema):
    fixed: bool
    fixed_count: int
    message: str
    fixes: list[FixedIssueView]
    changes: list[FieldChangeView] = []
    report: ScrubReportResponse
    claim: ClaimResponse


class BatchClaimResultView(BaseSchema):
    claim_id: str
    claim_number: Optional[str] = None
    status: Optional[str] = None
    report_id: Optional[uuid.UUID] = None
    error: Optional[str] = None
    cancelled: bool = False


class BatchScrubResponse(BaseSchema):
    results: list[BatchClaimResultView]
    summary: dict[str, Any]


class BatchQueuedResponse(BaseSchema):
    job_id: str
    queued: int


class PreSubmitResponse(BaseSchema):
    can_submit: bool
    status: str
    blockers: list[ScrubIssueView]
    warnings: list[ScrubIssueView]
    recommendations: list[RecommendationView]
