"""
Claim Scrubber: runs the rule set against a claim snapshot.

Pure with respect to persistence: the scrubber never reads or writes the
database. Callers hand it a dict (see claim_to_snapshot) and get back a
ScrubResult; the claims service decides what to persist.

Algorithm (one pass, rules in declaration order):
  1. Deep-copy the input claim. The caller's dict is never mutated.
  2. For each rule: run check(). A rule that raises becomes an INFO issue
     naming the rule: one broken rule must not abort the scrub.
  3. With auto_fix on and a fixable finding, apply fix() to a scratch copy
     and re-check. The fix is kept only if the rule now passes; the working
     copy then moves forward so later rules see the corrected claim.
  4. Bucket the remaining findings by severity, tally categories, derive
     the status (fail > fixed > pass_with_warnings > pass).
"""

import copy
import dataclasses
import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Event
from typing import Any, Optional

from app.services.scrubbing.rules import (
    DEFAULT_RULES,
    FixNotApplicable,
    FixOutcome,
    Rule,
    RuleCategory,
    RuleContext,
    Severity,
)
from app.settings import settings

logger = logging.getLogger(__name__)


class ScrubOutcome:
    PASS = "pass"
    PASS_WITH_WARNINGS = "pass_with_warnings"
    FAIL = "fail"
    FIXED = "fixed"


class RecommendationPriority:
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    RANK = {CRITICAL: 0, HIGH: 1, MEDIUM: 2, LOW: 3}


BUDGET_RULE_ID = "SYS001"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Result types ─────────────────────────────────────────────────────────────


@dataclass
class ScrubIssue:
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
    # `field` above shadows dataclasses.field inside this class body.
    # Excluded from equality so two scrubs of the same claim compare equal
    timestamp: datetime = dataclasses.field(default_factory=_utcnow, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FixedIssue:
    rule_id: str
    rule_name: str
    category: str
    changes: dict[str, Any]
    message: str
    timestamp: datetime = field(default_factory=_utcnow, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScrubSummary:
    total_checks: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    fixed_count: int = 0
    auto_fixable_count: int = 0

    def __add__(self, other: "ScrubSummary") -> "ScrubSummary":
        return ScrubSummary(
            total_checks=self.total_checks + other.total_checks,
            error_count=self.error_count + other.error_count,
            warning_count=self.warning_count + other.warning_count,
            info_count=self.info_count + other.info_count,
            fixed_count=self.fixed_count + other.fixed_count,
            auto_fixable_count=self.auto_fixable_count + other.auto_fixable_count,
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class CategoryCounts:
    category: str
    errors: int = 0
    warnings: int = 0
    info: int = 0
    fixed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScrubResult:
    status: str
    errors: list[ScrubIssue]
    warnings: list[ScrubIssue]
    info: list[ScrubIssue]
    fixed_issues: list[FixedIssue]
    summary: ScrubSummary
    categories: list[CategoryCounts]
    claim: dict = field(compare=False, repr=False)
    duration_ms: int = field(default=0, compare=False)
    claim_id: Any = None

    @property
    def can_submit(self) -> bool:
        return self.status != ScrubOutcome.FAIL

    @property
    def issues(self) -> list[ScrubIssue]:
        return [*self.errors, *self.warnings, *self.info]

    def to_dict(self) -> dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "status": self.status,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "info": [i.to_dict() for i in self.info],
            "fixed_issues": [f.to_dict() for f in self.fixed_issues],
            "summary": self.summary.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
            "duration_ms": self.duration_ms,
        }


@dataclass
class AutoFixResult:
    fixed: bool
    fixes: list[FixedIssue]
    message: str
    claim: dict = field(repr=False)

    @property
    def fixed_count(self) -> int:
        return len(self.fixes)


@dataclass
class BatchItemResult:
    index: int
    claim_id: Any = None
    result: Optional[ScrubResult] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class BatchSummary:
    total_claims: int = 0
    passed: int = 0
    passed_with_warnings: int = 0
    failed: int = 0
    fixed: int = 0
    errored: int = 0
    cancelled: int = 0
    totals: ScrubSummary = field(default_factory=ScrubSummary)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchScrubResult:
    results: list[BatchItemResult]
    summary: BatchSummary


@dataclass
class Recommendation:
    priority: str
    action: str
    message: str
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PreSubmitCheck:
    can_submit: bool
    status: str
    blockers: list[ScrubIssue]
    warnings: list[ScrubIssue]
    recommendations: list[Recommendation]

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_submit": self.can_submit,
            "status": self.status,
            "blockers": [i.to_dict() for i in self.blockers],
            "warnings": [i.to_dict() for i in self.warnings],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


def determine_status(summary: ScrubSummary) -> str:
    if summary.error_count > 0:
        return ScrubOutcome.FAIL
    if summary.fixed_count > 0:
        return ScrubOutcome.FIXED
    if summary.warning_count > 0:
        return ScrubOutcome.PASS_WITH_WARNINGS
    return ScrubOutcome.PASS


# ── Scrubber ─────────────────────────────────────────────────────────────────


class ClaimScrubber:
    """
    Usage:
        scrubber = ClaimScrubber()
        result = scrubber.scrub(snapshot, auto_fix=True, context=RuleContext.from_settings())
    """

    def __init__(
        self,
        rules: Optional[Sequence[Rule]] = None,
        *,
        max_workers: Optional[int] = None,
        time_budget_ms: Optional[int] = None,
    ):
        self.rules: tuple[Rule, ...] = tuple(rules if rules is not None else DEFAULT_RULES)
        self.max_workers = max_workers or settings.scrub_batch_workers
        self.time_budget_ms = (
            time_budget_ms if time_budget_ms is not None else settings.scrub_time_budget_ms
        )

    # ── Single claim ─────────────────────────────────────────────────────────

    def select_rules(self, categories: Optional[Iterable[str]] = None) -> list[Rule]:
        if not categories:
            return list(self.rules)
        wanted = set(categories)
        return [r for r in self.rules if r.category in wanted]

    def scrub(
        self,
        claim: dict,
        *,
        auto_fix: bool = False,
        categories: Optional[Iterable[str]] = None,
        context: Optional[RuleContext] = None,
    ) -> ScrubResult:
        if not isinstance(claim, dict):
            raise TypeError(f"Expected a claim snapshot dict, got {type(claim).__name__}")
        started = time.perf_counter()
        ctx = context or RuleContext.from_settings()
        working = copy.deepcopy(claim)
        rules = self.select_rules(categories)

        issues: list[ScrubIssue] = []
        fixed: list[FixedIssue] = []
        checks = 0

        for position, rule in enumerate(rules):
            if self._over_budget(started):
                skipped = rules[position:]
                issues.append(self._budget_issue(skipped))
                logger.warning(
                    "Scrub of claim %s exceeded %dms budget: %d rules skipped",
                    working.get("claim_number"),
                    self.time_budget_ms,
                    len(skipped),
                )
                break

            checks += 1
            issue = self._evaluate(rule, working, ctx)
            if issue is None:
                continue

            if auto_fix and issue.auto_fixable:
                outcome = self._try_fix(rule, working, ctx)
                if outcome is not None:
                    fixed.append(
                        FixedIssue(
                            rule_id=rule.id,
                            rule_name=rule.name,
                            category=rule.category,
                            changes=outcome.changes,
                            message=outcome.message,
                        )
                    )
                    continue

            issues.append(issue)

        result = self._assemble(issues, fixed, checks, working)
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "Scrubbed claim %s: %s (%d errors, %d warnings, %d fixed) in %dms",
            working.get("claim_number"),
            result.status,
            result.summary.error_count,
            result.summary.warning_count,
            result.summary.fixed_count,
            result.duration_ms,
        )
        return result

    def auto_fix_all(
        self, claim: dict, *, context: Optional[RuleContext] = None
    ) -> AutoFixResult:
        """
        Apply every fix that applies and return the corrected copy.
        Only auto-fixable rules are evaluated; category filters do not apply.
        """
        fixers = ClaimScrubber(
            [r for r in self.rules if r.auto_fixable],
            max_workers=self.max_workers,
            time_budget_ms=self.time_budget_ms,
        )
        result = fixers.scrub(claim, auto_fix=True, context=context)
        count = len(result.fixed_issues)
        return AutoFixResult(
            fixed=count > 0,
            fixes=result.fixed_issues,
            message=(
                f"Fixed {count} issue(s)" if count else "No auto-fixable issues found"
            ),
            claim=result.claim,
        )

    def merge_fixes(self, result: ScrubResult, fixes: Sequence[FixedIssue]) -> ScrubResult:
        """Fold fixes from an earlier auto_fix_all run into a scrub of the fixed claim."""
        merged = self._assemble(
            result.issues,
            [*fixes, *result.fixed_issues],
            result.summary.total_checks,
            result.claim,
        )
        merged.duration_ms = result.duration_ms
        merged.claim_id = result.claim_id
        return merged

    def pre_submit_validation(
        self, claim: dict, *, context: Optional[RuleContext] = None
    ) -> PreSubmitCheck:
        """Full scrub with fixes disabled. Nothing is changed or recorded."""
        result = self.scrub(claim, auto_fix=False, context=context)
        return PreSubmitCheck(
            can_submit=result.can_submit,
            status=result.status,
            blockers=result.errors,
            warnings=result.warnings,
            recommendations=self.get_recommendations(result),
        )

    # ── Batch ────────────────────────────────────────────────────────────────

    def scrub_batch(
        self,
        claims: Sequence[dict],
        *,
        auto_fix: bool = False,
        categories: Optional[Iterable[str]] = None,
        context: Optional[RuleContext] = None,
        cancel_event: Optional[Event] = None,
    ) -> BatchScrubResult:
        """
        Scrub independent claims concurrently.

        Each item is isolated. A broken rule inside one claim is already an
        INFO issue on that claim's result; a claim that cannot be scrubbed at all becomes
        an error entry and the rest continue. The summary is reduced after every
        worker has finished, in input order. Items not yet started when
        cancel_event is set come back as cancelled.
        """
        ctx = context or RuleContext.from_settings()
        cats = list(categories) if categories else None

        def run(index: int, claim: dict) -> BatchItemResult:
            claim_id = claim.get("id") if isinstance(claim, dict) else None
            if cancel_event is not None and cancel_event.is_set():
                return BatchItemResult(index=index, claim_id=claim_id, cancelled=True)
            try:
                result = self.scrub(claim, auto_fix=auto_fix, categories=cats, context=ctx)
            except Exception as exc:
                logger.warning("Batch item %d (claim %s) failed: %s", index, claim_id, exc)
                return BatchItemResult(index=index, claim_id=claim_id, error=str(exc))
            result.claim_id = claim_id
            return BatchItemResult(index=index, claim_id=claim_id, result=result)

        if self.max_workers <= 1 or len(claims) <= 1:
            items = [run(i, c) for i, c in enumerate(claims)]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                items = list(pool.map(run, range(len(claims)), claims))

        return BatchScrubResult(results=items, summary=self._reduce(items))

    @staticmethod
    def _reduce(items: list[BatchItemResult]) -> BatchSummary:
        summary = BatchSummary(total_claims=len(items))
        for item in items:
            if item.cancelled:
                summary.cancelled += 1
                continue
            if item.result is None:
                summary.errored += 1
                continue
            summary.totals = summary.totals + item.result.summary
            status = item.result.status
            if status == ScrubOutcome.PASS:
                summary.passed += 1
            elif status == ScrubOutcome.PASS_WITH_WARNINGS:
                summary.passed_with_warnings += 1
            elif status == ScrubOutcome.FIXED:
                summary.fixed += 1
            else:
                summary.failed += 1
        return summary

    # ── Reporting helpers ────────────────────────────────────────────────────

    @staticmethod
    def get_recommendations(result: ScrubResult) -> list[Recommendation]:
        recs: list[Recommendation] = []

        manual_errors = [e for e in result.errors if not e.auto_fixable]
        fixable_errors = [e for e in result.errors if e.auto_fixable]

        if manual_errors:
            recs.append(
                Recommendation(
                    priority=RecommendationPriority.CRITICAL,
                    action="review_errors",
                    message=f"Correct {len(manual_errors)} error(s) before submission",
                    details=[e.message for e in manual_errors],
                )
            )
        if fixable_errors:
            recs.append(
                Recommendation(
                    priority=RecommendationPriority.HIGH,
                    action="auto_fix",
                    message=f"{len(fixable_errors)} error(s) can be fixed automatically",
                    details=[e.rule_name for e in fixable_errors],
                )
            )

        category_actions = (
            (RuleCategory.INSURANCE_INFO, "verify_insurance",
             "Verify insurance information with the payer"),
            (RuleCategory.DIAGNOSIS, "review_diagnosis",
             "Review diagnosis codes for accuracy and completeness"),
            (RuleCategory.PROCEDURE, "review_procedures",
             "Review procedure codes, charges and diagnosis pointers"),
        )
        for category, action, message in category_actions:
            cat_errors = [e for e in result.errors if e.category == category]
            if cat_errors:
                recs.append(
                    Recommendation(
                        priority=RecommendationPriority.HIGH,
                        action=action,
                        message=message,
                        details=[e.message for e in cat_errors],
                    )
                )

        if result.warnings:
            fixable = sum(1 for w in result.warnings if w.auto_fixable)
            message = f"Review {len(result.warnings)} warning(s)"
            if fixable:
                message += f" ({fixable} can be fixed automatically)"
            recs.append(
                Recommendation(
                    priority=RecommendationPriority.MEDIUM,
                    action="review_warnings",
                    message=message,
                    details=[w.message for w in result.warnings],
                )
            )
        if result.info:
            recs.append(
                Recommendation(
                    priority=RecommendationPriority.LOW,
                    action="review_info",
                    message=f"{len(result.info)} informational note(s) recorded",
                    details=[i.message for i in result.info],
                )
            )

        return sorted(recs, key=lambda r: RecommendationPriority.RANK[r.priority])

    @staticmethod
    def compare_claims(before: dict, after: dict) -> dict[str, Any]:
        """Field-level diff of two snapshots. Lists are compared as whole values."""
        changes: list[dict[str, Any]] = []

        def walk(a: Any, b: Any, path: str) -> None:
            if isinstance(a, dict) and isinstance(b, dict):
                for key in list(a) + [k for k in b if k not in a]:
                    walk(a.get(key), b.get(key), f"{path}.{key}" if path else key)
            elif a != b:
                changes.append({"field": path, "before": a, "after": b})

        walk(before or {}, after or {}, "")
        return {
            "has_changes": bool(changes),
            "change_count": len(changes),
            "changes": changes,
        }

    # ── Internals ────────────────────────────────────────────────────────────

    def _over_budget(self, started: float) -> bool:
        if not self.time_budget_ms:
            return False
        return (time.perf_counter() - started) * 1000 > self.time_budget_ms

    @staticmethod
    def _budget_issue(skipped: Sequence[Rule]) -> ScrubIssue:
        # An incomplete scrub must not pass, so this is reported as an error
        return ScrubIssue(
            rule_id=BUDGET_RULE_ID,
            rule_name="Scrub Time Budget",
            category=RuleCategory.SYSTEM,
            severity=Severity.ERROR,
            message=f"Scrub exceeded its time budget; {len(skipped)} rule(s) not evaluated",
            details={"skipped_rules": [r.id for r in skipped]},
        )

    @staticmethod
    def _evaluate(rule: Rule, claim: dict, ctx: RuleContext) -> Optional[ScrubIssue]:
        try:
            finding = rule.check(claim, ctx)
        except Exception as exc:
            logger.warning("Rule %s raised during evaluation: %s", rule.id, exc)
            return ScrubIssue(
                rule_id=rule.id,
                rule_name=rule.name,
                category=rule.category,
                severity=Severity.INFO,
                message=f"Rule {rule.id} ({rule.name}) could not be evaluated: {exc}",
                details={"error": type(exc).__name__},
            )
        if finding is None:
            return None
        return ScrubIssue(
            rule_id=rule.id,
            rule_name=rule.name,
            category=rule.category,
            severity=finding.severity or rule.severity,
            message=finding.message,
            field=finding.field,
            value=finding.value,
            expected_value=finding.expected_value,
            auto_fixable=rule.auto_fixable,
            details=finding.details,
        )

    @classmethod
    def _try_fix(cls, rule: Rule, claim: dict, ctx: RuleContext) -> Optional[FixOutcome]:
        """
        Apply rule.fix to a scratch copy; on success swap it into `claim`.
        A fix that raises, or after which the rule still fails, leaves `claim`
        untouched and the issue stays in its bucket.
        """
        candidate = copy.deepcopy(claim)
        try:
            outcome = rule.fix(candidate, ctx)
        except FixNotApplicable as exc:
            logger.debug("Fix for %s not applicable: %s", rule.id, exc)
            return None
        except Exception as exc:
            logger.warning("Fix for %s raised: %s", rule.id, exc)
            return None

        recheck = cls._evaluate(rule, candidate, ctx)
        if recheck is not None:
            logger.debug("Fix for %s did not resolve the finding", rule.id)
            return None

        claim.clear()
        claim.update(candidate)
        return outcome

    @staticmethod
    def _assemble(
        issues: list[ScrubIssue],
        fixed: list[FixedIssue],
        checks: int,
        working: dict,
    ) -> ScrubResult:
        errors = [i for i in issues if i.severity == Severity.ERROR]
        warnings = [i for i in issues if i.severity == Severity.WARNING]
        info = [i for i in issues if i.severity == Severity.INFO]

        summary = ScrubSummary(
            total_checks=checks,
            error_count=len(errors),
            warning_count=len(warnings),
            info_count=len(info),
            fixed_count=len(fixed),
            auto_fixable_count=sum(1 for i in issues if i.auto_fixable),
        )

        counts: dict[str, CategoryCounts] = {}

        def bucket(category: str) -> CategoryCounts:
            if category not in counts:
                counts[category] = CategoryCounts(category=category)
            return counts[category]

        for issue in issues:
            c = bucket(issue.category)
            if issue.severity == Severity.ERROR:
                c.errors += 1
            elif issue.severity == Severity.WARNING:
                c.warnings += 1
            else:
                c.info += 1
        for f in fixed:
            bucket(f.category).fixed += 1

        order = {cat: i for i, cat in enumerate(RuleCategory.ORDER)}
        categories = sorted(
            counts.values(), key=lambda c: order.get(c.category, len(order))
        )

        return ScrubResult(
            status=determine_status(summary),
            errors=errors,
            warnings=warnings,
            info=info,
            fixed_issues=fixed,
            summary=summary,
            categories=categories,
            claim=working,
        )
