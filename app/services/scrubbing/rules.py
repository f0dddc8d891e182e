"""
Claim Scrubbing Rules: deterministic, fully testable.

Each rule is a plain callable pair:
    check(claim, ctx) -> Finding | None
    fix(claim, ctx)   -> FixOutcome          (optional; mutates `claim` in place)

`claim` is a plain dict snapshot of a Claim (see
app.services.claims.service.claim_to_snapshot). Rules never touch the
database, the clock or any global state: "today" and every payer limit
arrive through RuleContext.

DEFAULT_RULES is evaluated in declaration order. That order is part of the
contract: it keeps issue ordering stable across runs so two scrub reports of
the same claim can be diffed, and it lets fixes feed later rules (duplicate
lines are merged before the charge-consistency check sums them).
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.settings import settings


# ── Constant classes ─────────────────────────────────────────────────────────


class Severity:
    ERROR = "error"  # Blocks submission
    WARNING = "warning"  # Should be reviewed; does not block
    INFO = "info"  # Recorded for audit; no action required

    RANK = {ERROR: 0, WARNING: 1, INFO: 2}


class RuleCategory:
    PATIENT_INFO = "patient_info"
    PROVIDER_INFO = "provider_info"
    INSURANCE_INFO = "insurance_info"
    DIAGNOSIS = "diagnosis"
    PROCEDURE = "procedure"
    DATES = "dates"
    BILLING = "billing"
    SYSTEM = "system"  # engine-level notes (budget exhaustion)

    ORDER = [
        PATIENT_INFO,
        PROVIDER_INFO,
        INSURANCE_INFO,
        DIAGNOSIS,
        PROCEDURE,
        DATES,
        BILLING,
        SYSTEM,
    ]


class PlanType:
    GROUP = "group"
    INDIVIDUAL = "individual"
    MEDICARE = "medicare"
    MEDICAID = "medicaid"
    SELF_PAY = "self_pay"


VALID_GENDERS = {"M", "F", "U", "male", "female", "unknown"}
CHARGE_TOLERANCE = Decimal("0.01")

_ICD10_RE = re.compile(r"^[A-Z][0-9][0-9A-Z](\.[0-9A-Z]{1,4})?$")
_CPT_HCPCS_RE = re.compile(r"^(\d{5}|[A-Z]\d{4})$")
_NPI_RE = re.compile(r"^\d{10}$")
_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_TAX_ID_RE = re.compile(r"^\d{2}-\d{7}$")
_POS_RE = re.compile(r"^\d{2}$")


# ── Rule plumbing ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may depend on besides the claim itself."""

    today: date
    timely_filing_limit_days: int = 90
    timely_filing_warning_days: int = 14
    max_diagnosis_codes: int = 12
    payers_requiring_group_number: frozenset = frozenset()

    @classmethod
    def from_settings(cls, today: Optional[date] = None) -> "RuleContext":
        return cls(
            today=today or date.today(),
            timely_filing_limit_days=settings.timely_filing_limit_days,
            timely_filing_warning_days=settings.timely_filing_warning_days,
            max_diagnosis_codes=settings.max_diagnosis_codes,
            payers_requiring_group_number=settings.payers_requiring_group_number,
        )


@dataclass
class Finding:
    """What a failing check reports. `severity` overrides the rule default."""

    field: str
    message: str
    value: Any = None
    expected_value: Any = None
    details: Any = None
    severity: Optional[str] = None


@dataclass
class FixOutcome:
    changes: dict[str, dict[str, Any]]
    message: str


class FixNotApplicable(Exception):
    """Raised by a fix when the detected problem cannot be corrected mechanically."""


CheckFn = Callable[[dict, RuleContext], Optional[Finding]]
FixFn = Callable[[dict, RuleContext], FixOutcome]


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    description: str
    category: str
    severity: str
    check: CheckFn = field(repr=False)
    fix: Optional[FixFn] = field(default=None, repr=False)

    @property
    def auto_fixable(self) -> bool:
        return self.fix is not None


# ── Value helpers ────────────────────────────────────────────────────────────


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def as_date(value: Any) -> Optional[date]:
    """Accept date, datetime or ISO string; anything unparseable is None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def as_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def line_total(line: dict) -> Decimal:
    """Unit charge × units for a single procedure line."""
    units = line.get("units") or 1
    return (as_decimal(line.get("charge")) * as_decimal(units)).quantize(Decimal("0.01"))


def procedure_line_sum(claim: dict) -> Decimal:
    return sum(
        (line_total(line) for line in claim.get("procedures") or []), Decimal("0.00")
    )


def _digits(value: str) -> str:
    return re.sub(r"[^0-9]", "", value)


def _section(claim: dict, key: str) -> dict:
    return claim.get(key) or {}


# ── Patient information ──────────────────────────────────────────────────────


def _check_patient_id(claim, ctx):
    if _blank(claim.get("patient_id")):
        return Finding(field="patient_id", message="Patient reference is required")
    return None


def _check_patient_name(claim, ctx):
    patient = _section(claim, "patient")
    first, last = patient.get("first_name"), patient.get("last_name")
    if _blank(first) or _blank(last):
        return Finding(
            field="patient.name",
            value=f"{first or ''} {last or ''}".strip(),
            message="Patient first and last name are required",
        )
    return None


def _check_patient_dob(claim, ctx):
    raw = _section(claim, "patient").get("date_of_birth")
    if _blank(raw):
        return Finding(
            field="patient.date_of_birth", message="Patient date of birth is required"
        )
    dob = as_date(raw)
    if dob is None:
        return Finding(
            field="patient.date_of_birth",
            value=raw,
            message="Patient date of birth is invalid",
        )
    if dob > ctx.today:
        return Finding(
            field="patient.date_of_birth",
            value=raw,
            message="Date of birth cannot be in the future",
        )
    return None


def _check_patient_gender(claim, ctx):
    gender = _section(claim, "patient").get("gender")
    if gender not in VALID_GENDERS:
        return Finding(
            field="patient.gender",
            value=gender,
            message="Patient gender is required (M, F, or U)",
        )
    return None


def _check_patient_address(claim, ctx):
    address = _section(claim, "patient").get("address") or {}
    missing = [
        label
        for key, label in (
            ("street", "street"),
            ("city", "city"),
            ("state", "state"),
            ("zip_code", "ZIP code"),
        )
        if _blank(address.get(key))
    ]
    if missing:
        return Finding(
            field="patient.address",
            value=address or None,
            details={"missing": missing},
            message=f"Patient address missing: {', '.join(missing)}",
        )
    return None


def _check_zip_format(claim, ctx):
    zip_code = (_section(claim, "patient").get("address") or {}).get("zip_code")
    if _blank(zip_code) or _ZIP_RE.match(zip_code):
        return None
    return Finding(
        field="patient.address.zip_code",
        value=zip_code,
        expected_value="XXXXX or XXXXX-XXXX",
        message="ZIP code must be 5 or 9 digits (XXXXX or XXXXX-XXXX)",
    )


def _fix_zip_format(claim, ctx):
    address = claim["patient"]["address"]
    original = address["zip_code"]
    digits = _digits(original)
    if len(digits) == 5:
        formatted = digits
    elif len(digits) == 9:
        formatted = f"{digits[:5]}-{digits[5:]}"
    else:
        raise FixNotApplicable(f"ZIP code {original!r} does not contain 5 or 9 digits")
    address["zip_code"] = formatted
    return FixOutcome(
        changes={"patient.address.zip_code": {"from": original, "to": formatted}},
        message=f"Formatted ZIP code: {formatted}",
    )


# ── Provider information ─────────────────────────────────────────────────────


def _check_provider_id(claim, ctx):
    if _blank(claim.get("provider_id")):
        return Finding(field="provider_id", message="Rendering provider reference is required")
    return None


def _check_provider_npi(claim, ctx):
    npi = _section(claim, "provider").get("npi")
    if _blank(npi):
        return Finding(field="provider.npi", message="Provider NPI is required")
    if not _NPI_RE.match(npi.strip()):
        return Finding(
            field="provider.npi",
            value=npi,
            expected_value="10 digits",
            message="NPI must be 10 digits",
        )
    return None


def _check_provider_tax_id(claim, ctx):
    if _blank(_section(claim, "provider").get("tax_id")):
        return Finding(field="provider.tax_id", message="Provider tax ID is required")
    return None


def _check_tax_id_format(claim, ctx):
    tax_id = _section(claim, "provider").get("tax_id")
    if _blank(tax_id) or _TAX_ID_RE.match(tax_id):
        return None
    return Finding(
        field="provider.tax_id",
        value=tax_id,
        expected_value="XX-XXXXXXX",
        message="Tax ID should be formatted as XX-XXXXXXX",
    )


def _fix_tax_id_format(claim, ctx):
    original = claim["provider"]["tax_id"]
    digits = _digits(original)
    if len(digits) != 9:
        raise FixNotApplicable(f"Tax ID {original!r} does not contain 9 digits")
    formatted = f"{digits[:2]}-{digits[2:]}"
    claim["provider"]["tax_id"] = formatted
    return FixOutcome(
        changes={"provider.tax_id": {"from": original, "to": formatted}},
        message=f"Formatted tax ID: {formatted}",
    )


# ── Insurance information ────────────────────────────────────────────────────


def _check_payer_id(claim, ctx):
    if _blank(_section(claim, "insurance").get("payer_id")):
        return Finding(field="insurance.payer_id", message="Insurance payer ID is required")
    return None


def _check_policy_number(claim, ctx):
    insurance = _section(claim, "insurance")
    if insurance.get("plan_type") == PlanType.SELF_PAY:
        return None
    if _blank(insurance.get("policy_number")):
        return Finding(
            field="insurance.policy_number",
            message="Insurance policy/member ID is required",
        )
    return None


def _check_group_number(claim, ctx):
    insurance = _section(claim, "insurance")
    if not _blank(insurance.get("group_number")):
        return None
    payer_id = (insurance.get("payer_id") or "").strip().upper()
    group_plan = insurance.get("plan_type") == PlanType.GROUP
    if group_plan or payer_id in ctx.payers_requiring_group_number:
        reason = "group plans" if group_plan else f"payer {payer_id}"
        return Finding(
            field="insurance.group_number",
            details={"payer_id": payer_id or None, "plan_type": insurance.get("plan_type")},
            message=f"Group number is required for {reason}",
        )
    return None


def _check_coverage_window(claim, ctx):
    insurance = _section(claim, "insurance")
    service_date = as_date(claim.get("service_date"))
    if service_date is None:
        return None
    start = as_date(insurance.get("coverage_start"))
    end = as_date(insurance.get("coverage_end"))
    if start and service_date < start:
        return Finding(
            field="insurance.coverage_start",
            value=start,
            message="Service date is before coverage start date",
        )
    if end and service_date > end:
        return Finding(
            field="insurance.coverage_end",
            value=end,
            message="Service date is after coverage end date",
        )
    return None


# ── Diagnosis codes ──────────────────────────────────────────────────────────


def _check_diagnosis_present(claim, ctx):
    if not claim.get("diagnosis_codes"):
        return Finding(
            field="diagnosis_codes", message="At least one diagnosis code is required"
        )
    return None


def _check_icd10_format(claim, ctx):
    invalid = [c for c in claim.get("diagnosis_codes") or [] if not _ICD10_RE.match(c)]
    if invalid:
        return Finding(
            field="diagnosis_codes",
            value=invalid,
            details={"invalid_codes": invalid},
            message=f"Invalid ICD-10 codes: {', '.join(invalid)}",
        )
    return None


def _check_diagnosis_count(claim, ctx):
    count = len(claim.get("diagnosis_codes") or [])
    if count > ctx.max_diagnosis_codes:
        return Finding(
            field="diagnosis_codes",
            value=count,
            expected_value=ctx.max_diagnosis_codes,
            message=f"Too many diagnosis codes: {count} (maximum {ctx.max_diagnosis_codes})",
        )
    return None


def _check_duplicate_diagnoses(claim, ctx):
    seen: set[str] = set()
    duplicates: list[str] = []
    for code in claim.get("diagnosis_codes") or []:
        if code in seen and code not in duplicates:
            duplicates.append(code)
        seen.add(code)
    if duplicates:
        return Finding(
            field="diagnosis_codes",
            value=duplicates,
            message=f"Duplicate diagnosis codes: {', '.join(duplicates)}",
        )
    return None


def _fix_duplicate_diagnoses(claim, ctx):
    """Drop repeated codes and re-point procedure lines at the surviving position."""
    original = list(claim["diagnosis_codes"])
    deduped: list[str] = []
    # 1-based old pointer -> 1-based new pointer
    remap: dict[int, int] = {}
    for old_pos, code in enumerate(original, start=1):
        if code not in deduped:
            deduped.append(code)
        remap[old_pos] = deduped.index(code) + 1

    for line in claim.get("procedures") or []:
        pointers = line.get("diagnosis_pointers") or []
        new_pointers: list[int] = []
        for p in pointers:
            mapped = remap.get(p, p)
            if mapped not in new_pointers:
                new_pointers.append(mapped)
        line["diagnosis_pointers"] = new_pointers

    claim["diagnosis_codes"] = deduped
    return FixOutcome(
        changes={"diagnosis_codes": {"from": original, "to": deduped}},
        message=f"Removed {len(original) - len(deduped)} duplicate diagnosis code(s)",
    )


# ── Procedure lines ──────────────────────────────────────────────────────────


def _check_procedures_present(claim, ctx):
    if not claim.get("procedures"):
        return Finding(field="procedures", message="At least one procedure line is required")
    return None


def _check_procedure_codes(claim, ctx):
    invalid = [
        line.get("code")
        for line in claim.get("procedures") or []
        if not _CPT_HCPCS_RE.match(line.get("code") or "")
    ]
    if invalid:
        return Finding(
            field="procedures.code",
            value=invalid,
            details={"invalid_codes": invalid},
            message=f"Invalid CPT/HCPCS codes: {', '.join(str(c) for c in invalid)}",
        )
    return None


def _check_procedure_charges(claim, ctx):
    positions = [
        i
        for i, line in enumerate(claim.get("procedures") or [], start=1)
        if as_decimal(line.get("charge")) <= 0
    ]
    if positions:
        return Finding(
            field="procedures.charge",
            value=positions,
            message=(
                "Procedures missing charges at positions: "
                f"{', '.join(str(p) for p in positions)}"
            ),
        )
    return None


def _check_procedure_units(claim, ctx):
    positions = []
    for i, line in enumerate(claim.get("procedures") or [], start=1):
        units = line.get("units", 1)
        if not isinstance(units, int) or isinstance(units, bool) or units < 1:
            positions.append(i)
    if positions:
        return Finding(
            field="procedures.units",
            value=positions,
            expected_value="whole number >= 1",
            message=(
                "Procedure units must be a whole number of at least 1 at positions: "
                f"{', '.join(str(p) for p in positions)}"
            ),
        )
    return None


def _check_diagnosis_pointers(claim, ctx):
    dx_count = len(claim.get("diagnosis_codes") or [])
    problems: list[dict] = []
    for i, line in enumerate(claim.get("procedures") or [], start=1):
        pointers = line.get("diagnosis_pointers") or []
        if not pointers:
            problems.append({"position": i, "issue": "missing"})
            continue
        for p in pointers:
            if not isinstance(p, int) or p < 1 or p > dx_count:
                problems.append({"position": i, "issue": "invalid", "pointer": p})
    if problems:
        parts = [
            f"Procedure {p['position']}: missing diagnosis pointer"
            if p["issue"] == "missing"
            else f"Procedure {p['position']}: invalid pointer {p['pointer']}"
            for p in problems
        ]
        return Finding(
            field="procedures.diagnosis_pointers",
            value=problems,
            message="; ".join(parts),
        )
    return None


def _line_key(line: dict, claim: dict) -> tuple:
    line_date = as_date(line.get("service_date")) or as_date(claim.get("service_date"))
    return (line.get("code"), tuple(line.get("modifiers") or ()), line_date)


def _duplicate_groups(claim: dict) -> list[list[int]]:
    """Indexes (0-based) of lines sharing code + modifiers + date, first-seen order."""
    groups: dict[tuple, list[int]] = {}
    for idx, line in enumerate(claim.get("procedures") or []):
        groups.setdefault(_line_key(line, claim), []).append(idx)
    return [idxs for idxs in groups.values() if len(idxs) > 1]


def _check_duplicate_lines(claim, ctx):
    groups = _duplicate_groups(claim)
    if groups:
        procedures = claim["procedures"]
        codes = [procedures[g[0]].get("code") for g in groups]
        return Finding(
            field="procedures",
            value=[[i + 1 for i in g] for g in groups],
            details={"codes": codes},
            message=(
                "Duplicate procedure lines (same code, modifiers and date): "
                f"{', '.join(str(c) for c in codes)}"
            ),
        )
    return None


def _fix_duplicate_lines(claim, ctx):
    """
    Merge each duplicate group into its first line by summing units.
    Groups whose lines carry different unit charges are left alone: merging
    them would change the billed amount.
    """
    procedures = claim["procedures"]
    drop: set[int] = set()
    merged_codes: list[str] = []
    for group in _duplicate_groups(claim):
        charges = {as_decimal(procedures[i].get("charge")) for i in group}
        if len(charges) != 1:
            continue
        keeper = procedures[group[0]]
        for i in group[1:]:
            keeper["units"] = (keeper.get("units") or 1) + (procedures[i].get("units") or 1)
            pointers = keeper.setdefault("diagnosis_pointers", [])
            for p in procedures[i].get("diagnosis_pointers") or []:
                if p not in pointers:
                    pointers.append(p)
            drop.add(i)
        merged_codes.append(keeper.get("code"))

    if not drop:
        raise FixNotApplicable("Duplicate lines carry different unit charges")

    before = len(procedures)
    claim["procedures"] = [line for i, line in enumerate(procedures) if i not in drop]
    return FixOutcome(
        changes={"procedures": {"from": before, "to": len(claim["procedures"])}},
        message=f"Merged duplicate lines for {', '.join(str(c) for c in merged_codes)}",
    )


# ── Dates ────────────────────────────────────────────────────────────────────


def _check_service_date_present(claim, ctx):
    raw = claim.get("service_date")
    if _blank(raw) or as_date(raw) is None:
        return Finding(
            field="service_date",
            value=raw,
            message="Service date is required and must be valid",
        )
    return None


def _check_service_date_not_future(claim, ctx):
    service_date = as_date(claim.get("service_date"))
    if service_date and service_date > ctx.today:
        return Finding(
            field="service_date",
            value=service_date,
            message="Service date cannot be in the future",
        )
    return None


def timely_filing_limit(claim: dict, ctx: RuleContext) -> int:
    """Payer-specific limit from the insurance block, else the configured default."""
    override = _section(claim, "insurance").get("timely_filing_limit")
    if isinstance(override, int) and not isinstance(override, bool) and override > 0:
        return override
    return ctx.timely_filing_limit_days


def _check_timely_filing(claim, ctx):
    service_date = as_date(claim.get("service_date"))
    if service_date is None:
        return None
    limit = timely_filing_limit(claim, ctx)
    elapsed = (ctx.today - service_date).days
    details = {"days_since_service": elapsed, "timely_filing_days": limit}
    if elapsed > limit:
        return Finding(
            field="service_date",
            value=service_date,
            expected_value=f"within {limit} days of service",
            details=details,
            message=f"Service date was {elapsed} days ago (limit: {limit} days)",
        )
    remaining = limit - elapsed
    if remaining <= ctx.timely_filing_warning_days:
        return Finding(
            field="service_date",
            value=service_date,
            details={**details, "days_remaining": remaining},
            severity=Severity.WARNING,
            message=f"Timely filing deadline in {remaining} days (limit: {limit} days)",
        )
    return None


# ── Billing ──────────────────────────────────────────────────────────────────


def _check_place_of_service(claim, ctx):
    pos = claim.get("place_of_service")
    if _blank(pos) or not _POS_RE.match(str(pos)):
        return Finding(
            field="place_of_service",
            value=pos,
            message="Place of service code is required (2-digit code)",
        )
    return None


def _check_charge_consistency(claim, ctx):
    line_sum = procedure_line_sum(claim)
    total = as_decimal(claim.get("total_charges"))
    if abs(line_sum - total) > CHARGE_TOLERANCE:
        return Finding(
            field="total_charges",
            value=total,
            expected_value=line_sum,
            details={"difference": abs(line_sum - total)},
            message=(
                f"Total charges (${total}) doesn't match sum of procedure lines "
                f"(${line_sum})"
            ),
        )
    return None


def _fix_charge_consistency(claim, ctx):
    original = as_decimal(claim.get("total_charges"))
    line_sum = procedure_line_sum(claim)
    claim["total_charges"] = line_sum
    return FixOutcome(
        changes={"total_charges": {"from": original, "to": line_sum}},
        message=f"Updated total charges to match procedure sum: ${line_sum}",
    )


# ── Rule set ─────────────────────────────────────────────────────────────────

C = RuleCategory
S = Severity

DEFAULT_RULES: tuple[Rule, ...] = (
    Rule("PI001", "Patient Reference Required", "Claim must reference a patient",
         C.PATIENT_INFO, S.ERROR, _check_patient_id),
    Rule("PI002", "Patient Name Required", "Patient first and last name are required",
         C.PATIENT_INFO, S.ERROR, _check_patient_name),
    Rule("PI003", "Patient DOB Required", "Patient date of birth is required and valid",
         C.PATIENT_INFO, S.ERROR, _check_patient_dob),
    Rule("PI004", "Patient Gender Required", "Patient gender is required",
         C.PATIENT_INFO, S.ERROR, _check_patient_gender),
    Rule("PI005", "Patient Address Required", "Street, city, state and ZIP are required",
         C.PATIENT_INFO, S.ERROR, _check_patient_address),
    Rule("PI006", "Valid ZIP Code Format", "ZIP code must be XXXXX or XXXXX-XXXX",
         C.PATIENT_INFO, S.WARNING, _check_zip_format, _fix_zip_format),
    Rule("PR001", "Provider Reference Required", "Claim must reference a rendering provider",
         C.PROVIDER_INFO, S.ERROR, _check_provider_id),
    Rule("PR002", "Provider NPI Required", "Rendering provider NPI must be 10 digits",
         C.PROVIDER_INFO, S.ERROR, _check_provider_npi),
    Rule("PR003", "Provider Tax ID Required", "Provider tax ID (EIN) is required",
         C.PROVIDER_INFO, S.ERROR, _check_provider_tax_id),
    Rule("PR004", "Valid Tax ID Format", "Tax ID must be formatted XX-XXXXXXX",
         C.PROVIDER_INFO, S.WARNING, _check_tax_id_format, _fix_tax_id_format),
    Rule("IN001", "Payer ID Required", "Insurance payer ID is required",
         C.INSURANCE_INFO, S.ERROR, _check_payer_id),
    Rule("IN002", "Policy Number Required", "Policy/member ID is required unless self-pay",
         C.INSURANCE_INFO, S.ERROR, _check_policy_number),
    Rule("IN003", "Group Number Required", "Group plans and some payers require a group number",
         C.INSURANCE_INFO, S.WARNING, _check_group_number),
    Rule("IN004", "Coverage Active", "Service date must fall within the coverage period",
         C.INSURANCE_INFO, S.ERROR, _check_coverage_window),
    Rule("DX001", "Primary Diagnosis Required", "At least one diagnosis code is required",
         C.DIAGNOSIS, S.ERROR, _check_diagnosis_present),
    Rule("DX002", "Valid ICD-10 Format", "Diagnosis codes must be valid ICD-10 format",
         C.DIAGNOSIS, S.ERROR, _check_icd10_format),
    Rule("DX003", "Maximum Diagnosis Codes", "Most payers accept a limited number of codes",
         C.DIAGNOSIS, S.WARNING, _check_diagnosis_count),
    Rule("DX004", "Duplicate Diagnosis Codes", "Each diagnosis code should appear once",
         C.DIAGNOSIS, S.WARNING, _check_duplicate_diagnoses, _fix_duplicate_diagnoses),
    Rule("PC001", "Procedure Line Required", "At least one procedure line is required",
         C.PROCEDURE, S.ERROR, _check_procedures_present),
    Rule("PC002", "Valid CPT/HCPCS Format", "Procedure codes must be CPT or HCPCS format",
         C.PROCEDURE, S.ERROR, _check_procedure_codes),
    Rule("PC003", "Procedure Charge Required", "Each procedure line needs a positive charge",
         C.PROCEDURE, S.ERROR, _check_procedure_charges),
    Rule("PC004", "Valid Procedure Units", "Each procedure line needs at least one unit",
         C.PROCEDURE, S.ERROR, _check_procedure_units),
    Rule("PC005", "Diagnosis Pointer Required", "Each line must point at a listed diagnosis",
         C.PROCEDURE, S.ERROR, _check_diagnosis_pointers),
    Rule("PC006", "Duplicate Procedure Lines", "Identical code, modifiers and date billed twice",
         C.PROCEDURE, S.WARNING, _check_duplicate_lines, _fix_duplicate_lines),
    Rule("DT001", "Service Date Required", "Service date is required",
         C.DATES, S.ERROR, _check_service_date_present),
    Rule("DT002", "Service Date Not Future", "Service date cannot be in the future",
         C.DATES, S.ERROR, _check_service_date_not_future),
    Rule("DT003", "Timely Filing Limit", "Claim must be filed within the payer limit",
         C.DATES, S.ERROR, _check_timely_filing),
    Rule("BL001", "Place of Service Required", "Place of service must be a 2-digit code",
         C.BILLING, S.ERROR, _check_place_of_service),
    Rule("BL002", "Total Charges Match", "Total charges must equal the procedure line sum",
         C.BILLING, S.ERROR, _check_charge_consistency, _fix_charge_consistency),
)

del C, S


def rules_by_category(category: str, rules=DEFAULT_RULES) -> list[Rule]:
    return [r for r in rules if r.category == category]


def auto_fixable_rules(rules=DEFAULT_RULES) -> list[Rule]:
    return [r for r in rules if r.auto_fixable]


def get_rule(rule_id: str, rules=DEFAULT_RULES) -> Optional[Rule]:
    return next((r for r in rules if r.id == rule_id), None)
