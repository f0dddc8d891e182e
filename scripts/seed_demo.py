"""
Demo seed script: a handful of draft claims that exercise the main scrub
outcomes (clean, auto-fixable, blocking error, near the filing deadline).

Usage (local or Render Shell):
    python scripts/seed_demo.py

Idempotent: safe to re-run; skips seeding when demo claims already exist.
"""

import os
import sys
from datetime import date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from app.database import SessionLocal
from app.models.claim import Claim
from app.services.claims.identity import Identity, UserRole
from app.services.claims.service import ClaimsService

# ── Demo data constants ────────────────────────────────────────────────────────

DEMO_NOTE = "demo-seed"
SEED_IDENTITY = Identity(user_id="seed-script", role=UserRole.ADMIN)

PATIENT = {
    "first_name": "Maria",
    "last_name": "Lopez",
    "date_of_birth": "1980-05-01",
    "gender": "F",
    "address": {"street": "12 Elm Street", "city": "Springfield", "state": "IL", "zip_code": "62704"},
}
PROVIDER = {"first_name": "Alan", "last_name": "Grant", "npi": "1234567890", "tax_id": "12-3456789"}
INSURANCE = {
    "payer_id": "AETNA",
    "payer_name": "Aetna",
    "policy_number": "POL-55512",
    "group_number": "GRP-001",
    "plan_type": "group",
}
PROCEDURES = [
    {"code": "99213", "charge": "150.00", "units": 1, "diagnosis_pointers": [1]},
    {"code": "87880", "charge": "50.00", "units": 2, "diagnosis_pointers": [1, 2]},
]

# (label, days since service, overrides)
DEMO_CLAIMS = [
    ("clean office visit", 7, {}),
    ("overbilled total (auto-fixable)", 12, {"total_charges": "300.00"}),
    ("unformatted ZIP and tax ID (auto-fixable warnings)", 20, {
        "patient": {**PATIENT, "address": {**PATIENT["address"], "zip_code": "627041234"}},
        "provider": {**PROVIDER, "tax_id": "123456789"},
    }),
    ("missing place of service (blocking)", 15, {"place_of_service": None}),
    ("close to the filing deadline", 82, {}),
]


def _claim_data(days_ago: int, overrides: dict) -> dict:
    data = {
        "patient_id": "pat-demo-1",
        "provider_id": "prov-demo-1",
        "patient": PATIENT,
        "provider": PROVIDER,
        "insurance": INSURANCE,
        "service_date": date.today() - timedelta(days=days_ago),
        "place_of_service": "11",
        "diagnosis_codes": ["J06.9", "R05.9"],
        "procedures": PROCEDURES,
        "notes": DEMO_NOTE,
    }
    data.update(overrides)
    return data


def main() -> None:
    print("\n=== Claim Scrubbing: demo seed ===\n")

    db = SessionLocal()
    try:
        existing = db.scalars(select(Claim).where(Claim.notes == DEMO_NOTE).limit(1)).first()
        if existing:
            print(f"✓ Demo claims already exist (e.g. {existing.claim_number}), skipping.")
            return

        service = ClaimsService(db)
        for label, days_ago, overrides in DEMO_CLAIMS:
            claim = service.create_claim(_claim_data(days_ago, overrides), SEED_IDENTITY)
            report = service.scrub_claim(claim.id, SEED_IDENTITY)
            print(
                f"✓ {claim.claim_number}  {label:<52} scrub={report.status:<18} "
                f"errors={report.summary['error_count']} warnings={report.summary['warning_count']}"
            )

        print("\n✅ Demo seed complete.\n")
        print("Next steps:")
        print("  1. Mint a token      → python scripts/issue_token.py")
        print("  2. List claims       → GET  /claims")
        print("  3. Fix what can be   → POST /claims/{id}/auto-fix")
        print("  4. Submit            → POST /claims/{id}/submit\n")

    except Exception as e:
        db.rollback()
        print(f"\nERROR: {e}")
        import traceback

        traceback.print_exc()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
