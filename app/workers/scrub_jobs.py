"""
Background scrub jobs, executed by an RQ worker:

    rq worker claim-scrubbing --url $REDIS_URL

Jobs open their own DB session; the enqueuing request has long since
returned. Arguments are plain strings so they survive RQ's pickling.
"""

import logging
import uuid
from typing import Optional

from app.database import SessionLocal
from app.services.claims.identity import Identity
from app.services.claims.service import ClaimsService

logger = logging.getLogger(__name__)


def run_batch_scrub(
    claim_ids: list[str],
    user_id: str,
    role: str,
    auto_fix: bool = False,
    categories: Optional[list[str]] = None,
) -> dict:
    """
    RQ entry point for POST /claims/batch/scrub?background=true.
    Returns a JSON-friendly summary that RQ stores as the job result.
    """
    identity = Identity(user_id=user_id, role=role)
    logger.info("Starting background batch scrub of %d claims", len(claim_ids))

    db = SessionLocal()
    try:
        outcome = ClaimsService(db).batch_scrub(
            [uuid.UUID(cid) for cid in claim_ids],
            identity,
            auto_fix=auto_fix,
            categories=categories,
        )
    except Exception:
        db.rollback()
        logger.exception("Background batch scrub failed")
        raise
    finally:
        db.close()

    return {
        "summary": outcome.summary,
        "results": [
            {
                "claim_id": r.claim_id,
                "claim_number": r.claim_number,
                "status": r.status,
                "report_id": str(r.report_id) if r.report_id else None,
                "error": r.error,
                "cancelled": r.cancelled,
            }
            for r in outcome.results
        ],
    }
