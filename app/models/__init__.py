# Import all models here so Alembic's env.py can discover them via Base.metadata
from app.models.base import Base  # noqa: F401
from app.models.claim import Claim, ClaimNumberSequence  # noqa: F401
from app.models.scrub_report import ScrubReport  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
