"""
JSON-safe conversion for values headed into JSON columns and audit payloads.

Claim snapshots and scrub results carry date, datetime, Decimal and UUID
values; JSON columns only accept plain JSON types.
"""

import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def _default(obj: Any) -> Any:
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def json_safe(value: Any) -> Any:
    """Round-trip through JSON to strip any non-serializable types."""
    return json.loads(json.dumps(value, default=_default))
