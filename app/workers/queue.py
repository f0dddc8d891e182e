"""RQ queue setup: shared by API (enqueue) and worker (dequeue)."""

from typing import Optional

import redis
from rq import Queue

from app.services.claims.identity import Identity
from app.settings import settings

_redis_conn: redis.Redis | None = None
_queue: Queue | None = None


def get_redis() -> redis.Redis:
    global _redis_conn
    if _redis_conn is None:
        _redis_conn = redis.from_url(settings.redis_url)
    return _redis_conn


def get_queue() -> Queue:
    global _queue
    if _queue is None:
        _queue = Queue(settings.rq_queue_name, connection=get_redis())
    return _queue


def enqueue_batch_scrub(
    claim_ids: list[str],
    identity: Identity,
    auto_fix: bool = False,
    categories: Optional[list[str]] = None,
) -> str:
    """
    Enqueue a batch scrub job.
    Returns the job ID for status tracking.
    """
    from app.workers.scrub_jobs import run_batch_scrub  # avoid circular import

    job = get_queue().enqueue(
        run_batch_scrub,
        args=(claim_ids, identity.user_id, identity.role),
        kwargs={"auto_fix": auto_fix, "categories": categories},
        job_timeout=900,  # 15 minutes for the largest allowed batch
        result_ttl=3600,  # keep result for 1 hour
        failure_ttl=86400,  # keep failed job info for 24 hours
    )
    return job.id
