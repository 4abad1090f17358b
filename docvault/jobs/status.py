"""Job status management utilities."""
import json
import os
from datetime import datetime, timezone
from typing import Optional

import redis

from docvault.api.models import JobStatus
from docvault.logging import get_logger

logger = get_logger(__name__)

JOB_STATUS_TTL_SECONDS = 3600


class JobStatusStore:
    """Job status documents kept in Redis under ``job:{id}``."""

    def __init__(self, client=None, ttl_seconds: int = JOB_STATUS_TTL_SECONDS):
        self.client = client or redis.Redis.from_url(
            os.getenv("REDIS_URL", "redis://redis:6379/0"),
            decode_responses=True
        )
        self.ttl_seconds = ttl_seconds

    def set(self, job_id: str, status: str, **kwargs) -> None:
        data = {
            "job_id": job_id,
            "status": status,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **kwargs
        }

        # Get existing data to preserve created_at
        existing = self.client.get(f"job:{job_id}")
        if existing:
            existing_data = json.loads(existing)
            data["created_at"] = existing_data.get("created_at")
            data.setdefault("blob_path", existing_data.get("blob_path"))
        else:
            data["created_at"] = data["updated_at"]

        self.client.setex(f"job:{job_id}", self.ttl_seconds, json.dumps(data))
        logger.info("job_status_updated", extra={"job_id": job_id, "status": status})

    def get(self, job_id: str) -> Optional[JobStatus]:
        data = self.client.get(f"job:{job_id}")
        if data:
            return JobStatus(**json.loads(data))
        return None


_store: Optional[JobStatusStore] = None


def get_job_store() -> JobStatusStore:
    global _store
    if _store is None:
        _store = JobStatusStore()
    return _store


def set_job_store(store: Optional[JobStatusStore]) -> None:
    global _store
    _store = store


def set_job_status(job_id: str, status: str, **kwargs) -> None:
    """Store job status in Redis with 1 hour TTL."""
    get_job_store().set(job_id, status, **kwargs)


def get_job_status(job_id: str) -> Optional[JobStatus]:
    """Retrieve job status from Redis."""
    return get_job_store().get(job_id)
