import logging

from .memory import JobStore
from .models import AnalysisJob, JobStatus, JobStep

logger = logging.getLogger(__name__)


def create_store(backend: str = "memory", redis_url: str = None):
    """Build the job store for the configured backend."""
    if backend.lower() == "redis":
        try:
            from .redis_store import JobStore as RedisJobStore

            store = RedisJobStore(redis_url)
            store.client.ping()
            return store
        except Exception as exc:
            # Fall back to memory if Redis is unreachable/misconfigured
            logger.warning("redis job store unavailable (%s), using memory", exc)
    return JobStore()


__all__ = ["AnalysisJob", "JobStatus", "JobStep", "JobStore", "create_store"]
