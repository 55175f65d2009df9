from __future__ import annotations

import logging
from typing import Callable, Optional

import redis

from .models import AnalysisJob, JobStatus

logger = logging.getLogger(__name__)

KEY_PREFIX = "apk_job:"


class JobStore:
    """Redis-backed job map shared across worker processes.

    Mutations run as optimistic WATCH/MULTI transactions so the pipeline and
    the timeout watcher cannot interleave a read-modify-write on one job.
    """

    def __init__(self, url: str, ttl_seconds: Optional[int] = 7 * 24 * 3600) -> None:
        self.client = redis.Redis.from_url(url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    def _key(self, job_id: str) -> str:
        return f"{KEY_PREFIX}{job_id}"

    def create(self, job: AnalysisJob) -> AnalysisJob:
        self.client.set(self._key(job.id), job.to_json(), ex=self.ttl_seconds)
        return job.copy()

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        payload = self.client.get(self._key(job_id))
        if not payload:
            return None
        return AnalysisJob.from_json(payload)

    def is_terminal(self, job_id: str) -> bool:
        job = self.get(job_id)
        return bool(job and job.status.terminal)

    def _mutate(self, job_id: str, change: Callable[[AnalysisJob], None]) -> bool:
        key = self._key(job_id)
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    payload = pipe.get(key)
                    if not payload:
                        return False
                    job = AnalysisJob.from_json(payload)
                    if job.status.terminal:
                        return False
                    change(job)
                    pipe.multi()
                    pipe.set(key, job.to_json(), ex=self.ttl_seconds)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    logger.debug("concurrent update on %s, retrying", key)
                    continue

    def mark_processing(self, job_id: str) -> bool:
        def change(job: AnalysisJob) -> None:
            job.status = JobStatus.processing

        return self._mutate(job_id, change)

    def record_step(self, job_id: str, progress: int, name: str, description: str) -> bool:
        return self._mutate(job_id, lambda job: job.add_step(progress, name, description))

    def complete(self, job_id: str, result: dict, step: Optional[tuple] = None) -> bool:
        def change(job: AnalysisJob) -> None:
            if step:
                job.add_step(*step)
            job.finish(JobStatus.completed, result=result)

        return self._mutate(job_id, change)

    def fail(self, job_id: str, error: str, step: Optional[tuple] = None) -> bool:
        def change(job: AnalysisJob) -> None:
            if step:
                job.add_step(*step)
            job.finish(JobStatus.failed, error=error)

        return self._mutate(job_id, change)
