from __future__ import annotations

import threading
from typing import Dict, Optional

from .models import AnalysisJob, JobStatus


class JobStore:
    """In-process job map; every read hands out a snapshot copy.

    Terminal states are absorbing: once a job is completed or failed, later
    writes are ignored and report False.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, AnalysisJob] = {}
        self._lock = threading.Lock()

    def create(self, job: AnalysisJob) -> AnalysisJob:
        with self._lock:
            self._jobs[job.id] = job
            return job.copy()

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def is_terminal(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return bool(job and job.status.terminal)

    def _open_job(self, job_id: str) -> Optional[AnalysisJob]:
        job = self._jobs.get(job_id)
        if not job or job.status.terminal:
            return None
        return job

    def mark_processing(self, job_id: str) -> bool:
        with self._lock:
            job = self._open_job(job_id)
            if not job:
                return False
            job.status = JobStatus.processing
            return True

    def record_step(self, job_id: str, progress: int, name: str, description: str) -> bool:
        with self._lock:
            job = self._open_job(job_id)
            if not job:
                return False
            job.add_step(progress, name, description)
            return True

    def complete(self, job_id: str, result: dict, step: Optional[tuple] = None) -> bool:
        with self._lock:
            job = self._open_job(job_id)
            if not job:
                return False
            if step:
                job.add_step(*step)
            job.finish(JobStatus.completed, result=result)
            return True

    def fail(self, job_id: str, error: str, step: Optional[tuple] = None) -> bool:
        with self._lock:
            job = self._open_job(job_id)
            if not job:
                return False
            if step:
                job.add_step(*step)
            job.finish(JobStatus.failed, error=error)
            return True

