from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


@dataclass
class JobStep:
    name: str
    description: str
    progress: int
    timestamp: str = field(default_factory=utcnow)


@dataclass
class AnalysisJob:
    id: str
    filename: str
    status: JobStatus = JobStatus.queued
    progress: int = 0
    steps: List[JobStep] = field(default_factory=list)
    start_time: str = field(default_factory=utcnow)
    end_time: Optional[str] = None
    result: Optional[dict] = None
    error: Optional[str] = None

    def add_step(self, progress: int, name: str, description: str) -> None:
        self.steps.append(JobStep(name=name, description=description, progress=progress))
        # progress never moves backwards
        self.progress = max(self.progress, max(0, min(int(progress), 100)))

    def finish(self, status: JobStatus, result: Optional[dict] = None, error: Optional[str] = None) -> None:
        self.status = status
        self.end_time = utcnow()
        if result is not None:
            self.result = result
        if error is not None:
            self.error = error

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "progress": self.progress,
            "steps": [asdict(s) for s in self.steps],
            "startTime": self.start_time,
            "endTime": self.end_time,
            "result": self.result,
            "error": self.error,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @staticmethod
    def from_json(payload: str) -> "AnalysisJob":
        data = json.loads(payload)
        return AnalysisJob(
            id=data["id"],
            filename=data["filename"],
            status=JobStatus(data["status"]),
            progress=data["progress"],
            steps=[JobStep(**s) for s in data.get("steps") or []],
            start_time=data["startTime"],
            end_time=data.get("endTime"),
            result=data.get("result"),
            error=data.get("error"),
        )

    def copy(self) -> "AnalysisJob":
        return AnalysisJob.from_json(self.to_json())
