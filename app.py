import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger.json import JsonFormatter

import config
import tasks
from security import require_admin_key

# ── Logging ────────────────────────────────────────────────────────────────────
handler = logging.StreamHandler()
if config.LOG_JSON:
    handler.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
else:
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
logging.basicConfig(level=config.LOG_LEVEL, handlers=[handler])

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    tasks.start_worker()
    yield
    tasks.queue_worker.stop()


app = FastAPI(title="APK Risk Triage", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _save_upload(file: UploadFile, destination: Path) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    bytes_written = 0
    with destination.open("wb") as output:
        while True:
            chunk = file.file.read(1024 * 1024)
            if not chunk:
                break
            bytes_written += len(chunk)
            if bytes_written > config.MAX_UPLOAD_BYTES:
                output.close()
                destination.unlink(missing_ok=True)
                raise HTTPException(status_code=413, detail="APK too large")
            output.write(chunk)
    return bytes_written


@app.post("/scan")
async def create_scan(background_tasks: BackgroundTasks, file: UploadFile = File(...)):
    job_id = uuid.uuid4().hex
    suffix = Path(file.filename).suffix if file.filename else ""
    destination = config.UPLOAD_DIR / job_id / f"upload{suffix or '.apk'}"
    size = _save_upload(file, destination)

    job = tasks.pipeline.submit(destination, filename=file.filename or destination.name, job_id=job_id)
    background_tasks.add_task(tasks.enqueue_analysis, job_id, destination)
    logger.info("accepted upload %s for job %s (%d bytes)", job.filename, job_id, size)

    return {"job_id": job_id, "status": job.status, "filename": job.filename}


@app.get("/scan/{job_id}")
async def get_scan(job_id: str):
    job = tasks.pipeline.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return job.to_dict()


@app.get("/health")
async def health():
    return {"status": "ok", "threatDatabase": tasks.threat_store.info()}


@app.get("/")
async def root():
    return {"service": app.title, "version": app.version}


@app.get("/stats")
async def stats():
    """Lightweight stats for dashboards."""
    return tasks.stats.snapshot()


# ── Threat database ───────────────────────────────────────────────────────────


class ThreatIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    hash: Optional[str] = None
    package_name: Optional[str] = Field(default=None, alias="packageName")
    type: str = "unknown"
    family: Optional[str] = None
    confidence: int = Field(default=50, ge=0, le=100)
    description: str = ""
    severity: str = Field(default="medium", pattern="^(low|medium|high|critical)$")
    tags: List[str] = []
    indicators: List[str] = []
    first_seen: Optional[str] = Field(default=None, alias="firstSeen")


class PatternIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str
    pattern: str = ""
    description: str = ""
    risk_level: str = Field(default="medium", alias="riskLevel")
    tags: List[str] = []
    examples: List[str] = []


@app.get("/threats/summary")
async def threat_summary():
    return tasks.threat_store.summary()


@app.get("/threats/search")
async def threat_search(q: str = Query(..., min_length=1)):
    return [record.to_dict() for record in tasks.threat_store.search(q)]


@app.get("/threats/patterns")
async def threat_patterns():
    return [pattern.to_dict() for pattern in tasks.threat_store.patterns()]


@app.post("/threats", dependencies=[Depends(require_admin_key)])
async def add_threat(threat: ThreatIn):
    try:
        record = tasks.threat_store.add(threat.model_dump(by_alias=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return record.to_dict()


@app.delete("/threats/{threat_id}", dependencies=[Depends(require_admin_key)])
async def remove_threat(threat_id: str):
    if not tasks.threat_store.remove(threat_id):
        raise HTTPException(status_code=404, detail="Threat not found")
    return {"status": "removed", "id": threat_id}


@app.post("/threats/patterns", dependencies=[Depends(require_admin_key)])
async def add_pattern(pattern: PatternIn):
    try:
        stored = tasks.threat_store.add_pattern(pattern.model_dump(by_alias=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return stored.to_dict()
