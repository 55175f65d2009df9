"""Default stores, pipeline and background worker used by the HTTP app."""

import logging
from pathlib import Path
from typing import Dict

import config
from job_queue import RedisQueue, Worker
from metrics import StatsTracker
from pipeline import AnalysisPipeline
from storage import create_store
from threat_store import ThreatStore

logger = logging.getLogger(__name__)

job_store = create_store(config.STORE_BACKEND, config.REDIS_URL)
threat_store = ThreatStore(config.THREAT_DB_DIR)
stats = StatsTracker(max_samples=30)
pipeline = AnalysisPipeline(
    jobs=job_store,
    threats=threat_store,
    stats=stats,
    timeout_seconds=config.ANALYSIS_TIMEOUT_SECONDS,
    scratch_root=Path(config.SCRATCH_DIR) if config.SCRATCH_DIR else None,
)


def _run_analysis(job_id: str, apk_path: str) -> Dict:
    apk_path = Path(apk_path)
    try:
        return pipeline.analyze(apk_path, job_id)
    finally:
        apk_path.unlink(missing_ok=True)


queue_worker = Worker(_run_analysis, RedisQueue(config.REDIS_URL, config.REDIS_QUEUE_NAME))


def start_worker() -> None:
    if config.STORE_BACKEND.lower() == "redis" and queue_worker.start():
        logger.info("analysis worker consuming %s", config.REDIS_QUEUE_NAME)


def enqueue_analysis(job_id: str, apk_path: Path) -> None:
    # Redis list when a consumer is running; else a local thread
    queue_worker.enqueue({"job_id": job_id, "apk_path": str(apk_path)})
