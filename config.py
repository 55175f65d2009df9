from pathlib import Path
import os

# Base directory for app resources
BASE_DIR = Path(__file__).resolve().parent
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))

# Hard limit for uploaded APK size (200 MB by default)
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_MB", "200")) * 1024 * 1024

# Scratch space for extracted APK trees; defaults to the upload's own directory
SCRATCH_DIR = os.getenv("SCRATCH_DIR")

# Known-threat records and scan patterns (threats.json / patterns.json)
THREAT_DB_DIR = Path(os.getenv("THREAT_DB_DIR", str(BASE_DIR / "data")))

# Wall-clock limit for a single analysis job
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "300"))

# Storage backend selection: "memory" (default) or "redis"
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
# Redis connection and queue
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_QUEUE_NAME = os.getenv("REDIS_QUEUE_NAME", "apk_analysis_jobs")

# Threat database writes require this key when set
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "true").lower() == "true"
