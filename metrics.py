from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Optional


class StatsTracker:
    """Lightweight in-memory tracker for verdicts and durations."""

    def __init__(self, max_samples: int = 30) -> None:
        self.max_samples = max_samples
        self._lock = threading.Lock()
        self._total_scans = 0
        self._failed_scans = 0
        self._by_level: Dict[str, int] = {}
        self._last_scan: Optional[str] = None
        self._durations: Deque[float] = deque(maxlen=max_samples)

    def record(self, risk_level: Optional[str], duration_seconds: Optional[float] = None) -> None:
        """Count one finished job; ``risk_level`` is None for failed jobs."""
        with self._lock:
            self._total_scans += 1
            self._last_scan = datetime.now(timezone.utc).isoformat()
            if risk_level is None:
                self._failed_scans += 1
            else:
                self._by_level[risk_level] = self._by_level.get(risk_level, 0) + 1
            if duration_seconds is not None:
                self._durations.append(duration_seconds)

    def snapshot(self) -> Dict:
        with self._lock:
            avg = sum(self._durations) / len(self._durations) if self._durations else None
            return {
                "totalScans": self._total_scans,
                "safeApps": self._by_level.get("safe", 0),
                "suspiciousApps": self._by_level.get("suspicious", 0),
                "maliciousApps": self._by_level.get("malicious", 0),
                "failedScans": self._failed_scans,
                "byRiskLevel": dict(self._by_level),
                "lastScan": self._last_scan,
                "avgDurationSecondsLast30": avg,
                "sampleSize": len(self._durations),
                "currentTime": datetime.now(timezone.utc).isoformat(),
            }
