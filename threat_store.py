from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

SEVERITIES = ("low", "medium", "high", "critical")
RECENT_WINDOW_DAYS = 30
RECENT_LIMIT = 10


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@dataclass
class ThreatRecord:
    id: str = ""
    hash: Optional[str] = None
    package_name: Optional[str] = None
    type: str = "unknown"
    family: Optional[str] = None
    confidence: int = 0
    description: str = ""
    severity: str = "medium"
    tags: List[str] = field(default_factory=list)
    indicators: List[str] = field(default_factory=list)
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "hash": self.hash,
            "packageName": self.package_name,
            "type": self.type,
            "family": self.family,
            "confidence": self.confidence,
            "description": self.description,
            "severity": self.severity,
            "tags": list(self.tags),
            "indicators": list(self.indicators),
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
        }

    @staticmethod
    def from_dict(data: Dict) -> "ThreatRecord":
        return ThreatRecord(
            id=str(data.get("id") or ""),
            hash=data.get("hash") or None,
            package_name=data.get("packageName") or data.get("package_name") or None,
            type=data.get("type") or "unknown",
            family=data.get("family"),
            confidence=int(data.get("confidence") or 0),
            description=data.get("description") or "",
            severity=data.get("severity") or "medium",
            tags=list(data.get("tags") or []),
            indicators=list(data.get("indicators") or []),
            first_seen=data.get("firstSeen") or data.get("first_seen"),
            last_seen=data.get("lastSeen") or data.get("last_seen"),
        )


@dataclass
class ScanPattern:
    id: str = ""
    name: str = ""
    pattern: str = ""
    description: str = ""
    risk_level: str = "medium"
    tags: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "pattern": self.pattern,
            "description": self.description,
            "riskLevel": self.risk_level,
            "tags": list(self.tags),
            "examples": list(self.examples),
        }

    @staticmethod
    def from_dict(data: Dict) -> "ScanPattern":
        return ScanPattern(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            pattern=data.get("pattern") or "",
            description=data.get("description") or "",
            risk_level=data.get("riskLevel") or data.get("risk_level") or "medium",
            tags=list(data.get("tags") or []),
            examples=[str(e) for e in data.get("examples") or []],
        )


def _seed_threats() -> List[ThreatRecord]:
    today = _today()
    return [
        ThreatRecord(
            id="threat_001",
            hash="e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
            package_name="com.fakebanking.app",
            type="banking_trojan",
            family="Anubis",
            confidence=95,
            description="Fake banking application designed to steal credentials",
            severity="high",
            tags=["banking", "trojan", "overlay", "sms_intercept"],
            indicators=[
                "Requests excessive permissions",
                "Creates overlay screens",
                "Intercepts SMS messages",
                "Communicates with C&C servers",
            ],
            first_seen="2024-01-01",
            last_seen=today,
        ),
        ThreatRecord(
            id="threat_002",
            hash="a94a8fe5ccb19ba61c4c0873d391e987982fbbd3",
            package_name="com.security.scanner.fake",
            type="fake_security_app",
            family="FakeScanner",
            confidence=90,
            description="Fake security scanner that installs additional malware",
            severity="high",
            tags=["fake_security", "admin_privileges", "payload_download"],
            indicators=[
                "Claims to be security software",
                "Requests admin privileges",
                "Downloads additional payloads",
                "Disables security features",
            ],
            first_seen="2024-01-15",
            last_seen=today,
        ),
        ThreatRecord(
            id="threat_003",
            hash="da39a3ee5e6b4b0d3255bfef95601890afd80709",
            package_name="com.system.optimizer.fake",
            type="system_optimizer",
            family="FakeOptimizer",
            confidence=85,
            description="Fake system optimizer that collects user data",
            severity="medium",
            tags=["fake_optimizer", "accessibility", "data_collection"],
            indicators=[
                "Claims to optimize system performance",
                "Requests accessibility services",
                "Collects device information",
                "Sends data to unknown servers",
            ],
            first_seen="2024-02-01",
            last_seen=today,
        ),
    ]


def _seed_patterns() -> List[ScanPattern]:
    return [
        ScanPattern(
            id="pattern_001",
            name="SMS Interception",
            pattern="sms_intercept",
            description="Code patterns that intercept SMS messages",
            risk_level="high",
            tags=["sms", "interception", "otp_theft"],
            examples=[
                "android.provider.Telephony.Sms.Intents.SMS_RECEIVED_ACTION",
                "android.telephony.SmsManager",
                "android.provider.Telephony.Sms",
            ],
        ),
        ScanPattern(
            id="pattern_002",
            name="Overlay Attack",
            pattern="overlay",
            description="Code that creates screen overlays to steal credentials",
            risk_level="high",
            tags=["overlay", "credential_theft", "phishing"],
            examples=[
                "android.view.WindowManager.LayoutParams.TYPE_SYSTEM_ALERT",
                "android.view.WindowManager.LayoutParams.TYPE_APPLICATION_OVERLAY",
                "android.service.voice.VoiceInteractionService",
            ],
        ),
        ScanPattern(
            id="pattern_003",
            name="Accessibility Abuse",
            pattern="accessibility",
            description="Misuse of accessibility services for malicious purposes",
            risk_level="high",
            tags=["accessibility", "keylogging", "screen_reading"],
            examples=[
                "android.accessibilityservice.AccessibilityService",
                "android.accessibilityservice.AccessibilityServiceInfo",
                "onAccessibilityEvent",
            ],
        ),
        ScanPattern(
            id="pattern_004",
            name="Keylogger",
            pattern="keylogger",
            description="Code that records keystrokes",
            risk_level="high",
            tags=["keylogging", "credential_theft", "privacy_violation"],
            examples=["onKeyDown", "onKeyUp", "onTextChanged", "InputMethodManager"],
        ),
        ScanPattern(
            id="pattern_005",
            name="Screen Capture",
            pattern="screen_capture",
            description="Code that captures screen content",
            risk_level="medium",
            tags=["screen_capture", "privacy_violation", "surveillance"],
            examples=["MediaProjection", "VirtualDisplay", "ImageReader", "screenshot"],
        ),
    ]


def _copy(record: ThreatRecord) -> ThreatRecord:
    return replace(record, tags=list(record.tags), indicators=list(record.indicators))


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class ThreatStore:
    """Known-threat records and scan patterns persisted as two JSON arrays.

    Records are indexed twice, by hash and by package name, and both keys
    point at the same record. Every write rewrites the files wholesale.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.threats_path = self.data_dir / "threats.json"
        self.patterns_path = self.data_dir / "patterns.json"
        self._lock = threading.Lock()
        self._records: Dict[str, ThreatRecord] = {}  # id -> record
        self._index: Dict[str, ThreatRecord] = {}  # hash / package name -> record
        self._patterns: Dict[str, ScanPattern] = {}
        self._load()

    # -- persistence -------------------------------------------------------

    def _read_array(self, path: Path) -> Optional[List[Dict]]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("could not load %s, reseeding: %s", path, exc)
            return None
        if not isinstance(data, list):
            logger.error("%s is not a JSON array, reseeding", path)
            return None
        return [item for item in data if isinstance(item, dict)]

    def _load(self) -> None:
        with self._lock:
            self._records.clear()
            self._index.clear()
            self._patterns.clear()

            threats = self._read_array(self.threats_path)
            if threats is None:
                for record in _seed_threats():
                    self._put(record)
                self._save_threats()
                logger.info("seeded threat database at %s", self.threats_path)
            else:
                for item in threats:
                    record = ThreatRecord.from_dict(item)
                    if record.id and (record.hash or record.package_name):
                        self._put(record)

            patterns = self._read_array(self.patterns_path)
            if patterns is None:
                for pattern in _seed_patterns():
                    self._patterns[pattern.id] = pattern
                self._save_patterns()
            else:
                for item in patterns:
                    pattern = ScanPattern.from_dict(item)
                    if pattern.id:
                        self._patterns[pattern.id] = pattern

        logger.info("threat database ready: %d threats, %d patterns", len(self._records), len(self._patterns))

    def _save_threats(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        payload = [record.to_dict() for record in self._records.values()]
        self.threats_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def _save_patterns(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        payload = [pattern.to_dict() for pattern in self._patterns.values()]
        self.patterns_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def reload(self) -> None:
        self._load()

    # -- index -------------------------------------------------------------

    def _put(self, record: ThreatRecord) -> None:
        self._drop(record.id)
        self._records[record.id] = record
        if record.hash:
            self._index[record.hash] = record
        if record.package_name:
            self._index[record.package_name] = record

    def _drop(self, threat_id: str) -> bool:
        record = self._records.pop(threat_id, None)
        if record is None:
            return False
        for key in (record.hash, record.package_name):
            if key and self._index.get(key) is record:
                del self._index[key]
                # hand the key back to the newest remaining record that carries it
                for other in reversed(list(self._records.values())):
                    if key in (other.hash, other.package_name):
                        self._index[key] = other
                        break
        return True

    def _new_id(self) -> str:
        stamp = int(time.time() * 1000)
        while f"threat_{stamp}" in self._records:
            stamp += 1
        return f"threat_{stamp}"

    # -- operations --------------------------------------------------------

    def lookup(self, hash: Optional[str] = None, package_name: Optional[str] = None) -> Optional[ThreatRecord]:
        with self._lock:
            record = self._index.get(hash) if hash else None
            if record is None and package_name:
                record = self._index.get(package_name)
            return _copy(record) if record else None

    def add(self, record: Union[ThreatRecord, Dict]) -> ThreatRecord:
        if isinstance(record, dict):
            record = ThreatRecord.from_dict(record)
        if not record.hash and not record.package_name:
            raise ValueError("threat must have either hash or package name")

        with self._lock:
            stored = replace(
                record,
                id=record.id or self._new_id(),
                first_seen=record.first_seen or _today(),
                last_seen=_today(),
                tags=list(record.tags),
                indicators=list(record.indicators),
            )
            self._put(stored)
            self._save_threats()
        logger.info("added threat %s", stored.id)
        return _copy(stored)

    def remove(self, threat_id: str) -> bool:
        with self._lock:
            removed = self._drop(threat_id)
            if removed:
                self._save_threats()
        if removed:
            logger.info("removed threat %s", threat_id)
        return removed

    def search(self, query: str) -> List[ThreatRecord]:
        needle = (query or "").lower()
        with self._lock:
            return [
                _copy(record)
                for record in self._records.values()
                if any(
                    needle in (value or "").lower()
                    for value in (record.id, record.package_name, record.description, record.family)
                )
            ]

    def summary(self) -> Dict:
        with self._lock:
            records = list(self._records.values())

        types: Dict[str, int] = {}
        families: Dict[str, int] = {}
        severity = {level: 0 for level in SEVERITIES}
        for record in records:
            types[record.type] = types.get(record.type, 0) + 1
            if record.family:
                families[record.family] = families.get(record.family, 0) + 1
            level = record.severity or "medium"
            severity[level] = severity.get(level, 0) + 1

        cutoff = datetime.now(timezone.utc).date() - timedelta(days=RECENT_WINDOW_DAYS)
        recent = [(r, _parse_day(r.last_seen)) for r in records]
        recent = sorted(
            ((r, day) for r, day in recent if day and day > cutoff),
            key=lambda pair: pair[1],
            reverse=True,
        )[:RECENT_LIMIT]

        return {
            "totalThreats": len(records),
            "threatTypes": types,
            "families": families,
            "severity": severity,
            "recentThreats": [
                {
                    "id": r.id,
                    "type": r.type,
                    "family": r.family,
                    "severity": r.severity,
                    "lastSeen": r.last_seen,
                }
                for r, _ in recent
            ],
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }

    def patterns(self) -> List[ScanPattern]:
        with self._lock:
            return [replace(p, tags=list(p.tags), examples=list(p.examples)) for p in self._patterns.values()]

    def add_pattern(self, pattern: Union[ScanPattern, Dict]) -> ScanPattern:
        if isinstance(pattern, dict):
            pattern = ScanPattern.from_dict(pattern)
        if not pattern.pattern and not pattern.examples:
            raise ValueError("pattern needs a pattern string or examples")
        with self._lock:
            stored = replace(pattern, id=pattern.id or f"pattern_{int(time.time() * 1000)}")
            self._patterns[stored.id] = stored
            self._save_patterns()
        logger.info("added scan pattern %s", stored.id)
        return stored

    def info(self) -> Dict:
        with self._lock:
            return {
                "threatsCount": len(self._records),
                "patternsCount": len(self._patterns),
                "isReady": True,
                "lastUpdated": datetime.now(timezone.utc).isoformat(),
            }
