"""Substring scan of DEX and XML files for suspicious API signatures."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

HIGH_SIGNAL_PATTERNS: Tuple[str, ...] = (
    "TYPE_APPLICATION_OVERLAY",
    "SYSTEM_ALERT_WINDOW",
    "BIND_ACCESSIBILITY_SERVICE",
    "AccessibilityService",
    "REQUEST_INSTALL_PACKAGES",
    "PACKAGE_USAGE_STATS",
    "RECEIVE_BOOT_COMPLETED",
    "MediaProjection",
    "VirtualDisplay",
    "DeviceAdminReceiver",
    "DevicePolicyManager",
    "BIND_DEVICE_ADMIN",
    "SmsManager",
    "addJavascriptInterface",
)

# match-level confidence, keyed on the upper-cased pattern text
_CONFIDENCE_HIGH = ("SYSTEM_ALERT_WINDOW", "TYPE_APPLICATION_OVERLAY", "ACCESSIBILITYSERVICE", "SMS_INTERCEPT", "KEYLOGGER")
_CONFIDENCE_MEDIUM = ("RECORD_AUDIO", "READ_SMS", "RECEIVE_SMS", "SEND_SMS")

# scoring buckets
_RISK_HIGH = (
    "SYSTEM_ALERT_WINDOW",
    "TYPE_APPLICATION_OVERLAY",
    "ACCESSIBILITYSERVICE",
    "KEYLOGGER",
    "SCREEN_CAPTURE",
    "BANKING_TROJAN",
    "CREDENTIAL_STEALER",
)
_RISK_MEDIUM = (
    "SMS",
    "CONTACTS",
    "CALL_LOG",
    "RECORD_AUDIO",
    "CAMERA",
    "MEDIAPROJECTION",
    "VIRTUALDISPLAY",
    "DEVICEADMIN",
    "DEVICEPOLICY",
)

_DEX_NAME = re.compile(r"^classes\d*\.dex$", re.IGNORECASE)
MANIFEST_NAME = "AndroidManifest.xml"


@dataclass(frozen=True)
class CodeWeights:
    high_base: int = 25
    high_per_match: int = 8
    high_cap: int = 60
    medium_min_matches: int = 2
    medium_base: int = 20
    medium_per_match: int = 5
    medium_cap: int = 40
    low_min_matches: int = 3
    low_base: int = 15
    low_per_match: int = 3
    low_cap: int = 30
    single_low_discount: int = 5
    no_strong_discount: int = 10


DEFAULT_WEIGHTS = CodeWeights()


@dataclass(frozen=True)
class PatternMatch:
    pattern: str
    source_file: str
    confidence: str

    def to_dict(self) -> Dict:
        return {"pattern": self.pattern, "file": self.source_file, "confidence": self.confidence}


@dataclass
class CodeAssessment:
    dex_file_count: int = 0
    matched_patterns: List[PatternMatch] = field(default_factory=list)
    risk_score: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "dexFiles": self.dex_file_count,
            "suspiciousPatterns": [m.to_dict() for m in self.matched_patterns],
            "riskScore": self.risk_score,
        }
        if self.error:
            data["error"] = self.error
        return data


def build_pattern_registry(scan_patterns: Iterable = ()) -> Tuple[str, ...]:
    """Merge the fixed signatures with every pattern and example from the threat store.

    Duplicates are dropped case-insensitively; the first spelling wins.
    """
    seen = set()
    merged: List[str] = []

    def _add(value) -> None:
        text = str(value or "").strip()
        if text and text.lower() not in seen:
            seen.add(text.lower())
            merged.append(text)

    for pattern in HIGH_SIGNAL_PATTERNS:
        _add(pattern)
    for entry in scan_patterns:
        for example in getattr(entry, "examples", None) or []:
            _add(example)
        _add(getattr(entry, "pattern", None))
    return tuple(merged)


def pattern_confidence(pattern: str) -> str:
    upper = str(pattern).upper()
    if any(key in upper for key in _CONFIDENCE_HIGH):
        return "high"
    if any(key in upper for key in _CONFIDENCE_MEDIUM):
        return "medium"
    return "low"


def pattern_risk_class(pattern: str) -> str:
    upper = str(pattern).upper()
    if any(key in upper for key in _RISK_HIGH):
        return "high"
    if any(key in upper for key in _RISK_MEDIUM):
        return "medium"
    return "low"


def split_by_risk(matches: Sequence[PatternMatch]) -> Dict[str, List[PatternMatch]]:
    buckets: Dict[str, List[PatternMatch]] = {"high": [], "medium": [], "low": []}
    for match in matches:
        buckets[pattern_risk_class(match.pattern)].append(match)
    return buckets


def code_risk_score(matches: Sequence[PatternMatch], weights: CodeWeights = DEFAULT_WEIGHTS) -> int:
    buckets = split_by_risk(matches)
    high, medium, low = len(buckets["high"]), len(buckets["medium"]), len(buckets["low"])
    score = 0

    if high > 0:
        score += min(weights.high_base + high * weights.high_per_match, weights.high_cap)
    if medium >= weights.medium_min_matches:
        score += min(weights.medium_base + medium * weights.medium_per_match, weights.medium_cap)
    if low >= weights.low_min_matches:
        score += min(weights.low_base + low * weights.low_per_match, weights.low_cap)

    if len(matches) == 1 and low == 1:
        score = max(score - weights.single_low_discount, 0)
    if high == 0 and medium == 0:
        score = max(score - weights.no_strong_discount, 0)

    return max(0, min(score, 100))


def _is_target(path: Path, tree: Path) -> bool:
    name = path.name
    if _DEX_NAME.match(name) or name == MANIFEST_NAME:
        return True
    if name.lower().endswith(".xml"):
        parts = [p.lower() for p in path.relative_to(tree).parts[:-1]]
        return "res" in parts
    return False


def select_scan_targets(tree) -> List[Path]:
    tree = Path(tree)
    if not tree.is_dir():
        return []
    return sorted(p for p in tree.rglob("*") if p.is_file() and _is_target(p, tree))


def count_dex_files(tree) -> int:
    tree = Path(tree)
    if not tree.is_dir():
        return 0
    return sum(1 for p in tree.rglob("*.dex") if p.is_file())


def scan_file(path: Path, patterns: Sequence[str]) -> List[PatternMatch]:
    content = path.read_bytes().decode("utf-8", errors="ignore").lower()
    return [
        PatternMatch(pattern=pattern, source_file=path.name, confidence=pattern_confidence(pattern))
        for pattern in patterns
        if pattern.lower() in content
    ]


def scan_code(tree, patterns: Sequence[str], weights: CodeWeights = DEFAULT_WEIGHTS) -> CodeAssessment:
    matches: List[PatternMatch] = []
    for path in select_scan_targets(tree):
        try:
            matches.extend(scan_file(path, patterns))
        except OSError as exc:
            logger.warning("could not read %s: %s", path, exc)

    return CodeAssessment(
        dex_file_count=count_dex_files(tree),
        matched_patterns=matches,
        risk_score=code_risk_score(matches, weights),
    )
