"""Combine permission, code and threat signals into a final verdict.

The weighted base score is pushed around by an ordered list of named rules.
Each rule sees the running score and returns the new score plus an
``Adjustment`` describing what it did (or None when it did not fire), so the
breakdown in the verdict replays exactly how the number was reached.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from .code_scan import CodeAssessment, split_by_risk
from .file_info import FileMetadata
from .manifest import ManifestInfo
from .permissions import PermissionAssessment, count_tiers

logger = logging.getLogger(__name__)

RISK_LEVELS = ("safe", "low_risk", "suspicious", "high_risk", "malicious")

MALWARE_NAMES = re.compile(r"hack|trojan|malware|virus|spyware", re.IGNORECASE)
MODDED_NAMES = re.compile(r"mod|vanced|microg|happymod|gamedva", re.IGNORECASE)
BANKING_NAMES = re.compile(r"bank|finance|payment|wallet|credit", re.IGNORECASE)
# signer subject DNs as produced by analyzers.signing.format_name
PLATFORM_SIGNERS = re.compile(r"(?:^|, )(?:O=Google\b|CN=Android(?:,|$))", re.IGNORECASE)
DEBUG_SIGNERS = re.compile(r"(?:^|, )CN=Android Debug(?:,|$)", re.IGNORECASE)


@dataclass(frozen=True)
class TierFloor:
    """Floor of ``min(base + per_match * n, cap)`` once ``n >= min_count``."""

    min_count: int
    base: int
    per_match: int
    cap: int

    def value(self, count: int) -> Optional[int]:
        if count < self.min_count:
            return None
        return min(self.base + self.per_match * count, self.cap)


@dataclass(frozen=True)
class RiskWeights:
    permission_weight: float = 0.55
    code_weight: float = 0.45
    strong_signal_threshold: int = 60
    strong_signal_floor: int = 70
    known_threat_floor: int = 90
    low_signal_threshold: int = 15
    low_signal_cap: int = 20
    malware_name_floor: int = 80
    modded_name_floor: int = 55
    banking_reduction: int = 15
    banking_max_score: int = 80
    platform_reduction: int = 10
    platform_max_score: int = 50
    no_signal_cap: int = 20
    high_permission_floor: TierFloor = TierFloor(1, 30, 10, 60)
    medium_permission_floor: TierFloor = TierFloor(2, 25, 5, 45)
    low_permission_floor: TierFloor = TierFloor(3, 20, 3, 35)
    high_pattern_floor: TierFloor = TierFloor(1, 35, 8, 60)
    medium_pattern_floor: TierFloor = TierFloor(2, 25, 5, 45)
    # exclusive upper bounds of safe, low_risk, suspicious and high_risk
    level_thresholds: Tuple[int, int, int, int] = (30, 50, 70, 85)


DEFAULT_WEIGHTS = RiskWeights()


@dataclass(frozen=True)
class ThreatMatch:
    is_known_threat: bool = False
    threat_type: Optional[str] = None
    confidence: int = 0
    description: Optional[str] = None
    threat_id: Optional[str] = None
    matched_on: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "isKnownThreat": self.is_known_threat,
            "threatType": self.threat_type,
            "confidence": self.confidence,
            "description": self.description,
            "threatId": self.threat_id,
            "matchedOn": self.matched_on,
        }


NO_MATCH = ThreatMatch()


@dataclass(frozen=True)
class Adjustment:
    factor: str
    kind: str  # floor | cap | reduction
    value: int
    delta: int

    def to_dict(self) -> Dict:
        return {"factor": self.factor, "kind": self.kind, "value": self.value, "delta": self.delta}


@dataclass
class RiskContext:
    file: FileMetadata
    manifest: ManifestInfo
    permissions: PermissionAssessment
    code: CodeAssessment
    threat: ThreatMatch = NO_MATCH

    @property
    def names(self) -> Tuple[str, str]:
        return (self.file.filename or "").lower(), (self.manifest.package_name or "").lower()

    def name_matches(self, pattern) -> bool:
        return any(pattern.search(name) for name in self.names if name)


@dataclass
class Verdict:
    risk_level: str
    risk_score: int
    is_safe: bool
    confidence: int
    breakdown: Dict = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)

    def summary(self) -> Dict:
        return {
            "riskLevel": self.risk_level,
            "riskScore": self.risk_score,
            "isSafe": self.is_safe,
            "confidence": self.confidence,
            "riskBreakdown": self.breakdown,
        }


RuleResult = Tuple[int, Union[Adjustment, List[Adjustment], None]]
Rule = Callable[[int, RiskContext, RiskWeights], RuleResult]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(score: float) -> int:
    return max(0, min(int(score), 100))


def _floor(score: int, value: int, factor: str) -> RuleResult:
    new = max(score, value)
    return new, Adjustment(factor, "floor", value, new - score)


def _cap(score: int, value: int, factor: str) -> RuleResult:
    new = min(score, value)
    return new, Adjustment(factor, "cap", value, new - score)


def _reduce(score: int, amount: int, factor: str) -> RuleResult:
    new = max(score - amount, 0)
    return new, Adjustment(factor, "reduction", amount, new - score)


# -- rules, applied in the order of RULES ----------------------------------


def strong_signal_floor(score, ctx, w):
    p, c = ctx.permissions.risk_score, ctx.code.risk_score
    if p >= w.strong_signal_threshold or c >= w.strong_signal_threshold:
        return _floor(score, w.strong_signal_floor, "Strong permission or code signal")
    return score, None


def known_threat_floor(score, ctx, w):
    if ctx.threat.is_known_threat:
        return _floor(score, w.known_threat_floor, "Known threat match")
    return score, None


def low_signal_cap(score, ctx, w):
    p, c = ctx.permissions.risk_score, ctx.code.risk_score
    if p < w.low_signal_threshold and c < w.low_signal_threshold and not ctx.threat.is_known_threat:
        return _cap(score, w.low_signal_cap, "Low permission and code signals")
    return score, None


def malware_name_floor(score, ctx, w):
    if ctx.name_matches(MALWARE_NAMES):
        return _floor(score, w.malware_name_floor, "Malicious filename/package")
    return score, None


def modded_name_floor(score, ctx, w):
    if ctx.name_matches(MODDED_NAMES):
        return _floor(score, w.modded_name_floor, "Modded app indicators")
    return score, None


def _tier_floors(score: int, steps) -> Tuple[int, List[Adjustment]]:
    adjustments = []
    for tier_floor, count, factor in steps:
        value = tier_floor.value(count)
        if value is not None:
            score, adj = _floor(score, value, f"{factor} ({count})")
            adjustments.append(adj)
    return score, adjustments


def permission_tier_floors(score, ctx, w):
    counts = count_tiers(ctx.permissions.suspicious)
    return _tier_floors(
        score,
        (
            (w.high_permission_floor, counts["high"], "High-risk permissions"),
            (w.medium_permission_floor, counts["medium"], "Multiple medium-risk permissions"),
            (w.low_permission_floor, counts["low"], "Multiple low-risk permissions"),
        ),
    )


def code_pattern_floors(score, ctx, w):
    buckets = split_by_risk(ctx.code.matched_patterns)
    return _tier_floors(
        score,
        (
            (w.high_pattern_floor, len(buckets["high"]), "High-risk code patterns"),
            (w.medium_pattern_floor, len(buckets["medium"]), "Multiple medium-risk patterns"),
        ),
    )


def banking_name_reduction(score, ctx, w):
    if ctx.name_matches(BANKING_NAMES) and score < w.banking_max_score:
        return _reduce(score, w.banking_reduction, "Legitimate banking app indicators")
    return score, None


def is_platform_signed(signatures) -> bool:
    """Google or AOSP platform key, and no debug key anywhere in the chain."""
    if any(DEBUG_SIGNERS.search(s) for s in signatures):
        return False
    return any(PLATFORM_SIGNERS.search(s) for s in signatures)


def platform_signature_reduction(score, ctx, w):
    if is_platform_signed(ctx.manifest.signatures) and score < w.platform_max_score:
        return _reduce(score, w.platform_reduction, "Google/Android signature detected")
    return score, None


def no_signal_cap(score, ctx, w):
    if not ctx.permissions.suspicious and not ctx.code.matched_patterns and not ctx.threat.is_known_threat:
        return _cap(score, w.no_signal_cap, "No suspicious signals detected")
    return score, None


RULES: Tuple[Tuple[str, Rule], ...] = (
    ("strong_signal_floor", strong_signal_floor),
    ("known_threat_floor", known_threat_floor),
    ("low_signal_cap", low_signal_cap),
    ("malware_name_floor", malware_name_floor),
    ("modded_name_floor", modded_name_floor),
    ("permission_tier_floors", permission_tier_floors),
    ("code_pattern_floors", code_pattern_floors),
    ("banking_name_reduction", banking_name_reduction),
    ("platform_signature_reduction", platform_signature_reduction),
    ("no_signal_cap", no_signal_cap),
)


def weighted_score(permission_score: int, code_score: int, weights: RiskWeights = DEFAULT_WEIGHTS) -> int:
    return round_half_up(weights.permission_weight * permission_score + weights.code_weight * code_score)


def risk_level_for(score: int, weights: RiskWeights = DEFAULT_WEIGHTS) -> str:
    for level, upper in zip(RISK_LEVELS, weights.level_thresholds):
        if score < upper:
            return level
    return RISK_LEVELS[-1]


def confidence_for(ctx: RiskContext) -> int:
    if ctx.threat.is_known_threat:
        return 95
    if ctx.permissions.risk_score > 50 or ctx.code.risk_score > 50:
        return 85
    return 70


def recommendations_for(risk_level: str, suspicious_permissions: List[str]) -> List[str]:
    if risk_level == "safe":
        recs = [
            "This APK appears to be safe for installation",
            "Always download from official sources when possible",
        ]
    elif risk_level == "low_risk":
        recs = [
            "This APK shows minor risk indicators",
            "Verify the publisher before installing",
            "Always download from official sources when possible",
        ]
    elif risk_level == "suspicious":
        recs = [
            "Exercise caution - this APK has some suspicious characteristics",
            "Review the detailed analysis before making a decision",
            "Consider downloading from official sources instead",
        ]
    else:
        recs = [
            "DO NOT INSTALL this APK - high risk of malware",
            "Delete the file immediately",
            "Report to your bank if this claims to be a banking app",
        ]
    if suspicious_permissions:
        recs.append(f"Review suspicious permissions: {', '.join(suspicious_permissions)}")
    return recs


def apply_rules(score: int, ctx: RiskContext, weights: RiskWeights = DEFAULT_WEIGHTS, rules=RULES):
    applied: List[Adjustment] = []
    for name, rule in rules:
        score, adjustment = rule(score, ctx, weights)
        if not adjustment:
            continue
        for adj in adjustment if isinstance(adjustment, list) else [adjustment]:
            logger.debug("rule %s: %s (%+d)", name, adj.factor, adj.delta)
            applied.append(adj)
    return score, applied


def aggregate(ctx: RiskContext, weights: RiskWeights = DEFAULT_WEIGHTS) -> Verdict:
    base = weighted_score(ctx.permissions.risk_score, ctx.code.risk_score, weights)
    score, adjustments = apply_rules(base, ctx, weights)
    score = clamp(score)
    level = risk_level_for(score, weights)

    return Verdict(
        risk_level=level,
        risk_score=score,
        is_safe=level == "safe",
        confidence=confidence_for(ctx),
        breakdown={
            "baseScore": base,
            "permissionScore": ctx.permissions.risk_score,
            "codeScore": ctx.code.risk_score,
            "adjustments": [a.to_dict() for a in adjustments],
            "finalScore": score,
        },
        recommendations=recommendations_for(level, ctx.permissions.suspicious),
    )
