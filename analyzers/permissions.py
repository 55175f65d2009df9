from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

P = "android.permission."

SUSPICIOUS_PERMISSIONS = (
    P + "READ_SMS",
    P + "SEND_SMS",
    P + "RECEIVE_SMS",
    P + "BIND_ACCESSIBILITY_SERVICE",
    P + "REQUEST_INSTALL_PACKAGES",
    P + "SYSTEM_ALERT_WINDOW",
    P + "WRITE_SETTINGS",
    P + "PACKAGE_USAGE_STATS",
    P + "RECEIVE_BOOT_COMPLETED",
    P + "READ_CONTACTS",
    P + "WRITE_CONTACTS",
    P + "READ_CALL_LOG",
    P + "WRITE_CALL_LOG",
    P + "CAMERA",
    P + "RECORD_AUDIO",
    P + "ACCESS_FINE_LOCATION",
    P + "ACCESS_COARSE_LOCATION",
    P + "READ_PHONE_NUMBERS",
    P + "READ_PHONE_STATE",
)

# Sensitive but expected in any networked banking app
BANKING_PERMISSIONS = (
    P + "INTERNET",
    P + "ACCESS_NETWORK_STATE",
    P + "READ_EXTERNAL_STORAGE",
    P + "WRITE_EXTERNAL_STORAGE",
)

HIGH_RISK = frozenset(
    {
        P + "BIND_ACCESSIBILITY_SERVICE",
        P + "SYSTEM_ALERT_WINDOW",
        P + "TYPE_APPLICATION_OVERLAY",
        P + "REQUEST_INSTALL_PACKAGES",
    }
)
MEDIUM_RISK = frozenset(
    {
        P + "RECEIVE_SMS",
        P + "READ_SMS",
        P + "SEND_SMS",
        P + "READ_CONTACTS",
        P + "WRITE_CONTACTS",
        P + "READ_CALL_LOG",
        P + "WRITE_CALL_LOG",
    }
)
LOW_RISK = frozenset(
    {
        P + "CAMERA",
        P + "RECORD_AUDIO",
        P + "ACCESS_FINE_LOCATION",
        P + "ACCESS_COARSE_LOCATION",
        P + "READ_PHONE_STATE",
        P + "INTERNET",
        P + "ACCESS_NETWORK_STATE",
    }
)


@dataclass(frozen=True)
class PermissionWeights:
    base: int = 10  # prior for any sideloaded app
    high: int = 25
    medium: int = 15
    low: int = 8
    unknown: int = 10
    single_low_discount: int = 5
    breadth_threshold: int = 5
    breadth_boost: int = 15


DEFAULT_WEIGHTS = PermissionWeights()


@dataclass
class PermissionAssessment:
    total: int = 0
    suspicious: List[str] = field(default_factory=list)
    banking: List[str] = field(default_factory=list)
    risk_score: int = 0

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "suspicious": list(self.suspicious),
            "banking": list(self.banking),
            "riskScore": self.risk_score,
        }


def permission_tier(permission: str) -> Optional[str]:
    if permission in HIGH_RISK:
        return "high"
    if permission in MEDIUM_RISK:
        return "medium"
    if permission in LOW_RISK:
        return "low"
    return None


def count_tiers(permissions: Iterable[str]) -> Dict[str, int]:
    counts = {"high": 0, "medium": 0, "low": 0, "unknown": 0}
    for permission in permissions:
        counts[permission_tier(permission) or "unknown"] += 1
    return counts


def permission_risk_score(suspicious: List[str], weights: PermissionWeights = DEFAULT_WEIGHTS) -> int:
    increments = {
        "high": weights.high,
        "medium": weights.medium,
        "low": weights.low,
        None: weights.unknown,
    }
    score = weights.base
    for permission in suspicious:
        score += increments[permission_tier(permission)]

    if len(suspicious) == 1 and permission_tier(suspicious[0]) == "low":
        score = max(score - weights.single_low_discount, 0)
    if len(suspicious) >= weights.breadth_threshold:
        score += weights.breadth_boost

    return max(0, min(score, 100))


def assess_permissions(permissions: Iterable[str], weights: PermissionWeights = DEFAULT_WEIGHTS) -> PermissionAssessment:
    requested = list(dict.fromkeys(permissions))
    suspicious = [p for p in requested if p in SUSPICIOUS_PERMISSIONS]
    banking = [p for p in requested if p in BANKING_PERMISSIONS]
    return PermissionAssessment(
        total=len(requested),
        suspicious=suspicious,
        banking=banking,
        risk_score=permission_risk_score(suspicious, weights),
    )
