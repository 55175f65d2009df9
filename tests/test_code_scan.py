"""tests/test_code_scan.py - pattern registry, file selection and code scoring"""
from analyzers.code_scan import (
    HIGH_SIGNAL_PATTERNS,
    PatternMatch,
    build_pattern_registry,
    code_risk_score,
    pattern_confidence,
    pattern_risk_class,
    scan_code,
    select_scan_targets,
)
from threat_store import ScanPattern


def _match(pattern):
    return PatternMatch(pattern=pattern, source_file="classes.dex", confidence=pattern_confidence(pattern))


def test_registry_merges_store_patterns():
    patterns = [
        ScanPattern(id="p1", pattern="keylogger", examples=["onKeyDown", "smsmanager"]),
        ScanPattern(id="p2", pattern="KEYLOGGER"),
    ]
    registry = build_pattern_registry(patterns)

    assert registry[: len(HIGH_SIGNAL_PATTERNS)] == HIGH_SIGNAL_PATTERNS
    assert "onKeyDown" in registry
    assert "keylogger" in registry
    assert "KEYLOGGER" not in registry
    assert "smsmanager" not in registry  # already present as SmsManager


def test_confidence_and_risk_class():
    assert pattern_confidence("TYPE_APPLICATION_OVERLAY") == "high"
    assert pattern_confidence("android.permission.READ_SMS") == "medium"
    assert pattern_confidence("VirtualDisplay") == "low"
    # keys match regardless of the pattern's case
    assert pattern_confidence("AccessibilityService") == "high"
    assert pattern_confidence("sms_intercept") == "high"
    assert pattern_confidence("keylogger") == "high"

    assert pattern_risk_class("AccessibilityService") == "high"
    assert pattern_risk_class("android.telephony.SmsManager") == "medium"
    assert pattern_risk_class("addJavascriptInterface") == "low"


def test_code_score_high_pattern():
    assert code_risk_score([_match("SYSTEM_ALERT_WINDOW")]) == 33  # 25 + 8


def test_code_score_low_patterns_only():
    matches = [_match("onKeyDown"), _match("ImageReader"), _match("addJavascriptInterface")]
    assert code_risk_score(matches) == 14  # 15 + 3*3 - 10


def test_code_score_nothing():
    assert code_risk_score([]) == 0
    assert code_risk_score([_match("ImageReader")]) == 0


def test_scan_targets_and_matches(tmp_path):
    (tmp_path / "classes.dex").write_bytes(b"\x00Landroid/accessibilityservice/AccessibilityService;\x00")
    (tmp_path / "classes2.dex").write_bytes(b"\x00nothing here\x00")
    (tmp_path / "res" / "layout").mkdir(parents=True)
    (tmp_path / "res" / "layout" / "main.xml").write_text("<overlay type='SYSTEM_ALERT_WINDOW'/>")
    (tmp_path / "assets").mkdir()
    (tmp_path / "assets" / "config.xml").write_text("SmsManager")
    (tmp_path / "lib.so").write_bytes(b"SmsManager")

    targets = [p.name for p in select_scan_targets(tmp_path)]
    assert sorted(targets) == ["classes.dex", "classes2.dex", "main.xml"]

    result = scan_code(tmp_path, HIGH_SIGNAL_PATTERNS)
    found = {(m.pattern, m.source_file) for m in result.matched_patterns}
    assert found == {("AccessibilityService", "classes.dex"), ("SYSTEM_ALERT_WINDOW", "main.xml")}
    assert result.dex_file_count == 2
    assert result.risk_score == 41  # two high: 25 + 2*8


def test_scan_missing_tree(tmp_path):
    result = scan_code(tmp_path / "nope", HIGH_SIGNAL_PATTERNS)
    assert result.dex_file_count == 0
    assert result.matched_patterns == []
    assert result.to_dict() == {"dexFiles": 0, "suspiciousPatterns": [], "riskScore": 0}
