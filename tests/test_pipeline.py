"""tests/test_pipeline.py - end-to-end job orchestration"""
import hashlib
import time

import pipeline as pipeline_module
from pipeline import TIMEOUT_MESSAGE, AnalysisPipeline
from storage import JobStatus
from tests.conftest import manifest_xml

P = "android.permission."


def _run(analysis_pipeline, apk, filename):
    job = analysis_pipeline.submit(apk, filename=filename)
    return job.id, analysis_pipeline.analyze(apk, job.id)


def test_completes_with_full_report(analysis_pipeline, make_apk, scratch):
    apk = make_apk(manifest=manifest_xml(package="com.example.bank", permissions=[P + "INTERNET", P + "READ_SMS"]))
    job_id, result = _run(analysis_pipeline, apk, "bank.apk")

    assert result["id"] == job_id
    assert result["status"] == "completed"
    details = result["details"]
    assert details["fileAnalysis"]["isValidAPK"] is True
    assert details["manifestAnalysis"]["packageName"] == "com.example.bank"
    assert details["permissionAnalysis"]["total"] == 2
    assert details["permissionAnalysis"]["suspicious"] == [P + "READ_SMS"]
    assert details["threatAnalysis"]["isKnownThreat"] is False
    assert result["summary"]["riskLevel"] == "safe"
    assert result["recommendations"]

    job = analysis_pipeline.get_job(job_id)
    assert job.status == JobStatus.completed
    assert job.progress == 100
    assert [s.progress for s in job.steps] == [5, 20, 40, 60, 80, 90, 95, 100]
    # scratch tree removed once the verdict is in
    assert list(scratch.iterdir()) == []


def test_missing_manifest_still_completes(analysis_pipeline, make_apk):
    _, result = _run(analysis_pipeline, make_apk(), "plain.apk")
    assert result["status"] == "completed"
    assert result["details"]["manifestAnalysis"]["source"] == "missing"
    assert result["summary"]["riskScore"] <= 20


def test_garbage_upload_still_completes(analysis_pipeline, tmp_path):
    junk = tmp_path / "junk.apk"
    junk.write_bytes(b"definitely not a zip")
    _, result = _run(analysis_pipeline, junk, "junk.apk")

    assert result["status"] == "completed"
    assert result["details"]["fileAnalysis"]["isValidAPK"] is False
    assert result["summary"]["riskLevel"] == "safe"


def test_known_package_is_flagged(analysis_pipeline, make_apk):
    apk = make_apk(manifest=manifest_xml(package="com.fakebanking.app"))
    _, result = _run(analysis_pipeline, apk, "banking.apk")

    threat = result["details"]["threatAnalysis"]
    assert threat["isKnownThreat"] is True
    assert threat["threatId"] == "threat_001"
    assert threat["matchedOn"] == "packageName"
    assert result["summary"]["riskScore"] >= 90
    assert result["summary"]["riskLevel"] == "malicious"


def test_known_hash_is_flagged(analysis_pipeline, threat_store, make_apk):
    apk = make_apk(manifest=manifest_xml(package="com.innocent.app"))
    digest = hashlib.sha256(apk.read_bytes()).hexdigest()
    threat_store.add({"hash": digest, "type": "dropper", "confidence": 88})

    _, result = _run(analysis_pipeline, apk, "innocent.apk")
    assert result["details"]["threatAnalysis"]["matchedOn"] == "hash"
    assert result["summary"]["riskScore"] >= 90


def test_unknown_package_name_is_not_looked_up(threat_store, analysis_pipeline, make_apk):
    threat_store.add({"packageName": "Unknown", "type": "placeholder"})
    _, result = _run(analysis_pipeline, make_apk(), "x.apk")
    assert result["details"]["threatAnalysis"]["isKnownThreat"] is False


def test_code_patterns_from_store_are_used(analysis_pipeline, threat_store, make_apk):
    threat_store.add_pattern({"name": "Dropper", "pattern": "DexClassLoader", "riskLevel": "high"})
    apk = make_apk(manifest=manifest_xml(), dex=b"Ldalvik/system/DexClassLoader;")
    _, result = _run(analysis_pipeline, apk, "app.apk")

    patterns = [m["pattern"] for m in result["details"]["codeAnalysis"]["suspiciousPatterns"]]
    assert "DexClassLoader" in patterns


def test_timeout_fails_job(job_store, threat_store, scratch, make_apk, monkeypatch):
    original = pipeline_module.scan_code

    def slow_scan(tree, patterns, *args, **kwargs):
        time.sleep(0.6)
        return original(tree, patterns, *args, **kwargs)

    monkeypatch.setattr(pipeline_module, "scan_code", slow_scan)
    slow = AnalysisPipeline(job_store, threat_store, timeout_seconds=0.1, scratch_root=scratch)

    apk = make_apk(manifest=manifest_xml(permissions=[P + "CAMERA"]))
    job = slow.submit(apk, filename="slow.apk")
    result = slow.analyze(apk, job.id)

    assert result["status"] == "failed"
    assert result["error"] == TIMEOUT_MESSAGE
    assert result["result"] is None
    stored = slow.get_job(job.id)
    assert stored.status == JobStatus.failed
    assert stored.steps[-1].name == "Timeout"
    # the late verdict never lands
    assert "Finalizing" not in [s.name for s in stored.steps]
    assert list(scratch.iterdir()) == []


def test_stage_crash_degrades(analysis_pipeline, make_apk, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(pipeline_module, "analyze_manifest", broken)
    _, result = _run(analysis_pipeline, make_apk(manifest=manifest_xml()), "app.apk")

    assert result["status"] == "completed"
    assert result["details"]["codeAnalysis"]["error"] == "parser exploded"
    assert any("parser exploded" in w for w in result["warnings"])


def test_aggregation_crash_fails_job(analysis_pipeline, make_apk, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("weights missing")

    monkeypatch.setattr(pipeline_module, "aggregate", broken)
    apk = make_apk(manifest=manifest_xml())
    job = analysis_pipeline.submit(apk, filename="app.apk")
    result = analysis_pipeline.analyze(apk, job.id)

    assert result["status"] == "failed"
    assert result["error"] == "weights missing"
    assert analysis_pipeline.get_job(job.id).steps[-1].name == "Error"


def test_stats_are_recorded(analysis_pipeline, make_apk):
    _run(analysis_pipeline, make_apk(), "a.apk")
    snap = analysis_pipeline.stats.snapshot()
    assert snap["totalScans"] == 1
    assert snap["safeApps"] == 1
