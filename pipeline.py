"""Per-job orchestration of the analysis stages.

``AnalysisPipeline.analyze`` never raises. Degraded input (bad archive,
missing or garbled manifest) flows through the stages' own fallbacks;
unexpected stage errors swap in empty assessments and the job still
completes; only a failure while building the verdict fails the job.

A timer per job fails it after ``timeout_seconds``. Terminal states are
absorbing, so the first terminal write wins: once the watcher has fired the
pipeline stops at the next stage boundary and its late result is dropped.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from analyzers.code_scan import CodeAssessment, build_pattern_registry, scan_code
from analyzers.extract import cleanup_extraction, extract_apk
from analyzers.file_info import FileMetadata, ValidationError, empty_metadata, inspect_file
from analyzers.manifest import UNKNOWN, ManifestInfo, analyze_manifest
from analyzers.permissions import PermissionAssessment, assess_permissions
from analyzers.risk import DEFAULT_WEIGHTS, NO_MATCH, RiskContext, RiskWeights, ThreatMatch, Verdict, aggregate
from metrics import StatsTracker
from storage.models import AnalysisJob, JobStatus, utcnow
from threat_store import ThreatStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
TIMEOUT_MESSAGE = "Analysis timeout - process took too long"


class JobCancelled(Exception):
    """The job went terminal (timed out) while its stages were still running."""


def build_result(
    job_id: str,
    verdict: Verdict,
    file_meta: FileMetadata,
    manifest: ManifestInfo,
    permissions: PermissionAssessment,
    code: CodeAssessment,
    threat: ThreatMatch,
    warnings: List[str],
) -> Dict:
    result = {
        "id": job_id,
        "status": JobStatus.completed.value,
        "summary": verdict.summary(),
        "details": {
            "fileAnalysis": file_meta.to_dict(),
            "manifestAnalysis": manifest.to_dict(),
            "permissionAnalysis": permissions.to_dict(),
            "codeAnalysis": code.to_dict(),
            "threatAnalysis": threat.to_dict(),
        },
        "recommendations": list(verdict.recommendations),
        "timestamp": utcnow(),
    }
    if warnings:
        result["warnings"] = list(warnings)
    return result


class AnalysisPipeline:
    def __init__(
        self,
        jobs,
        threats: ThreatStore,
        stats: Optional[StatsTracker] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        scratch_root: Optional[Path] = None,
        weights: RiskWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self.jobs = jobs
        self.threats = threats
        self.stats = stats
        self.timeout_seconds = timeout_seconds
        self.scratch_root = scratch_root
        self.weights = weights

    # -- job bookkeeping ---------------------------------------------------

    def submit(self, file_path, filename: Optional[str] = None, job_id: Optional[str] = None) -> AnalysisJob:
        job = AnalysisJob(id=job_id or uuid.uuid4().hex, filename=filename or Path(file_path).name)
        return self.jobs.create(job)

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        return self.jobs.get(job_id)

    def _step(self, job_id: str, progress: int, name: str, description: str) -> None:
        if not self.jobs.record_step(job_id, progress, name, description):
            raise JobCancelled(job_id)
        logger.info("[%s] progress=%d%% | step=%s | %s", job_id, progress, name, description)

    def _expire(self, job_id: str) -> None:
        step = (0, "Timeout", "Analysis took too long and was cancelled")
        if self.jobs.fail(job_id, TIMEOUT_MESSAGE, step=step):
            logger.error("[%s] analysis timed out after %ss", job_id, self.timeout_seconds)

    def _start_watcher(self, job_id: str) -> threading.Timer:
        timer = threading.Timer(self.timeout_seconds, self._expire, args=(job_id,))
        timer.daemon = True
        timer.start()
        return timer

    # -- stages ------------------------------------------------------------

    def _inspect(self, apk_path: Path, filename: str, warnings: List[str]) -> FileMetadata:
        try:
            return inspect_file(apk_path, filename=filename)
        except ValidationError as exc:
            logger.error("file inspection failed: %s", exc)
            warnings.append(f"file analysis: {exc}")
            return empty_metadata(filename)
        except Exception as exc:
            logger.error("unexpected error inspecting %s: %s", apk_path.name, exc, exc_info=True)
            warnings.append(f"file analysis: {exc}")
            return empty_metadata(filename)

    def check_threats(self, file_meta: FileMetadata, manifest: ManifestInfo) -> ThreatMatch:
        package = manifest.package_name if manifest.package_name != UNKNOWN else None
        record = self.threats.lookup(hash=file_meta.sha256, package_name=package)
        if record is None and file_meta.sha1:
            record = self.threats.lookup(hash=file_meta.sha1, package_name=package)
        if record is None:
            return NO_MATCH

        matched_on = "hash" if record.hash and record.hash in (file_meta.sha256, file_meta.sha1) else "packageName"
        return ThreatMatch(
            is_known_threat=True,
            threat_type=record.type,
            confidence=record.confidence,
            description=record.description,
            threat_id=record.id,
            matched_on=matched_on,
        )

    def _unpack_and_scan(
        self, job_id: str, apk_path: Path, warnings: List[str]
    ) -> Tuple[Optional[Path], ManifestInfo, PermissionAssessment, CodeAssessment]:
        tree: Optional[Path] = None
        try:
            self._step(job_id, 40, "Extracting APK", "Extracting and parsing APK contents")
            tree = extract_apk(apk_path, job_id, scratch_root=self.scratch_root)

            self._step(job_id, 60, "Manifest Analysis", "Analyzing Android manifest file")
            manifest = analyze_manifest(tree, apk_path)

            self._step(job_id, 80, "Permission Check", "Analyzing requested permissions")
            permissions = assess_permissions(manifest.permissions)

            self._step(job_id, 90, "Code Analysis", "Checking for malicious code patterns")
            registry = build_pattern_registry(self.threats.patterns())
            code = scan_code(tree, registry)
            return tree, manifest, permissions, code
        except JobCancelled:
            cleanup_extraction(tree)
            raise
        except Exception as exc:
            logger.warning("[%s] extraction/manifest/code analysis failed: %s", job_id, exc, exc_info=True)
            warnings.append(f"extraction/manifest/code analysis: {exc}")
            return tree, ManifestInfo(), PermissionAssessment(), CodeAssessment(error=str(exc))

    # -- entry point -------------------------------------------------------

    def analyze(self, file_path, job_id: str) -> Dict:
        """Run every stage for one job and return its result (or failed job) dict."""
        apk_path = Path(file_path)
        job = self.jobs.get(job_id) or self.submit(apk_path, job_id=job_id)
        started = time.monotonic()
        self.jobs.mark_processing(job_id)
        watcher = self._start_watcher(job_id)

        tree: Optional[Path] = None
        risk_level: Optional[str] = None
        warnings: List[str] = []
        try:
            self._step(job_id, 5, "Starting", "Initializing analysis")

            self._step(job_id, 20, "File Analysis", "Examining file structure and integrity")
            file_meta = self._inspect(apk_path, job.filename, warnings)

            tree, manifest, permissions, code = self._unpack_and_scan(job_id, apk_path, warnings)

            self._step(job_id, 95, "Database Check", "Comparing with known threats")
            try:
                threat = self.check_threats(file_meta, manifest)
            except Exception as exc:
                logger.warning("[%s] threat lookup failed: %s", job_id, exc, exc_info=True)
                warnings.append(f"threat lookup: {exc}")
                threat = NO_MATCH

            self._step(job_id, 100, "Finalizing", "Generating security report")
            verdict = aggregate(RiskContext(file_meta, manifest, permissions, code, threat), self.weights)
            result = build_result(job_id, verdict, file_meta, manifest, permissions, code, threat, warnings)

            if self.jobs.complete(job_id, result):
                risk_level = verdict.risk_level
                logger.info("[%s] analysis completed: %s (%d)", job_id, verdict.risk_level, verdict.risk_score)
            else:
                logger.warning("[%s] job already terminal, discarding late result", job_id)
        except JobCancelled:
            logger.warning("[%s] job went terminal mid-analysis, stopping", job_id)
        except Exception as exc:
            logger.error("[%s] analysis failed: %s", job_id, exc, exc_info=True)
            self.jobs.fail(job_id, str(exc), step=(0, "Error", f"Analysis failed: {exc}"))
        finally:
            watcher.cancel()
            cleanup_extraction(tree)
            if self.stats is not None:
                self.stats.record(risk_level, time.monotonic() - started)

        final = self.jobs.get(job_id)
        if final is None:
            return {"id": job_id, "status": JobStatus.failed.value, "error": "job record missing"}
        if final.status == JobStatus.completed and final.result is not None:
            return final.result
        return final.to_dict()
