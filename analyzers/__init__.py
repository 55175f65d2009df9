from .code_scan import build_pattern_registry, scan_code
from .extract import cleanup_extraction, extract_apk
from .file_info import ValidationError, inspect_file
from .manifest import analyze_manifest, interpret_manifest
from .permissions import assess_permissions
from .risk import RiskContext, aggregate

__all__ = [
    "ValidationError",
    "inspect_file",
    "extract_apk",
    "cleanup_extraction",
    "analyze_manifest",
    "interpret_manifest",
    "assess_permissions",
    "build_pattern_registry",
    "scan_code",
    "RiskContext",
    "aggregate",
]
