from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from androguard.core.axml import AXMLPrinter

from .signing import read_signer_names

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
MANIFEST_NAME = "AndroidManifest.xml"
ANDROID_NS = "{http://schemas.android.com/apk/res/android}"
PERMISSION_PREFIX = "android.permission."

# RES_XML_TYPE chunk header of a compiled (binary) manifest
AXML_MAGIC = b"\x03\x00\x08\x00"

PERMISSION_TAGS = {"uses-permission", "uses-permission-sdk-23", "uses-permission-sdk-m"}
COMPONENT_TAGS = {
    "activity": "activities",
    "activity-alias": "activities",
    "service": "services",
    "receiver": "receivers",
    "provider": "providers",
}

# Curated allow-list used to validate permission strings pulled out of binary noise
KNOWN_PERMISSIONS = frozenset(
    PERMISSION_PREFIX + name
    for name in (
        "READ_SMS",
        "SEND_SMS",
        "RECEIVE_SMS",
        "BIND_ACCESSIBILITY_SERVICE",
        "REQUEST_INSTALL_PACKAGES",
        "SYSTEM_ALERT_WINDOW",
        "WRITE_SETTINGS",
        "PACKAGE_USAGE_STATS",
        "RECEIVE_BOOT_COMPLETED",
        "READ_CONTACTS",
        "WRITE_CONTACTS",
        "READ_CALL_LOG",
        "WRITE_CALL_LOG",
        "CAMERA",
        "RECORD_AUDIO",
        "ACCESS_FINE_LOCATION",
        "ACCESS_COARSE_LOCATION",
        "READ_PHONE_NUMBERS",
        "READ_PHONE_STATE",
        "INTERNET",
        "ACCESS_NETWORK_STATE",
        "READ_EXTERNAL_STORAGE",
        "WRITE_EXTERNAL_STORAGE",
        "BLUETOOTH",
        "BLUETOOTH_CONNECT",
        "NFC",
        "WAKE_LOCK",
        "FOREGROUND_SERVICE",
    )
)

_PERMISSION_SHAPE = re.compile(r"^android\.permission\.[A-Z0-9_.]+$")
_PERMISSION_RUN = re.compile(re.escape(PERMISSION_PREFIX) + r"[A-Za-z0-9_.]*")
_NAME_ATTR = re.compile(r'android:name="([^"]+)"')
_PACKAGE_ATTR = re.compile(r'package="([^"]+)"')
_VERSION_NAME_ATTR = re.compile(r'versionName="([^"]+)"')
_VERSION_CODE_ATTR = re.compile(r'versionCode="([^"]+)"')


@dataclass
class ManifestInfo:
    package_name: str = UNKNOWN
    version_name: str = UNKNOWN
    version_code: str = UNKNOWN
    permissions: List[str] = field(default_factory=list)
    activities: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    receivers: List[str] = field(default_factory=list)
    providers: List[str] = field(default_factory=list)
    signatures: List[str] = field(default_factory=list)
    source: str = "default"

    def to_dict(self) -> Dict:
        return {
            "packageName": self.package_name,
            "versionName": self.version_name,
            "versionCode": self.version_code,
            "permissions": list(self.permissions),
            "activities": list(self.activities),
            "services": list(self.services),
            "receivers": list(self.receivers),
            "providers": list(self.providers),
            "signatures": list(self.signatures),
            "source": self.source,
        }


def _unique(values) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _attr(node: ET.Element, name: str) -> Optional[str]:
    return node.attrib.get(f"{ANDROID_NS}{name}") or node.attrib.get(name)


def parse_structured(raw: bytes) -> Optional[ManifestInfo]:
    """Parse the manifest as XML, decoding compiled binary XML first."""
    try:
        if raw[:4] == AXML_MAGIC:
            printer = AXMLPrinter(raw)
            if not printer.is_valid():
                return None
            raw = printer.get_xml()
        root = ET.fromstring(raw)
    except Exception as exc:
        logger.debug("structured manifest parse failed: %s", exc)
        return None

    if _local(root.tag) != "manifest":
        return None

    info = ManifestInfo(
        package_name=root.attrib.get("package") or UNKNOWN,
        version_name=_attr(root, "versionName") or UNKNOWN,
        version_code=_attr(root, "versionCode") or UNKNOWN,
        source="xml",
    )
    permissions: List[str] = []
    components: Dict[str, List[str]] = {"activities": [], "services": [], "receivers": [], "providers": []}

    for child in root:
        tag = _local(child.tag)
        if tag in PERMISSION_TAGS:
            permissions.append(_attr(child, "name"))
        elif tag == "application":
            for comp in child:
                bucket = COMPONENT_TAGS.get(_local(comp.tag))
                if bucket:
                    components[bucket].append(_attr(comp, "name"))

    info.permissions = _unique(permissions)
    info.activities = _unique(components["activities"])
    info.services = _unique(components["services"])
    info.receivers = _unique(components["receivers"])
    info.providers = _unique(components["providers"])
    return info


def _permission_candidates(text: str):
    for match in _PERMISSION_RUN.finditer(text):
        candidate = match.group(0).rstrip(".")
        if _PERMISSION_SHAPE.match(candidate) and candidate in KNOWN_PERMISSIONS:
            yield candidate


def scan_binary(raw: bytes) -> Optional[ManifestInfo]:
    """Pull allow-listed permission strings out of a compiled manifest."""
    # compiled manifests usually keep their string pool in UTF-16
    views = (
        raw.decode("utf-8", errors="ignore"),
        raw.decode("utf-16-le", errors="ignore"),
        raw[1:].decode("utf-16-le", errors="ignore"),
    )
    permissions = _unique(p for view in views for p in _permission_candidates(view))
    if not permissions:
        return None
    return ManifestInfo(permissions=permissions, source="binary")


def scan_text(raw: bytes) -> Optional[ManifestInfo]:
    """Last resort: regexes over whatever text survives decoding."""
    text = raw.decode("utf-8", errors="ignore")
    permissions = _unique(
        name for name in _NAME_ATTR.findall(text) if name.startswith(PERMISSION_PREFIX)
    )
    package = _PACKAGE_ATTR.search(text)
    version_name = _VERSION_NAME_ATTR.search(text)
    version_code = _VERSION_CODE_ATTR.search(text)
    if not (permissions or package):
        return None
    return ManifestInfo(
        package_name=package.group(1) if package else UNKNOWN,
        version_name=version_name.group(1) if version_name else UNKNOWN,
        version_code=version_code.group(1) if version_code else UNKNOWN,
        permissions=permissions,
        source="regex",
    )


STRATEGIES: List[Tuple[str, Callable[[bytes], Optional[ManifestInfo]]]] = [
    ("xml", parse_structured),
    ("binary", scan_binary),
    ("regex", scan_text),
]


def interpret_manifest(raw: bytes, strategies=None) -> ManifestInfo:
    """Run the fallback chain over raw manifest bytes.

    The first tier that recognises the input wins, even with no permissions;
    later tiers only run when an earlier one could not read the manifest.
    """
    for name, strategy in strategies or STRATEGIES:
        try:
            info = strategy(raw)
        except Exception as exc:
            logger.warning("manifest strategy %s failed: %s", name, exc)
            continue
        if info is not None:
            return info
    return ManifestInfo()


def analyze_manifest(tree, apk_path=None) -> ManifestInfo:
    """Interpret the extracted manifest; signer names need the original archive."""
    manifest_path = Path(tree) / MANIFEST_NAME
    if not manifest_path.is_file():
        logger.info("no %s in %s", MANIFEST_NAME, tree)
        info = ManifestInfo(source="missing")
    else:
        try:
            raw = manifest_path.read_bytes()
        except OSError as exc:
            logger.warning("could not read %s: %s", manifest_path, exc)
            raw = b""
        info = interpret_manifest(raw)
    if apk_path is not None:
        info.signatures = read_signer_names(apk_path)
    return info
