"""Signer subjects of an APK, read through androguard's certificate API.

Only the distinguished names are reported; signatures are not verified.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from androguard.core.apk import APK

logger = logging.getLogger(__name__)

# asn1crypto attribute names -> short DN labels
_SHORT_NAMES = {
    "common_name": "CN",
    "organizational_unit_name": "OU",
    "organization_name": "O",
    "locality_name": "L",
    "state_or_province_name": "ST",
    "country_name": "C",
    "email_address": "E",
}


def format_name(name) -> str:
    """Render an asn1crypto ``Name`` as ``CN=..., O=...``."""
    parts = []
    for key, value in name.native.items():
        label = _SHORT_NAMES.get(key)
        if not label:
            continue
        values = value if isinstance(value, list) else [value]
        parts.extend(f"{label}={v}" for v in values)
    return ", ".join(parts)


def _certificates(apk: APK):
    certs = []
    # v1 (JAR) first, then the v2/v3 signing blocks
    for scheme, getter in (
        ("v1", apk.get_certificates_v1),
        ("v2", apk.get_certificates_v2),
        ("v3", apk.get_certificates_v3),
    ):
        try:
            certs.extend(getter())
        except Exception as exc:
            logger.debug("no %s certificates: %s", scheme, exc)
    return certs


def read_signer_names(apk_path) -> List[str]:
    """Subject DNs of every distinct signing certificate, in scheme order."""
    apk_path = Path(apk_path)
    try:
        apk = APK(str(apk_path), skip_analysis=True)
    except Exception as exc:
        logger.warning("could not open %s for signature reading: %s", apk_path.name, exc)
        return []

    names: List[str] = []
    seen = set()
    for cert in _certificates(apk):
        if cert.sha256 in seen:
            continue
        seen.add(cert.sha256)
        subject = format_name(cert.subject)
        if subject and subject not in names:
            names.append(subject)
    return names
