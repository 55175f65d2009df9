"""
tests/conftest.py - pytest fixtures for the APK triage service
"""
import datetime
import os
import tempfile
import zipfile

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509.oid import NameOID

# keep import-time stores out of the source tree
os.environ.setdefault("THREAT_DB_DIR", tempfile.mkdtemp(prefix="apk-threats-"))
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="apk-uploads-"))
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_JSON", "false")

from metrics import StatsTracker  # noqa: E402
from pipeline import AnalysisPipeline  # noqa: E402
from storage import JobStore  # noqa: E402
from threat_store import ThreatStore  # noqa: E402

ANDROID_NS = "http://schemas.android.com/apk/res/android"


# ── Synthetic APK fixtures ───────────────────────────────────────────────────

def manifest_xml(package="com.example.app", permissions=(), activities=()):
    """Plain-text AndroidManifest.xml; real APKs ship it compiled."""
    perms = "".join(f'<uses-permission android:name="{p}"/>' for p in permissions)
    acts = "".join(f'<activity android:name="{a}"/>' for a in activities)
    return (
        f'<?xml version="1.0" encoding="utf-8"?>'
        f'<manifest xmlns:android="{ANDROID_NS}" package="{package}" '
        f'android:versionName="1.0" android:versionCode="1">'
        f"{perms}<application>{acts}</application></manifest>"
    ).encode("utf-8")


def build_apk(path, manifest=None, files=None, dex=b""):
    """Write a stored (uncompressed) zip large enough to pass the archive check."""
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as zf:
        if manifest is not None:
            zf.writestr("AndroidManifest.xml", manifest)
        zf.writestr("classes.dex", b"dex\n035\x00" + dex + b"\x00" * 2048)
        for name, content in (files or {}).items():
            zf.writestr(name, content)
    return path


def signing_block(common_name, organization):
    """DER PKCS#7 holding one self-signed certificate, as in META-INF/CERT.RSA."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return pkcs7.serialize_certificates([cert], Encoding.DER)


@pytest.fixture()
def make_apk(tmp_path):
    def _make(name="app.apk", **kwargs):
        return build_apk(tmp_path / name, **kwargs)

    return _make


@pytest.fixture()
def threat_store(tmp_path):
    return ThreatStore(tmp_path / "threatdb")


@pytest.fixture()
def job_store():
    return JobStore()


@pytest.fixture()
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture()
def analysis_pipeline(job_store, threat_store, scratch):
    return AnalysisPipeline(
        jobs=job_store,
        threats=threat_store,
        stats=StatsTracker(),
        timeout_seconds=30,
        scratch_root=scratch,
    )
