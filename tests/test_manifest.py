"""tests/test_manifest.py - manifest interpretation and its fallbacks"""
from analyzers.extract import extract_apk
from analyzers.manifest import (
    UNKNOWN,
    ManifestInfo,
    analyze_manifest,
    interpret_manifest,
    parse_structured,
    scan_binary,
)
from analyzers.signing import read_signer_names
from tests.conftest import manifest_xml, signing_block

P = "android.permission."


def test_structured_manifest():
    raw = manifest_xml(
        package="com.example.bank",
        permissions=[P + "INTERNET", P + "READ_SMS"],
        activities=[".MainActivity"],
    )
    info = interpret_manifest(raw)

    assert info.source == "xml"
    assert info.package_name == "com.example.bank"
    assert info.version_name == "1.0"
    assert info.version_code == "1"
    assert info.permissions == [P + "INTERNET", P + "READ_SMS"]
    assert info.activities == [".MainActivity"]


def test_duplicate_permissions_collapse():
    raw = manifest_xml(permissions=[P + "CAMERA", P + "CAMERA"])
    assert interpret_manifest(raw).permissions == [P + "CAMERA"]


def test_manifest_without_permissions_keeps_identity():
    info = interpret_manifest(manifest_xml(package="com.quiet.app"))
    assert info.source == "xml"
    assert info.package_name == "com.quiet.app"
    assert info.permissions == []


def test_binary_scan_finds_utf16_strings():
    raw = b"\x03\x00\x08\x00" + b"\x00" * 16
    raw += (P + "READ_SMS").encode("utf-16-le") + b"\x00\x00"
    raw += (P + "NOT_A_REAL_ONE").encode("utf-16-le")

    info = interpret_manifest(raw)
    assert info.source == "binary"
    assert info.permissions == [P + "READ_SMS"]
    assert info.package_name == UNKNOWN


def test_binary_scan_handles_odd_offset():
    raw = b"X" + (P + "CAMERA").encode("utf-16-le")
    info = scan_binary(raw)
    assert info is not None
    assert info.permissions == [P + "CAMERA"]


def test_regex_fallback_on_broken_xml():
    raw = (
        b'<manifest package="com.broken.app" android:versionName="2.1">'
        b'<uses-permission android:name="android.permission.ACCESS_WIFI_STATE">'
    )
    assert parse_structured(raw) is None
    assert scan_binary(raw) is None

    info = interpret_manifest(raw)
    assert info.source == "regex"
    assert info.package_name == "com.broken.app"
    assert info.version_name == "2.1"
    assert info.permissions == [P + "ACCESS_WIFI_STATE"]


def test_garbage_gives_defaults():
    info = interpret_manifest(b"\xff\xfe\x00garbage")
    assert info == ManifestInfo()


def test_raising_strategy_is_skipped():
    def explode(raw):
        raise RuntimeError("bad parser")

    raw = manifest_xml(permissions=[P + "CAMERA"])
    info = interpret_manifest(raw, strategies=[("explode", explode), ("xml", parse_structured)])
    assert info.permissions == [P + "CAMERA"]


def test_missing_manifest(make_apk, scratch):
    tree = extract_apk(make_apk(), "m1", scratch_root=scratch)
    info = analyze_manifest(tree)
    assert info.source == "missing"
    assert info.package_name == UNKNOWN
    assert info.permissions == []



def test_component_permission_without_uses_permission():
    raw = (
        f'<manifest xmlns:android="http://schemas.android.com/apk/res/android" package="com.example.reader">'
        f'<application><service android:name=".Reader" '
        f'android:permission="{P}BIND_ACCESSIBILITY_SERVICE"/></application></manifest>'
    ).encode("utf-8")
    info = interpret_manifest(raw)

    assert info.source == "xml"
    assert info.package_name == "com.example.reader"
    assert info.permissions == []
    assert info.services == [".Reader"]


def test_signer_names_from_signature_block(make_apk, scratch):
    files = {
        "META-INF/CERT.RSA": signing_block("Android Debug", "Android"),
        "META-INF/CERT.SF": b"Signature-Version: 1.0\r\n\r\n",
    }
    apk = make_apk(manifest=manifest_xml(), files=files)

    assert read_signer_names(apk) == ["CN=Android Debug, O=Android"]

    tree = extract_apk(apk, "m2", scratch_root=scratch)
    assert analyze_manifest(tree, apk).signatures == ["CN=Android Debug, O=Android"]
    # without the archive there is nothing to read signers from
    assert analyze_manifest(tree).signatures == []


def test_unsigned_or_unreadable_archive_has_no_signers(make_apk, tmp_path):
    assert read_signer_names(make_apk(manifest=manifest_xml())) == []

    junk = tmp_path / "junk.apk"
    junk.write_bytes(b"not a zip at all")
    assert read_signer_names(junk) == []
