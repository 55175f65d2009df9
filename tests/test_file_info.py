"""tests/test_file_info.py - hashing and archive sniffing"""
import hashlib
import zipfile

import pytest

from analyzers.file_info import ValidationError, empty_metadata, inspect_file, looks_like_archive


def test_valid_apk(make_apk):
    apk = make_apk()
    meta = inspect_file(apk, filename="upload.apk")
    data = apk.read_bytes()

    assert meta.is_valid_archive is True
    assert meta.size_bytes == len(data)
    assert meta.sha256 == hashlib.sha256(data).hexdigest()
    assert meta.sha1 == hashlib.sha1(data).hexdigest()
    assert meta.filename == "upload.apk"
    assert meta.to_dict()["isValidAPK"] is True


def test_small_zip_is_not_an_apk(tmp_path):
    path = tmp_path / "tiny.apk"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("a.txt", "x")
    assert path.stat().st_size < 1024

    meta = inspect_file(path)
    assert meta.is_valid_archive is False
    assert meta.sha256 is not None


def test_wrong_signature(tmp_path):
    path = tmp_path / "fake.apk"
    path.write_bytes(b"MZ" + b"\x00" * 4096)
    assert inspect_file(path).is_valid_archive is False


def test_unreadable_file_raises(tmp_path):
    with pytest.raises(ValidationError):
        inspect_file(tmp_path / "gone.apk")


def test_looks_like_archive_boundary():
    assert looks_like_archive(1024, b"PK\x03\x04") is True
    assert looks_like_archive(1023, b"PK\x03\x04") is False


def test_empty_metadata_shape():
    data = empty_metadata("x.apk").to_dict()
    assert data == {
        "filename": "x.apk",
        "size": 0,
        "hash": None,
        "hashSha1": None,
        "lastModified": None,
        "isValidAPK": False,
    }
