from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
MIN_ARCHIVE_BYTES = 1024
_CHUNK = 65536


class ValidationError(Exception):
    """The uploaded file could not be read at all."""


@dataclass(frozen=True)
class FileMetadata:
    size_bytes: int
    sha256: Optional[str]
    sha1: Optional[str]
    last_modified: Optional[str]
    is_valid_archive: bool
    filename: str = ""

    def to_dict(self) -> Dict:
        data = asdict(self)
        return {
            "filename": data["filename"],
            "size": data["size_bytes"],
            "hash": data["sha256"],
            "hashSha1": data["sha1"],
            "lastModified": data["last_modified"],
            "isValidAPK": data["is_valid_archive"],
        }


def empty_metadata(filename: str = "") -> FileMetadata:
    """Placeholder used when the file vanished before it could be inspected."""
    return FileMetadata(
        size_bytes=0,
        sha256=None,
        sha1=None,
        last_modified=None,
        is_valid_archive=False,
        filename=filename,
    )


def _digests(path: Path):
    sha256 = hashlib.sha256()
    sha1 = hashlib.sha1()
    head = b""
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            if len(head) < len(ZIP_MAGIC):
                head += chunk[: len(ZIP_MAGIC) - len(head)]
            sha256.update(chunk)
            sha1.update(chunk)
    return sha256.hexdigest(), sha1.hexdigest(), head


def looks_like_archive(size_bytes: int, head: bytes) -> bool:
    return size_bytes >= MIN_ARCHIVE_BYTES and head[: len(ZIP_MAGIC)] == ZIP_MAGIC


def inspect_file(path, filename: Optional[str] = None) -> FileMetadata:
    """Hash the upload and decide whether it is plausibly an APK.

    A file that is too small or lacks the ZIP signature still produces
    metadata (with ``is_valid_archive=False``); only an unreadable file
    raises ``ValidationError``.
    """
    path = Path(path)
    try:
        stat = path.stat()
        sha256, sha1, head = _digests(path)
    except OSError as exc:
        raise ValidationError(f"cannot read {path.name}: {exc}") from exc

    valid = looks_like_archive(stat.st_size, head)
    if not valid:
        logger.info("%s does not look like an APK (size=%d)", path.name, stat.st_size)

    return FileMetadata(
        size_bytes=stat.st_size,
        sha256=sha256,
        sha1=sha1,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        is_valid_archive=valid,
        filename=filename or path.name,
    )
