"""Unpack an APK into a per-job scratch directory.

Strategies run in order and the first one that finishes wins. The last
strategy never fails, so callers always get a directory back, possibly
empty apart from a marker file.
"""

from __future__ import annotations

import io
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

NO_EXTRACTION_MARKER = ".no_extraction"

Strategy = Callable[[Path, Path], None]


def _safe_target(dest: Path, member: str) -> Optional[Path]:
    name = PurePosixPath(member.replace("\\", "/"))
    if name.is_absolute() or ".." in name.parts:
        return None
    return dest.joinpath(*name.parts)


def _write_members(zf: zipfile.ZipFile, dest: Path) -> int:
    written = 0
    for info in zf.infolist():
        target = _safe_target(dest, info.filename)
        if target is None:
            logger.warning("skipping archive member outside tree: %s", info.filename)
            continue
        if info.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info) as src, target.open("wb") as out:
            shutil.copyfileobj(src, out)
        written += 1
    return written


def stream_extract(apk_path: Path, dest: Path) -> None:
    """Decompress member by member straight from the file on disk."""
    with zipfile.ZipFile(apk_path) as zf:
        count = _write_members(zf, dest)
    logger.debug("streamed %d members from %s", count, apk_path.name)


def memory_extract(apk_path: Path, dest: Path) -> None:
    """Load the whole archive into memory first; tolerates odd file handles."""
    buffer = io.BytesIO(apk_path.read_bytes())
    with zipfile.ZipFile(buffer) as zf:
        count = _write_members(zf, dest)
    logger.debug("extracted %d members from in-memory copy of %s", count, apk_path.name)


def placeholder_extract(apk_path: Path, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    (dest / NO_EXTRACTION_MARKER).write_text("extraction skipped")
    logger.warning("proceeding without extraction for %s (limited analysis)", apk_path.name)


STRATEGIES: List[Tuple[str, Strategy]] = [
    ("stream", stream_extract),
    ("memory", memory_extract),
    ("placeholder", placeholder_extract),
]


def _reset(dest: Path) -> None:
    shutil.rmtree(dest, ignore_errors=True)
    dest.mkdir(parents=True, exist_ok=True)


def extract_apk(
    apk_path,
    job_id: str,
    scratch_root=None,
    strategies: Optional[List[Tuple[str, Strategy]]] = None,
) -> Path:
    apk_path = Path(apk_path)
    root = Path(scratch_root) if scratch_root else apk_path.parent
    dest = root / f"extracted_{job_id}"

    for name, strategy in strategies or STRATEGIES:
        _reset(dest)
        try:
            strategy(apk_path, dest)
            logger.info("[%s] APK extracted via %s strategy to %s", job_id, name, dest)
            return dest
        except Exception as exc:
            logger.warning("[%s] %s extraction failed: %s", job_id, name, exc)

    # every strategy failed, including a caller-supplied last resort
    dest.mkdir(parents=True, exist_ok=True)
    return dest


def is_placeholder(tree: Path) -> bool:
    return (Path(tree) / NO_EXTRACTION_MARKER).exists()


def cleanup_extraction(tree) -> None:
    if tree is None:
        return
    try:
        shutil.rmtree(tree)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("cleanup failed for %s: %s", tree, exc)
