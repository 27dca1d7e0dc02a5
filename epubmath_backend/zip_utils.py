from __future__ import annotations

import logging
import shutil
import zipfile
import zlib
from pathlib import Path

from .config import COPY_CHUNK_BYTES, MIMETYPE_ENTRY
from .exceptions import ExtractionError, MissingMarkerError, UnsafePathError
from .security import resolve_archive_entry_path

log = logging.getLogger(__name__)

# Failures that can surface while walking a damaged or hostile archive.
_EXTRACT_ERRORS = (
    UnsafePathError,
    OSError,
    EOFError,
    RuntimeError,  # encrypted entries
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    zlib.error,
)


def is_zip_path(path: Path) -> bool:
    try:
        return zipfile.is_zipfile(path)
    except OSError:
        return False


def _is_dir_entry(name: str) -> bool:
    return name.endswith("/") or name.endswith("\\")


def extract_epub(input_path: Path, extract_root: Path) -> None:
    """Unpack every entry of the container beneath extract_root.

    Entries are processed in archive order and streamed to disk in fixed-size
    chunks. Each name is checked against the sandbox before anything is
    written for it. The first failure aborts the remaining entries and is
    re-raised as ExtractionError; whatever was written so far is left for the
    caller to discard with the scratch area.
    """
    extract_root = Path(extract_root)
    try:
        extract_root.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(input_path) as zf:
            for info in zf.infolist():
                destination = resolve_archive_entry_path(extract_root, info.filename)

                if _is_dir_entry(info.filename):
                    destination.mkdir(parents=True, exist_ok=True)
                    continue

                destination.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(destination, "wb") as dst:
                    shutil.copyfileobj(src, dst, COPY_CHUNK_BYTES)
    except _EXTRACT_ERRORS as exc:
        raise ExtractionError(f"Failed to extract {input_path}: {exc}") from exc

    log.debug("Extracted %s into %s", input_path, extract_root)


def _archive_name(root: Path, file_path: Path) -> str:
    return file_path.relative_to(root).as_posix()


def list_archive_files(root: Path) -> list[tuple[str, Path]]:
    """Return (archive name, path) for every regular file under root, sorted by name."""
    root = Path(root)
    entries = [(_archive_name(root, p), p) for p in root.rglob("*") if p.is_file()]
    entries.sort(key=lambda item: item[0])
    return entries


def repack_epub(extracted_root: Path, output_path: Path) -> None:
    """Write extracted_root back out as an EPUB container.

    Layout required by OCF: `mimetype` is the first entry and stored without
    compression; everything else follows deflated, sorted by archive path so
    the output does not depend on filesystem or scheduling order.
    """
    extracted_root = Path(extracted_root)
    output_path = Path(output_path)
    mimetype_path = extracted_root / MIMETYPE_ENTRY

    if not mimetype_path.is_file():
        raise MissingMarkerError(f"EPUB is missing required mimetype file at {mimetype_path}")

    others = [(name, p) for name, p in list_archive_files(extracted_root) if name != MIMETYPE_ENTRY]

    output_path.unlink(missing_ok=True)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(output_path, mode="w", strict_timestamps=False) as zf:
        zf.write(mimetype_path, MIMETYPE_ENTRY, compress_type=zipfile.ZIP_STORED)
        for arcname, file_path in others:
            zf.write(file_path, arcname, compress_type=zipfile.ZIP_DEFLATED)

    log.debug("Repacked %s entries into %s", len(others) + 1, output_path)
