from __future__ import annotations

import json
import logging
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .config import BOOK_SUBDIR, SCRATCH_ROOT, SCRATCH_TTL_HOURS
from .security import is_scratch_dir_name, new_scratch_name

log = logging.getLogger(__name__)

META_FILENAME = ".meta.json"


@dataclass(frozen=True)
class ScratchArea:
    root: Path
    book_dir: Path
    meta_path: Path


def _now_epoch() -> float:
    return time.time()


def _meta_default() -> dict:
    return {"created_at": _now_epoch(), "version": 1}


def _load_meta(meta_path: Path) -> dict:
    try:
        return json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def _write_meta(meta_path: Path, meta: dict) -> None:
    meta_path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")


def create_scratch_area(base_dir: Path | None = None) -> ScratchArea:
    """Create a fresh, uniquely named scratch area.

    The extracted book lives in <root>/book so the bookkeeping file next to it
    never ends up inside the repacked container.
    """
    base = (base_dir or SCRATCH_ROOT).resolve()
    base.mkdir(parents=True, exist_ok=True)
    root = base / new_scratch_name()
    root.mkdir()
    area = ScratchArea(root=root, book_dir=root / BOOK_SUBDIR, meta_path=root / META_FILENAME)
    _write_meta(area.meta_path, _meta_default())
    log.debug("Created scratch area %s", root)
    return area


def delete_scratch_area(area: ScratchArea) -> None:
    if area.root.exists():
        shutil.rmtree(area.root, ignore_errors=True)
    log.debug("Removed scratch area %s", area.root)


@contextmanager
def scratch_area(base_dir: Path | None = None) -> Iterator[ScratchArea]:
    """Yield a new scratch area and remove it on the way out, error or not."""
    area = create_scratch_area(base_dir)
    try:
        yield area
    finally:
        delete_scratch_area(area)


def _is_scratch_area_dir(path: Path) -> bool:
    if not path.is_dir():
        return False
    if not is_scratch_dir_name(path.name):
        return False
    # Our scratch areas always have a meta file.
    return (path / META_FILENAME).is_file()


def cleanup_expired_scratch_areas(base_dir: Path | None = None, ttl_hours: float | None = None) -> int:
    """Delete scratch areas left behind by runs that died without cleaning up.

    Only directories that look like ours are considered. Returns the number
    of deleted scratch areas.
    """
    root = (base_dir or SCRATCH_ROOT).resolve()
    if not root.exists():
        return 0

    ttl = SCRATCH_TTL_HOURS if ttl_hours is None else ttl_hours
    ttl_seconds = max(0.0, ttl) * 3600.0
    if not ttl_seconds:
        return 0
    now = _now_epoch()

    deleted = 0
    for child in root.iterdir():
        if not _is_scratch_area_dir(child):
            continue
        meta = _load_meta(child / META_FILENAME)
        created_at = float(meta.get("created_at", 0))
        if (now - created_at) > ttl_seconds:
            shutil.rmtree(child, ignore_errors=True)
            deleted += 1
    if deleted:
        log.info("Removed %s expired scratch area(s) under %s", deleted, root)
    return deleted
