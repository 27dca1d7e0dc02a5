from __future__ import annotations

import re
import uuid
from pathlib import Path

from .config import SCRATCH_PREFIX
from .exceptions import UnsafePathError


_SCRATCH_NAME_RE = re.compile(
    r"^" + re.escape(SCRATCH_PREFIX) + r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)


def is_scratch_dir_name(name: str) -> bool:
    """True for directory names produced by new_scratch_name()."""
    return isinstance(name, str) and bool(_SCRATCH_NAME_RE.match(name))


def new_scratch_name() -> str:
    return f"{SCRATCH_PREFIX}{uuid.uuid4()}"


def resolve_archive_entry_path(root: Path, entry_name: str) -> Path:
    """Resolve a zip entry name beneath root, refusing anything that escapes it.

    Backslashes are treated as separators (zips written on Windows use them).
    The result must be root itself or strictly below it; `..` segments and
    absolute names that land elsewhere raise UnsafePathError.
    """
    root = Path(root).resolve()
    normalized = (entry_name or "").replace("\\", "/")
    resolved = (root / normalized).resolve()
    if resolved == root:
        return resolved
    if root not in resolved.parents:
        raise UnsafePathError(f"Unsafe archive entry path: {entry_name}")
    return resolved
