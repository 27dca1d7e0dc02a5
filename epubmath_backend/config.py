from __future__ import annotations

import os
import tempfile
from pathlib import Path


# Root directory for per-run scratch areas.
# Default: the OS temp dir, so crashed runs are eventually reclaimed by the OS too.
# Override with env var EPUBMATH_SCRATCH_ROOT.
_root_raw = os.environ.get("EPUBMATH_SCRATCH_ROOT")
if _root_raw and _root_raw.strip():
    SCRATCH_ROOT = Path(_root_raw)
else:
    SCRATCH_ROOT = Path(tempfile.gettempdir())
SCRATCH_ROOT = SCRATCH_ROOT.resolve()

# Every scratch dir is named <prefix><uuid4>; the sweeper only touches those.
SCRATCH_PREFIX = "epub-mathml-"

# Scratch areas older than this are considered orphaned by a crashed run.
SCRATCH_TTL_HOURS = float(os.environ.get("EPUBMATH_SCRATCH_TTL_HOURS", "6"))

# How often the server scans for orphaned scratch areas.
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("EPUBMATH_CLEANUP_INTERVAL_SECONDS", "600"))

# Upload limit for the HTTP endpoint.
MAX_EPUB_UPLOAD_BYTES = int(os.environ.get("EPUBMATH_MAX_EPUB_UPLOAD_BYTES", str(100 * 1024 * 1024)))  # 100MB

# PNG output is rendered at this zoom relative to the SVG's intrinsic size.
RASTER_ZOOM = float(os.environ.get("EPUBMATH_RASTER_ZOOM", "2"))

# MathJax bundle loaded into the headless page (MathML input, SVG output).
MATHJAX_URL = os.environ.get(
    "EPUBMATH_MATHJAX_URL",
    "https://cdn.jsdelivr.net/npm/mathjax@3/es5/mml-svg.js",
)
RENDER_TIMEOUT_MS = int(os.environ.get("EPUBMATH_RENDER_TIMEOUT_MS", "30000"))

# Container layout.
MIMETYPE_ENTRY = "mimetype"
BOOK_SUBDIR = "book"
DOCUMENT_EXTS = {".xhtml", ".html", ".htm"}

# Streaming buffer for archive entry copies.
COPY_CHUNK_BYTES = 64 * 1024
