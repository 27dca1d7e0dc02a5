"""Backend for converting MathML in EPUB books to PNG or inline SVG.

The pipeline is split into small modules so the HTTP handlers and the CLI
stay thin:
- zip_utils: EPUB extraction (Zip Slip protected) and OCF-compliant repacking
- math_transform: per-document <math> conversion and style injection
- scheduler: bounded-concurrency runner with ordered results
- workspace: per-run scratch areas and cleanup of orphaned ones
- pipeline: the end-to-end driver
"""
from __future__ import annotations

__version__ = "1.0.0"

__all__ = ["__version__"]
