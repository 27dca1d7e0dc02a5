from __future__ import annotations

import base64
import sys
import threading
import zipfile
from pathlib import Path
from typing import Callable, Mapping, Union

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from epubmath_backend.renderers import Renderers  # noqa: E402

EntryData = Union[str, bytes]

FAKE_SVG = '<svg viewBox="0 -833.9 1000 1000" width="2.2ex" height="2.5ex"><path d="M0 0L10 10"/></svg>'
FAKE_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00fake-png-payload"
FAKE_PNG_B64 = base64.b64encode(FAKE_PNG).decode("ascii")

CONTAINER_XML = (
    '<?xml version="1.0"?>\n'
    '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
    '<rootfiles><rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>'
    "</rootfiles></container>"
)


def xhtml(body: str, head: str = "<title>Chapter</title>") -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml">\n'
        f"<head>{head}</head>\n"
        f"<body>{body}</body>\n"
        "</html>\n"
    )


class RecordingRenderers:
    """Thread-safe fake renderers that remember every call."""

    def __init__(self, svg: str = FAKE_SVG, png: bytes = FAKE_PNG) -> None:
        self.svg = svg
        self.png = png
        self.vector_calls: list[tuple[str, bool]] = []
        self.raster_calls: list[tuple[str, float]] = []
        self._lock = threading.Lock()

    def vector(self, mathml: str, display: bool) -> str:
        with self._lock:
            self.vector_calls.append((mathml, display))
        return self.svg

    def raster(self, svg: str, zoom: float) -> bytes:
        with self._lock:
            self.raster_calls.append((svg, zoom))
        return self.png

    def bundle(self) -> Renderers:
        return Renderers(vector=self.vector, raster=self.raster)


@pytest.fixture()
def recording() -> RecordingRenderers:
    return RecordingRenderers()


@pytest.fixture()
def renderers(recording: RecordingRenderers) -> Renderers:
    return recording.bundle()


def build_epub(
    path: Path,
    entries: Mapping[str, EntryData],
    *,
    include_mimetype: bool = True,
) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        if include_mimetype:
            zf.writestr(zipfile.ZipInfo("mimetype"), "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        for name, data in entries.items():
            zf.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
    return path


@pytest.fixture()
def epub_factory(tmp_path: Path) -> Callable[..., Path]:
    def _create(filename: str, entries: Mapping[str, EntryData], *, include_mimetype: bool = True) -> Path:
        return build_epub(tmp_path / filename, entries, include_mimetype=include_mimetype)

    return _create


@pytest.fixture()
def scratch_base(tmp_path: Path) -> Path:
    base = tmp_path / "scratch"
    base.mkdir()
    return base
