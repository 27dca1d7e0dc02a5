"""Renderer wiring: MathML -> SVG via MathJax and SVG -> PNG via headless Chromium.

The engine keeps a live browser page with MathJax loaded and is not safe to use
from several threads at once (Playwright's sync API is also bound to the thread
that started it). SerializedRenderer owns one engine on a dedicated thread and
funnels every call through it, so any number of document workers can share it.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from playwright.sync_api import sync_playwright

from .config import MATHJAX_URL, RENDER_TIMEOUT_MS
from .exceptions import RendererUnavailable

log = logging.getLogger(__name__)

VectorRenderer = Callable[[str, bool], str]
RasterRenderer = Callable[[str, float], bytes]


@dataclass(frozen=True)
class Renderers:
    vector: VectorRenderer
    raster: RasterRenderer
    close: Optional[Callable[[], None]] = None


_SVG_RE = re.compile(r"<svg[\s\S]*</svg>", re.IGNORECASE)

_MATHJAX_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8" />
    <script>
      window.MathJax = { svg: { fontCache: "none" }, startup: { typeset: false } };
    </script>
    <script src="__MATHJAX_URL__"></script>
  </head>
  <body></body>
</html>
"""

_MML_TO_SVG_JS = """async ({ mathml, display }) => {
  await MathJax.startup.promise;
  const node = MathJax.mathml2svg(mathml, { display });
  return MathJax.startup.adaptor.outerHTML(node);
}"""

_RASTER_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8" /><style>html,body{margin:0;padding:0;background:transparent;}</style></head>
  <body>__SVG__</body>
</html>
"""


def extract_svg(output: str) -> str:
    """Return the outermost <svg>...</svg> of MathJax's container markup."""
    m = _SVG_RE.search(output or "")
    return m.group(0) if m else (output or "")


class PlaywrightMathRenderer:
    """MathJax-in-Chromium renderer. Not thread-safe; see SerializedRenderer."""

    def __init__(self, mathjax_url: str = MATHJAX_URL, timeout_ms: int = RENDER_TIMEOUT_MS) -> None:
        self._mathjax_url = mathjax_url
        self._timeout_ms = timeout_ms
        self._playwright = None
        self._browser = None
        self._math_page = None
        self._raster_contexts: dict = {}
        self._startup_error: Optional[str] = None

    def _ensure_started(self) -> None:
        """Start Chromium and load MathJax once.

        A failed start tears down whatever was launched and is remembered, so
        later calls fail fast with the same RendererUnavailable.
        """
        if self._startup_error is not None:
            raise RendererUnavailable(self._startup_error)
        if self._math_page is not None:
            return
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch()
            page = self._browser.new_page()
            page.set_default_timeout(self._timeout_ms)
            page.set_content(_MATHJAX_PAGE.replace("__MATHJAX_URL__", self._mathjax_url), wait_until="load")
            page.wait_for_function("() => window.MathJax && window.MathJax.startup && window.MathJax.startup.promise")
        except Exception as exc:
            self.close()
            self._startup_error = f"Could not start the math renderer: {exc}"
            log.error("%s", self._startup_error)
            raise RendererUnavailable(self._startup_error) from exc
        self._math_page = page
        log.info("MathJax renderer ready (%s)", self._mathjax_url)

    def _raster_page(self, zoom: float):
        self._ensure_started()
        page = self._raster_contexts.get(zoom)
        if page is None:
            context = self._browser.new_context(device_scale_factor=zoom)
            page = context.new_page()
            page.set_default_timeout(self._timeout_ms)
            self._raster_contexts[zoom] = page
        return page

    def to_svg(self, mathml: str, display: bool) -> str:
        self._ensure_started()
        output = self._math_page.evaluate(_MML_TO_SVG_JS, {"mathml": mathml, "display": bool(display)})
        return extract_svg(output)

    def to_png(self, svg: str, zoom: float) -> bytes:
        page = self._raster_page(zoom)
        page.set_content(_RASTER_PAGE.replace("__SVG__", svg))
        return page.locator("svg").first.screenshot(omit_background=True)

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._browser = None
        self._playwright = None
        self._math_page = None
        self._raster_contexts.clear()


class SerializedRenderer:
    """Single-thread front for a renderer engine.

    The engine is built lazily on the worker thread by engine_factory and all
    calls are queued to that thread, one at a time.
    """

    def __init__(self, engine_factory: Callable[[], PlaywrightMathRenderer] = PlaywrightMathRenderer) -> None:
        self._engine_factory = engine_factory
        self._engine = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="math-render")

    def _engine_instance(self):
        if self._engine is None:
            self._engine = self._engine_factory()
        return self._engine

    def _call(self, method: str, *args):
        def run():
            return getattr(self._engine_instance(), method)(*args)

        return self._executor.submit(run).result()

    def to_svg(self, mathml: str, display: bool) -> str:
        return self._call("to_svg", mathml, display)

    def to_png(self, svg: str, zoom: float) -> bytes:
        return self._call("to_png", svg, zoom)

    def close(self) -> None:
        def shutdown_engine() -> None:
            if self._engine is not None:
                self._engine.close()
                self._engine = None

        try:
            self._executor.submit(shutdown_engine).result()
        finally:
            self._executor.shutdown(wait=True)


def create_default_renderers() -> Renderers:
    front = SerializedRenderer()
    return Renderers(vector=front.to_svg, raster=front.to_png, close=front.close)
