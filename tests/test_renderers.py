from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from epubmath_backend import renderers as renderers_module
from epubmath_backend.exceptions import RendererUnavailable
from epubmath_backend.renderers import PlaywrightMathRenderer, SerializedRenderer, extract_svg


class FakeEngine:
    def __init__(self) -> None:
        self.threads: set[str] = set()
        self.closed = False

    def _enter(self) -> None:
        self.threads.add(threading.current_thread().name)

    def to_svg(self, mathml: str, display: bool) -> str:
        self._enter()
        return f"<svg data-display='{display}'>{mathml}</svg>"

    def to_png(self, svg: str, zoom: float) -> bytes:
        self._enter()
        if zoom <= 0:
            raise ValueError("bad zoom")
        return f"{zoom}:{svg}".encode()

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def engine_factory():
    created: list[FakeEngine] = []

    def factory() -> FakeEngine:
        engine = FakeEngine()
        created.append(engine)
        return engine

    factory.created = created
    return factory


def test_extract_svg_takes_outermost_svg() -> None:
    container = '<mjx-container jax="SVG"><svg a="1"><svg b="2"></svg><g/></svg></mjx-container>'
    assert extract_svg(container) == '<svg a="1"><svg b="2"></svg><g/></svg>'


def test_extract_svg_passes_through_other_output() -> None:
    assert extract_svg("<div>error</div>") == "<div>error</div>"
    assert extract_svg(None) == ""


def test_engine_is_built_lazily_once(engine_factory) -> None:
    front = SerializedRenderer(engine_factory)
    assert engine_factory.created == []

    assert front.to_svg("<math/>", True) == "<svg data-display='True'><math/></svg>"
    assert front.to_png("<svg/>", 2.0) == b"2.0:<svg/>"
    front.close()

    assert len(engine_factory.created) == 1


def test_all_calls_run_on_one_render_thread(engine_factory) -> None:
    front = SerializedRenderer(engine_factory)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda i: front.to_svg(f"<math>{i}</math>", False), range(40)))
    front.close()

    engine = engine_factory.created[0]
    assert results == [f"<svg data-display='False'><math>{i}</math></svg>" for i in range(40)]
    assert len(engine.threads) == 1
    assert next(iter(engine.threads)).startswith("math-render")


def test_engine_errors_reach_the_caller(engine_factory) -> None:
    front = SerializedRenderer(engine_factory)
    with pytest.raises(ValueError, match="bad zoom"):
        front.to_png("<svg/>", 0)
    # The front keeps working after a failed call.
    assert front.to_svg("<math/>", False).startswith("<svg")
    front.close()


def test_close_shuts_engine_down(engine_factory) -> None:
    front = SerializedRenderer(engine_factory)
    front.to_svg("<math/>", False)
    engine = engine_factory.created[0]

    front.close()

    assert engine.closed


def test_close_without_use_never_builds_engine(engine_factory) -> None:
    SerializedRenderer(engine_factory).close()
    assert engine_factory.created == []


class _BrokenChromium:
    def launch(self):
        raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")


class _PlaywrightStub:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.chromium = _BrokenChromium()

    def stop(self) -> None:
        self.events.append("stop")


class _SyncPlaywrightStub:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    def start(self) -> _PlaywrightStub:
        self.events.append("start")
        return _PlaywrightStub(self.events)


def test_failed_browser_start_is_fatal_and_not_retried(monkeypatch) -> None:
    events: list[str] = []
    monkeypatch.setattr(renderers_module, "sync_playwright", lambda: _SyncPlaywrightStub(events))
    front = SerializedRenderer(PlaywrightMathRenderer)

    for _ in range(3):
        with pytest.raises(RendererUnavailable, match="Executable doesn't exist"):
            front.to_svg("<math/>", False)
    with pytest.raises(RendererUnavailable):
        front.to_png("<svg/>", 2.0)
    front.close()

    assert events == ["start", "stop"]
