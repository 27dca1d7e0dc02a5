from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from epubmath_backend.config import CLEANUP_INTERVAL_SECONDS, MAX_EPUB_UPLOAD_BYTES
from epubmath_backend.exceptions import EpubMathError, RendererUnavailable
from epubmath_backend.models import ConversionOptions, default_output_path
from epubmath_backend.pipeline import convert_epub
from epubmath_backend.renderers import Renderers, create_default_renderers
from epubmath_backend.workspace import cleanup_expired_scratch_areas, scratch_area
from epubmath_backend.zip_utils import is_zip_path

log = logging.getLogger(__name__)

UPLOAD_FILENAME = "input.epub"


async def _cleanup_worker() -> None:
    # Periodically delete scratch areas orphaned by crashed runs.
    while True:
        try:
            cleanup_expired_scratch_areas()
        except OSError:
            log.exception("Scratch area cleanup failed")
        await asyncio.sleep(max(30, CLEANUP_INTERVAL_SECONDS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run a cleanup pass at startup, then start the periodic cleanup task.
    cleanup_expired_scratch_areas()
    app.state.renderers = create_default_renderers()

    task = asyncio.create_task(_cleanup_worker())
    app.state._cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        renderers: Renderers = app.state.renderers
        if renderers.close is not None:
            renderers.close()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_renderers(request: Request) -> Renderers:
    # One shared, serialized renderer per process; created by lifespan.
    renderers = getattr(request.app.state, "renderers", None)
    if renderers is None:
        renderers = create_default_renderers()
        request.app.state.renderers = renderers
    return renderers


def _download_name(filename: str | None) -> str:
    base = Path(filename or "book.epub").name.replace('"', "") or "book.epub"
    return default_output_path(Path(base)).name


@app.get("/api/health")
async def health() -> JSONResponse:
    return JSONResponse({"ok": True})


@app.post("/api/convert")
async def convert(
    file: UploadFile = File(...),
    format: str = Form("png"),
    concurrency: str = Form("auto"),
    renderers: Renderers = Depends(get_renderers),
) -> Response:
    """Convert the MathML in an uploaded EPUB and return the new EPUB."""
    # Limit read to reject oversized uploads without buffering them whole.
    data = await file.read(MAX_EPUB_UPLOAD_BYTES + 1)
    if len(data) > MAX_EPUB_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="EPUB too large")

    with scratch_area() as area:
        input_path = area.root / UPLOAD_FILENAME
        input_path.write_bytes(data)
        if not is_zip_path(input_path):
            raise HTTPException(status_code=400, detail="Upload is not an EPUB (ZIP) file")

        try:
            options = ConversionOptions(
                input_path=input_path,
                output_path=area.root / "output.epub",
                format=format,
                concurrency=concurrency,
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid options: {e.errors()[0]['msg']}")

        try:
            result = await convert_epub(options, renderers)
        except RendererUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        except EpubMathError as e:
            raise HTTPException(status_code=400, detail=str(e))

        epub_bytes = result.output_path.read_bytes()

    headers = {
        "Content-Disposition": f'attachment; filename="{_download_name(file.filename)}"',
        "Cache-Control": "no-store",
        "X-Content-Type-Options": "nosniff",
        "X-Math-Converted": str(result.total_converted),
        "X-Math-Files-Changed": str(result.files_changed),
    }
    return Response(content=epub_bytes, media_type="application/epub+zip", headers=headers)


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
