"""EPUB conversion pipeline.

Phases run strictly in order:

    INIT -> EXTRACTING -> TRANSFORMING -> REPACKING -> DONE

The scratch area is removed on the way out of any phase, and a failure in any
phase aborts the run with the original exception; no output is written after
a failed transform.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .config import DOCUMENT_EXTS
from .math_transform import ConversionResult, convert_math_in_file
from .models import ConversionOptions, OutputFormat
from .renderers import Renderers, create_default_renderers
from .scheduler import run_with_concurrency
from .workspace import scratch_area
from .zip_utils import extract_epub, repack_epub

log = logging.getLogger(__name__)


class PipelinePhase(str, Enum):
    INIT = "init"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    REPACKING = "repacking"
    DONE = "done"


@dataclass(frozen=True)
class PipelineResult:
    output_path: Path
    output_format: OutputFormat
    documents_scanned: int
    files_changed: int
    total_converted: int


def find_documents(root: Path) -> list[Path]:
    """All XHTML/HTML files under root, in a stable order."""
    return sorted(p for p in Path(root).rglob("*") if p.is_file() and p.suffix.lower() in DOCUMENT_EXTS)


def summarize(results: list[ConversionResult]) -> tuple[int, int]:
    """Return (files_changed, total_converted)."""
    changed = [r for r in results if r.changed]
    return len(changed), sum(r.count for r in changed)


async def convert_epub(
    options: ConversionOptions,
    renderers: Optional[Renderers] = None,
    *,
    scratch_base: Optional[Path] = None,
) -> PipelineResult:
    """Convert the MathML in options.input_path and write options.output_path.

    When renderers is None the default browser-backed renderers are created
    for this run and closed at the end of it.
    """
    input_path = options.input_path
    output_path = options.output_path
    if not input_path.is_file():
        raise FileNotFoundError(f"Input EPUB not found: {input_path}")

    owns_renderers = renderers is None
    active = renderers or create_default_renderers()
    phase = PipelinePhase.INIT

    try:
        with scratch_area(scratch_base) as area:
            phase = PipelinePhase.EXTRACTING
            log.info("Extracting %s", input_path)
            await asyncio.to_thread(extract_epub, input_path, area.book_dir)

            phase = PipelinePhase.TRANSFORMING
            documents = await asyncio.to_thread(find_documents, area.book_dir)
            log.info(
                "Converting MathML in %s document(s) as %s with concurrency %s",
                len(documents),
                options.format.value,
                options.concurrency,
            )

            async def transform(path: Path) -> ConversionResult:
                return await asyncio.to_thread(convert_math_in_file, path, options.format, active)

            results = await run_with_concurrency(documents, options.concurrency, transform)
            files_changed, total_converted = summarize(results)

            phase = PipelinePhase.REPACKING
            log.info("Repacking into %s", output_path)
            await asyncio.to_thread(repack_epub, area.book_dir, output_path)

            phase = PipelinePhase.DONE
    except Exception:
        log.error("Conversion of %s failed during the %s phase", input_path, phase.value)
        raise
    finally:
        if owns_renderers and active.close is not None:
            active.close()

    return PipelineResult(
        output_path=output_path,
        output_format=options.format,
        documents_scanned=len(documents),
        files_changed=files_changed,
        total_converted=total_converted,
    )


def convert_epub_sync(
    options: ConversionOptions,
    renderers: Optional[Renderers] = None,
    *,
    scratch_base: Optional[Path] = None,
) -> PipelineResult:
    return asyncio.run(convert_epub(options, renderers, scratch_base=scratch_base))
