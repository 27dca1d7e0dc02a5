"""
Command-line interface for the EPUB MathML converter.

Usage:
    epub-mathml-converter book.epub
    epub-mathml-converter book.epub book-kindle.epub
    epub-mathml-converter book.epub --format svg
    epub-mathml-converter book.epub --format png --concurrency 4
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from epubmath_backend import __version__
from epubmath_backend.exceptions import EpubMathError
from epubmath_backend.models import ConversionOptions, OutputFormat, auto_concurrency
from epubmath_backend.pipeline import convert_epub_sync

log = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(handler)


def _parse_concurrency(ctx, param, value: str) -> int:
    raw = (value or "auto").strip().lower()
    if raw == "auto":
        return auto_concurrency()
    if not raw.isdigit() or int(raw) < 1:
        raise click.BadParameter(f"{value}. Use auto or a positive integer.")
    return int(raw)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.argument("input_epub", type=click.Path(dir_okay=False, path_type=Path))
@click.argument("output_epub", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "output_format",
    type=click.Choice([f.value for f in OutputFormat]),
    default=OutputFormat.PNG.value,
    show_default=True,
    help="png: replace <math> with <img src=\"data:image/png;base64,...\">; svg: replace with inline <svg>.",
)
@click.option(
    "--concurrency",
    default="auto",
    show_default=True,
    callback=_parse_concurrency,
    help=f"Documents converted in parallel: a positive integer or auto ({auto_concurrency()} on this machine).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(input_epub: Path, output_epub: Optional[Path], output_format: str, concurrency: int, verbose: bool) -> None:
    """
    Convert MathML in an EPUB to PNG images or inline SVG.

    OUTPUT_EPUB defaults to INPUT_EPUB with a .kindle.epub suffix.
    """
    _setup_logging(verbose)

    options = ConversionOptions(
        input_path=input_epub,
        output_path=output_epub,
        format=OutputFormat(output_format),
        concurrency=concurrency,
    )

    try:
        result = convert_epub_sync(options)
    except (EpubMathError, OSError, ValueError) as e:
        click.echo(f"Conversion failed: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"Done. Converted {result.total_converted} MathML nodes in {result.files_changed} file(s) "
        f"using {result.output_format.value}."
    )
    click.echo(f"Output: {result.output_path}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
