from __future__ import annotations

import base64
import codecs
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import RASTER_ZOOM
from .exceptions import MalformedRenderOutput, RenderFailure, RendererUnavailable
from .models import OutputFormat
from .renderers import Renderers

log = logging.getLogger(__name__)

TEX_ENCODING = "application/x-tex"
SVG_NAMESPACE = "http://www.w3.org/2000/svg"

_MATH_RE = re.compile(r"<math\b[\s\S]*?</math>", re.IGNORECASE)
_SVG_OPEN_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
_CLASS_ATTR_RE = re.compile(r"\sclass\s*=\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL)
_XMLNS_RE = re.compile(r"\sxmlns\s*=\s*([\"'])http://www\.w3\.org/2000/svg\1", re.IGNORECASE)
_ROLE_RE = re.compile(r"\srole\s*=", re.IGNORECASE)
_ARIA_LABEL_RE = re.compile(r"\saria-label\s*=", re.IGNORECASE)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")
_XML_ENCODING_RE = re.compile(rb"<\?xml\s[^>]*?encoding\s*=\s*[\"']([A-Za-z0-9._-]+)[\"']")

_BOMS = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)

_STYLE_TEMPLATE = (
    '<style type="text/css">'
    ".{p}-inline{{vertical-align:middle;display:inline-block;max-width:100%;}}"
    ".{p}-block{{display:block;margin:0.8em auto;max-width:100%;}}"
    "</style>"
)


@dataclass(frozen=True)
class ConversionResult:
    changed: bool
    count: int


@dataclass(frozen=True)
class MathNode:
    markup: str
    display: bool
    alt_text: Optional[str]


@dataclass(frozen=True)
class DecodedDocument:
    text: str
    encoding: str
    bom: bytes


def _class_prefix(output_format: OutputFormat) -> str:
    return "math-svg" if output_format.is_vector else "math-png"


def class_names_for(output_format: OutputFormat, display: bool) -> list[str]:
    prefix = _class_prefix(output_format)
    return [prefix, f"{prefix}-block" if display else f"{prefix}-inline"]


def style_block(output_format: OutputFormat) -> str:
    return _STYLE_TEMPLATE.format(p=_class_prefix(output_format))


def _merge_class_list(existing: object, add: Iterable[str]) -> list[str]:
    current: list[str] = []
    if isinstance(existing, list):
        current = [str(x) for x in existing if str(x).strip()]
    elif isinstance(existing, str):
        current = [p for p in existing.split() if p.strip()]

    for c in add:
        c = str(c).strip()
        if c and c not in current:
            current.append(c)
    return current


def escape_attribute_value(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")


def _is_tex_annotation(tag: Tag) -> bool:
    return tag.name == "annotation" and str(tag.get("encoding") or "").strip().lower() == TEX_ENCODING


def parse_math_node(markup: str) -> MathNode:
    """Read display mode and TeX alt text from one <math>...</math> fragment."""
    soup = BeautifulSoup(markup, "html.parser")
    math = soup.find("math")
    if not isinstance(math, Tag):
        return MathNode(markup=markup, display=False, alt_text=None)

    display = str(math.get("display") or "inline").strip().lower() == "block"

    alt_text = None
    annotation = math.find(_is_tex_annotation)
    if isinstance(annotation, Tag):
        alt_text = " ".join(annotation.get_text().split()) or None

    return MathNode(markup=markup, display=display, alt_text=alt_text)


def inject_svg_attributes(svg: str, class_names: Iterable[str], alt_text: Optional[str]) -> str:
    """Decorate the root <svg> tag; child elements are left alone."""
    m = _SVG_OPEN_RE.match(svg)
    if not m:
        return svg
    open_tag, rest = m.group(0), svg[m.end():]

    class_match = _CLASS_ATTR_RE.search(open_tag)
    if class_match:
        merged = " ".join(_merge_class_list(class_match.group(2), class_names))
        open_tag = f'{open_tag[:class_match.start()]} class="{merged}"{open_tag[class_match.end():]}'
    else:
        merged = " ".join(_merge_class_list(None, class_names))
        open_tag = f'<svg class="{merged}"{open_tag[4:]}'

    if not _XMLNS_RE.search(open_tag):
        open_tag = f'<svg xmlns="{SVG_NAMESPACE}"{open_tag[4:]}'

    if alt_text:
        if not _ROLE_RE.search(open_tag):
            open_tag = f'<svg role="img"{open_tag[4:]}'
        if not _ARIA_LABEL_RE.search(open_tag):
            open_tag = f'<svg aria-label="{escape_attribute_value(alt_text)}"{open_tag[4:]}'

    return open_tag + rest


def build_img_tag(base64_png: str, class_names: Iterable[str], alt_text: Optional[str]) -> str:
    alt = escape_attribute_value(alt_text or "math")
    classes = " ".join(class_names)
    return f'<img class="{classes}" src="data:image/png;base64,{base64_png}" alt="{alt}" />'


def _render_vector(node: MathNode, renderers: Renderers) -> str:
    try:
        svg = renderers.vector(node.markup, node.display)
    except RendererUnavailable:
        raise
    except Exception as exc:
        raise RenderFailure(f"vector renderer failed: {exc}") from exc
    svg = (svg or "").strip() if isinstance(svg, str) else ""
    if not re.match(r"<svg\b", svg, re.IGNORECASE):
        raise MalformedRenderOutput("vector renderer did not return <svg> markup")
    return svg


def _render_raster(node: MathNode, renderers: Renderers) -> str:
    svg = _render_vector(node, renderers)
    try:
        png = renderers.raster(svg, RASTER_ZOOM)
    except RendererUnavailable:
        raise
    except Exception as exc:
        raise RenderFailure(f"raster renderer failed: {exc}") from exc
    if not isinstance(png, (bytes, bytearray)):
        raise MalformedRenderOutput("raster renderer did not return bytes")
    payload = base64.b64encode(bytes(png)).decode("ascii")
    if not payload or not _BASE64_RE.match(payload):
        raise MalformedRenderOutput("raster renderer returned an empty image")
    return payload


def render_math_node(node: MathNode, output_format: OutputFormat, renderers: Renderers) -> str:
    """Return the replacement markup for node, or raise RenderFailure."""
    class_names = class_names_for(output_format, node.display)
    if output_format.is_vector:
        return inject_svg_attributes(_render_vector(node, renderers), class_names, node.alt_text)
    return build_img_tag(_render_raster(node, renderers), class_names, node.alt_text)


def contains_math(text: str) -> bool:
    return _MATH_RE.search(text or "") is not None


def convert_math_text(
    text: str,
    output_format: OutputFormat,
    renderers: Renderers,
    source: str = "<document>",
) -> tuple[str, int]:
    """Replace every <math> node in text; nodes that fail to render stay verbatim.

    Returns (new_text, converted_count).
    """
    converted = 0

    def _sub(m: re.Match) -> str:
        nonlocal converted
        node = parse_math_node(m.group(0))
        try:
            replacement = render_math_node(node, output_format, renderers)
        except RenderFailure as exc:
            log.warning("%s: leaving math node at offset %s unconverted (%s)", source, m.start(), exc)
            return m.group(0)
        converted += 1
        return replacement

    return _MATH_RE.sub(_sub, text), converted


def append_styles_if_missing(text: str, output_format: OutputFormat) -> str:
    """Add the math class rules before </head> once.

    Skipped when both the inline and block class names already appear, and a
    no-op for documents without a </head>.
    """
    prefix = _class_prefix(output_format)
    if f"{prefix}-inline" in text and f"{prefix}-block" in text:
        return text
    if "</head>" not in text:
        return text
    return text.replace("</head>", f"{style_block(output_format)}</head>", 1)


def _sniff_encoding(raw: bytes) -> tuple[str, bytes]:
    """Return (encoding, bom) for a document's raw bytes."""
    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            return encoding, bom
    if raw.startswith(b"<\x00?\x00"):
        return "utf-16-le", b""
    if raw.startswith(b"\x00<\x00?"):
        return "utf-16-be", b""
    m = _XML_ENCODING_RE.match(raw)
    if m:
        declared = m.group(1).decode("ascii").lower()
        # An ASCII-readable declaration cannot be UTF-16/32 bytes.
        if not declared.startswith(("utf-16", "utf-32")):
            return declared, b""
    return "utf-8", b""


def _read_document(path: Path) -> Optional[DecodedDocument]:
    raw = path.read_bytes()
    encoding, bom = _sniff_encoding(raw)
    body = raw[len(bom):]
    for candidate in dict.fromkeys((encoding, "utf-8")):
        try:
            return DecodedDocument(text=body.decode(candidate), encoding=candidate, bom=bom)
        except (UnicodeDecodeError, LookupError):
            continue
    return None


def _write_document(path: Path, document: DecodedDocument, text: str) -> None:
    path.write_bytes(document.bom + text.encode(document.encoding, errors="xmlcharrefreplace"))


def convert_math_in_file(path: Path, output_format: OutputFormat, renderers: Renderers) -> ConversionResult:
    """Convert all math in one XHTML document in place.

    The file is written at most once, and only if at least one node converted;
    documents without math (or where every node failed, or that cannot be
    decoded) are left byte-identical. A rewrite keeps the original encoding
    and byte order mark.
    """
    path = Path(path)
    document = _read_document(path)
    if document is None:
        log.warning("%s: cannot decode document, leaving it unchanged", path.name)
        return ConversionResult(changed=False, count=0)
    if not contains_math(document.text):
        return ConversionResult(changed=False, count=0)

    replaced, count = convert_math_text(document.text, output_format, renderers, source=path.name)
    if count == 0:
        return ConversionResult(changed=False, count=0)

    _write_document(path, document, append_styles_if_missing(replaced, output_format))
    log.debug("%s: converted %s math node(s) (%s)", path.name, count, document.encoding)
    return ConversionResult(changed=True, count=count)
