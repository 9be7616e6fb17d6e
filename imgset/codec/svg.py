"""SVG detection, metadata sniffing and the built-in SVG format hook."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from ..io.models import Stat

_DIMENSION_PATTERN = re.compile(r"([0-9]*\.?[0-9]+)")

# Optional BOM, XML declaration, comments and DOCTYPE ahead of the root element.
_SVG_PROLOG = re.compile(
    rb"\A(?:\xef\xbb\xbf)?\s*(?:<\?xml[^>]*\?>\s*)?"
    rb"(?:(?:<!--.*?-->|<!DOCTYPE[^>\[]*(?:\[.*?\])?\s*>)\s*)*"
    rb"<svg[\s>/]",
    re.IGNORECASE | re.DOTALL,
)


def looks_like_svg(image_bytes: bytes) -> bool:
    """Return ``True`` when the root element within the first 1024 bytes is ``<svg>``."""
    return _SVG_PROLOG.match(image_bytes[:1024]) is not None


def strip_newlines_for_hash(image_bytes: bytes) -> bytes:
    """Drop CR/LF from SVG markup so hashes agree across platforms.

    Only markup opening with ``<svg `` or ``<?xml`` is normalized, which keeps
    hashes stable for files named by earlier releases.
    """
    head = image_bytes.decode("utf-8-sig", errors="ignore").strip()[:5]
    if head in {"<svg ", "<?xml"}:
        return image_bytes.replace(b"\r", b"").replace(b"\n", b"")
    return image_bytes


def sniff_svg_dimensions(image_bytes: bytes) -> tuple[int, int] | None:
    """Return ``(width, height)`` from the root ``<svg>`` element, if parseable.

    Explicit ``width``/``height`` attributes win; ``viewBox`` fills the gaps.
    """
    if not looks_like_svg(image_bytes):
        return None
    try:
        root = ET.fromstring(image_bytes.decode("utf-8-sig", errors="ignore"))
    except ET.ParseError:
        return None
    if not root.tag.lower().endswith("svg"):
        return None
    width = _extract_svg_dimension(root.get("width"))
    height = _extract_svg_dimension(root.get("height"))
    view_box = root.get("viewBox")
    if (width is None or height is None) and view_box:
        parts = re.split(r"[\s,]+", view_box.strip())
        if len(parts) == 4:
            width = width if width is not None else _to_float(parts[2])
            height = height if height is not None else _to_float(parts[3])
    if not width or not height:
        return None
    return int(round(width)), int(round(height))


def svg_format_hook(stat: "Stat", handle: Any) -> bytes:
    """Re-serialize SVG output: the vector source is written through untouched."""
    return handle.source


def _extract_svg_dimension(value: str | None) -> float | None:
    if not value or value.strip().endswith("%"):
        return None
    match = _DIMENSION_PATTERN.search(value)
    if not match:
        return None
    return float(match.group(1))


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
