"""Output format resolution."""

from __future__ import annotations

from typing import Any, Sequence

MIME_TYPES: dict[str, str] = {
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "png": "image/png",
    "svg": "image/svg+xml",
    "avif": "image/avif",
    "gif": "image/gif",
}

FORMAT_ALIASES: dict[str, str] = {
    "jpg": "jpeg",
    # mime-type style input
    "svg+xml": "svg",
}


def resolve_formats(
    formats: Sequence[Any] | str | None,
    native_format: str | None,
    svg_short_circuit: bool | str = False,
) -> list[str | None]:
    """Return the ordered, de-duplicated list of output formats.

    ``None``/``"auto"`` entries become *native_format* (when known). Unless
    *svg_short_circuit* is ``"size"``, ``svg`` is moved to the front so vector
    output can short-circuit raster work.
    """
    if not formats:
        return []
    if isinstance(formats, str):
        formats = [part.strip() for part in formats.split(",")]

    resolved: list[str | None] = []
    for fmt in formats:
        if native_format and (not fmt or fmt == "auto"):
            fmt = native_format
        resolved.append(FORMAT_ALIASES.get(fmt, fmt) if fmt else fmt)

    if svg_short_circuit != "size":
        resolved.sort(key=lambda fmt: 0 if fmt == "svg" else 1)

    unique: list[str | None] = []
    for fmt in resolved:
        if fmt not in unique:
            unique.append(fmt)
    return unique


def mime_type(fmt: str) -> str | None:
    """Return the MIME type for *fmt*, or ``None`` for unknown formats."""
    return MIME_TYPES.get(fmt)
