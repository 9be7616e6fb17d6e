"""Output naming and stat assembly."""

from __future__ import annotations

import logging
import os
import posixpath
from typing import Any, Callable, Iterable, Sequence

from ..io.models import FullStatsPlan, ImageOptions, Stat, UrlFormatContext
from ..policy.formats import mime_type

logger = logging.getLogger(__name__)


def default_filename(hash_id: str, src: Any, width: int | None, fmt: str) -> str:
    if width:
        return f"{hash_id}-{width}.{fmt}"
    return f"{hash_id}.{fmt}"


def get_filename(
    hash_id: str, src: Any, width: int | None, fmt: str, options: ImageOptions
) -> str:
    """Return the output filename, preferring a truthy custom ``filename_format``."""
    if options.filename_format is not None:
        filename = options.filename_format(hash_id, src, width, fmt, options)
        if filename:
            return filename
    return default_filename(hash_id, src, width, fmt)


def file_path_to_url(directory: str, filename: str) -> str:
    """Join *directory* and *filename* into a forward-slash URL path."""
    joined = os.path.join(directory, filename).replace(os.sep, "/")
    return posixpath.normpath(joined)


def build_stat(
    output_format: str,
    width: int,
    height: int,
    src: Any,
    options: ImageOptions,
    get_hash: Callable[[], str],
) -> Stat:
    """Return the planned :class:`Stat` for one (format, width, height) triple."""
    extension = options.extensions.get(output_format, output_format)
    filename: str | None = None
    output_path: str | None = None

    if options.url_format is not None:
        context = UrlFormatContext(
            src=src,
            width=width,
            format=extension,
            # stats-only runs never produce a disk artifact to identify
            hash=None if options.stats_only else get_hash(),
        )
        url = options.url_format(context, options)
    else:
        filename = get_filename(get_hash(), src, width, extension, options)
        url = file_path_to_url(options.url_path, filename)
        output_path = os.path.join(options.output_dir, filename)

    return Stat(
        format=output_format,
        width=width,
        height=height,
        url=url,
        source_type=mime_type(output_format),
        srcset=f"{url} {width}w",
        filename=filename,
        output_path=output_path,
    )


def group_stats(
    stats: Iterable[Stat],
    formats: Sequence[str | None],
    svg_short_circuit: bool | str = False,
) -> FullStatsPlan:
    """Group *stats* by format, each group ascending by width.

    Under ``svg_short_circuit="size"`` raster entries larger than the SVG
    entry are dropped; the first one is swapped for the SVG entry when a
    smaller raster was already kept, so a group never holds both.
    """
    by_format: FullStatsPlan = {}
    for fmt in formats:
        if fmt and fmt != "auto":
            by_format[fmt] = []
    for stat in stats:
        by_format.setdefault(stat.format, []).append(stat)
    for fmt in by_format:
        by_format[fmt].sort(key=lambda stat: stat.width)

    svg_entries = by_format.get("svg") or []
    svg_size = svg_entries[0].size if svg_entries else None
    if svg_short_circuit != "size" or not svg_size:
        return by_format

    svg_entry = svg_entries[0]
    for fmt, entries in by_format.items():
        if fmt == "svg":
            continue
        kept: list[Stat] = []
        svg_added = False
        original_format_kept = False
        for entry in entries:
            if entry.size is not None and entry.size > svg_size:
                if not svg_added:
                    svg_added = True
                    if original_format_kept:
                        kept.append(svg_entry)
                logger.debug(
                    "Dropping %s output at %spx: %s bytes > svg %s bytes",
                    fmt,
                    entry.width,
                    entry.size,
                    svg_size,
                )
                continue
            original_format_kept = True
            kept.append(entry)
        by_format[fmt] = kept
    return by_format
