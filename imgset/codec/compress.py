"""Compressed-size estimation used for SVG size reporting."""

from __future__ import annotations

import brotli


def brotli_size(data: bytes) -> int:
    """Return the length of *data* after Brotli compression."""
    return len(brotli.compress(bytes(data)))
