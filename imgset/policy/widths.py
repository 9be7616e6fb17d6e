"""Output width resolution."""

from __future__ import annotations

import math
from typing import Any, Sequence


def _parse_width(value: Any, native_width: int) -> int | None:
    if not value or value == "auto":
        return native_width
    try:
        width = int(value)
    except (TypeError, ValueError):
        return None
    return width if width > 0 else None


def resolve_widths(
    native_width: int,
    widths: Sequence[Any] | str | None = None,
    allow_upscale: bool = False,
    minimum_threshold: float = 1,
) -> list[int]:
    """Return the ascending, duplicate-free list of output widths.

    Without upscaling, a width above *native_width* collapses to
    *native_width* only when the previous width leaves enough room for a
    distinct extra output (``native >= floor(previous * minimum_threshold)``);
    otherwise it is dropped. An empty result falls back to ``[native_width]``.
    """
    if isinstance(widths, str):
        widths = [part.strip() for part in widths.split(",")]
    parsed = [_parse_width(value, native_width) for value in (widths or [])]
    valid = sorted(width for width in parsed if width is not None)

    if not allow_upscale:
        capped: list[int] = []
        last_width_was_big_enough = True
        for width in valid:
            if width > native_width:
                if last_width_was_big_enough:
                    capped.append(native_width)
                continue
            last_width_was_big_enough = native_width >= math.floor(width * minimum_threshold)
            capped.append(width)
        valid = capped

    result = sorted(set(valid))
    return result or [native_width]
