"""Content-addressed identifiers for derived outputs."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from ..codec.svg import strip_newlines_for_hash
from ..io.models import CODEC_OPTION_FIELDS, ImageOptions, SourceDescriptor


def codec_parameters(options: ImageOptions) -> dict[str, Any]:
    """Return the non-empty codec-parameter option groups, keyed by field name."""
    return {
        name: dict(getattr(options, name))
        for name in CODEC_OPTION_FIELDS
        if getattr(options, name)
    }


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def compute_hash(
    source: SourceDescriptor,
    options: ImageOptions,
    contents: bytes | None = None,
) -> str:
    """Return the truncated, URL-safe sha256 identifier for *source*.

    Local and buffer sources hash their bytes (SVG newlines stripped); remote
    sources hash the URL plus whether the fetch cache is still fresh. Only
    codec parameters are mixed in, so widths, formats and output locations
    never change the hash.
    """
    digest = hashlib.sha256()
    if contents is not None:
        digest.update(strip_newlines_for_hash(contents))
    else:
        digest.update(str(source.src).encode("utf-8"))
        if options.use_cache_validity_in_hash and source.asset_cache is not None:
            valid = source.asset_cache.is_cache_valid(source.cache_duration)
            digest.update(f"ValidCache:{'true' if valid else 'false'}".encode("utf-8"))

    digest.update(canonical_json(codec_parameters(options)).encode("utf-8"))

    encoded = base64.urlsafe_b64encode(digest.digest()).decode("ascii").rstrip("=")
    return encoded[: options.hash_length]
