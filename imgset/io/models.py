"""Data models shared across the image derivation pipeline."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence
from urllib.parse import urlparse

from ..codec.svg import svg_format_hook
from ..errors import ConfigurationError
from ..fetch.remote import RemoteAssetCache

FilenameFormat = Callable[[str, Any, "int | None", str, "ImageOptions"], "str | None"]
UrlFormat = Callable[["UrlFormatContext", "ImageOptions"], str]

# Option fields that change encoded pixels; everything else is excluded from the hash.
CODEC_OPTION_FIELDS = (
    "pillow_avif_options",
    "pillow_jpeg_options",
    "pillow_options",
    "pillow_png_options",
    "pillow_webp_options",
)


def _default_format_hooks() -> Dict[str, Callable[..., Any]]:
    return {"svg": svg_format_hook}


@dataclass(slots=True)
class ImageOptions:
    """Per-call configuration, merged over the defaults by :func:`resolve_options`."""

    widths: Sequence[Any] | str | None = (None,)
    formats: Sequence[Any] | str | None = ("webp", "jpeg")
    concurrency: int = 10
    url_path: str = "/img/"
    output_dir: str = "img/"
    # True skips raster formats for SVG input, "size" drops rasters larger than the SVG
    svg_short_circuit: bool | str = False
    svg_allow_upscale: bool = True
    svg_compression_size: str = ""
    minimum_threshold: float = 1.25
    use_cache: bool = True
    dry_run: bool = False
    stats_only: bool = False
    remote_image_metadata: Mapping[str, Any] = field(default_factory=dict)
    hash_length: int = 10
    fix_orientation: bool = False
    use_cache_validity_in_hash: bool = True
    pillow_options: Mapping[str, Any] = field(default_factory=dict)
    pillow_webp_options: Mapping[str, Any] = field(default_factory=dict)
    pillow_jpeg_options: Mapping[str, Any] = field(default_factory=dict)
    pillow_png_options: Mapping[str, Any] = field(default_factory=dict)
    pillow_avif_options: Mapping[str, Any] = field(default_factory=dict)
    extensions: Mapping[str, str] = field(default_factory=dict)
    format_hooks: Mapping[str, Callable[..., Any]] = field(
        default_factory=_default_format_hooks
    )
    transform_hook: Callable[[Any], Any] | None = None
    filename_format: FilenameFormat | None = None
    url_format: UrlFormat | None = None
    cache_duration: str = "1d"
    cache_options: Mapping[str, Any] = field(default_factory=dict)
    override_input_format: str | None = None

    def codec_options_for(self, output_format: str) -> Mapping[str, Any]:
        """Return the encoder keyword arguments configured for *output_format*."""
        return {
            "webp": self.pillow_webp_options,
            "jpeg": self.pillow_jpeg_options,
            "png": self.pillow_png_options,
            "avif": self.pillow_avif_options,
        }.get(output_format, {})

    def as_dict(self) -> dict[str, Any]:
        """Return a shallow field mapping (callables are kept as-is)."""
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


_OPTION_NAMES = frozenset(f.name for f in dataclasses.fields(ImageOptions))


def resolve_options(
    options: ImageOptions | Mapping[str, Any] | None = None, **overrides: Any
) -> ImageOptions:
    """Merge *options* and keyword *overrides* over the documented defaults."""
    if isinstance(options, ImageOptions):
        merged: dict[str, Any] = options.as_dict()
    else:
        merged = dict(options or {})
    merged.update(overrides)

    unknown = sorted(set(merged) - _OPTION_NAMES)
    if unknown:
        raise ConfigurationError(f"Unknown option(s): {', '.join(unknown)}")

    resolved = ImageOptions(**merged)
    if resolved.minimum_threshold < 1:
        raise ConfigurationError("minimum_threshold must be >= 1")
    if resolved.hash_length <= 0:
        raise ConfigurationError("hash_length must be a positive integer")
    if resolved.svg_short_circuit not in (False, True, "size"):
        raise ConfigurationError(
            f"svg_short_circuit must be False, True or 'size', got {resolved.svg_short_circuit!r}"
        )
    return resolved


def is_remote_url(value: Any) -> bool:
    """Return ``True`` when *value* is an ``http(s)`` URL string."""
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    """Identity of a derivation input: a local path, a remote URL, or a buffer."""

    src: str | bytes
    kind: str
    asset_cache: RemoteAssetCache | None = field(default=None, compare=False)

    @classmethod
    def from_src(cls, src: Any, options: ImageOptions) -> "SourceDescriptor":
        if src is None or (isinstance(src, (str, bytes, bytearray)) and not src):
            raise ConfigurationError(
                "`src` is required (a file path, an http(s) URL, or a bytes buffer)."
            )
        if isinstance(src, (bytes, bytearray, memoryview)):
            return cls(src=bytes(src), kind="buffer")
        if isinstance(src, Path):
            return cls(src=str(src), kind="path")
        if not isinstance(src, str):
            raise ConfigurationError(f"Unsupported `src` type: {type(src).__name__}")
        if is_remote_url(src):
            cache_options = {
                "duration": options.cache_duration,
                "dry_run": options.dry_run,
                **dict(options.cache_options),
            }
            return cls(src=src, kind="url", asset_cache=RemoteAssetCache(src, **cache_options))
        return cls(src=src, kind="path")

    @property
    def is_remote(self) -> bool:
        return self.kind == "url"

    @property
    def is_buffer(self) -> bool:
        return self.kind == "buffer"

    @property
    def cache_duration(self) -> str | None:
        return self.asset_cache.duration if self.asset_cache is not None else None


@dataclass(frozen=True, slots=True)
class ImageMetadata:
    """Result of a codec probe, before policy resolution."""

    width: int
    height: int
    format: str | None = None
    orientation: int | None = None
    page_height: int | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class UrlFormatContext:
    """Arguments handed to a custom ``url_format`` function."""

    src: Any
    width: int | None
    format: str
    hash: str | None = None


@dataclass(frozen=True, slots=True)
class EncodedImage:
    """Encoded output bytes and their length."""

    data: bytes
    size: int


@dataclass(frozen=True, slots=True)
class Stat:
    """Metadata for one output artifact.

    A planned stat has ``size`` unset. :meth:`materialized` returns a new
    instance once the artifact exists on disk or in memory.
    """

    format: str
    width: int
    height: int
    url: str
    source_type: str | None
    srcset: str
    size: int | None = None
    filename: str | None = None
    output_path: str | None = None
    buffer: bytes | None = field(default=None, repr=False)

    @property
    def is_materialized(self) -> bool:
        return self.size is not None

    def materialized(self, size: int, buffer: bytes | None = None) -> "Stat":
        return dataclasses.replace(self, size=size, buffer=buffer)

    def to_dict(self, include_buffer: bool = False) -> dict[str, Any]:
        """Return the public metadata record with ``None`` fields omitted."""
        record: dict[str, Any] = {
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "url": self.url,
            "sourceType": self.source_type,
            "srcset": self.srcset,
            "size": self.size,
            "filename": self.filename,
            "outputPath": self.output_path,
        }
        if include_buffer:
            record["buffer"] = self.buffer
        return {key: value for key, value in record.items() if value is not None}


FullStatsPlan = Dict[str, list[Stat]]
