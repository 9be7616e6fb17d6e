"""Pillow-backed codec engine: probing, transforms and encoding."""

from __future__ import annotations

import math
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Mapping

from PIL import Image, ImageOps

from ..errors import MaterializationError
from ..io.models import EncodedImage, ImageMetadata
from .svg import looks_like_svg, sniff_svg_dimensions

try:  # pragma: no cover - optional dependency
    import cairosvg  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    cairosvg = None  # type: ignore[assignment]

_EXIF_ORIENTATION_TAG = 0x0112

_PILLOW_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "gif": "GIF",
    "tiff": "TIFF",
}

_NATIVE_ALIASES = {"mpo": "jpeg", "jpg": "jpeg"}

# Modes the JPEG encoder accepts without conversion.
_JPEG_MODES = {"RGB", "L", "CMYK"}


def _normalize_native_format(pillow_format: str | None) -> str | None:
    if not pillow_format:
        return None
    lowered = pillow_format.lower()
    return _NATIVE_ALIASES.get(lowered, lowered)


def _resample_filter(options: Mapping[str, Any]) -> Image.Resampling:
    name = str(options.get("resample", "LANCZOS")).upper()
    return Image.Resampling[name]


@dataclass(frozen=True)
class ImageHandle:
    """An immutable decode-transform-encode recipe for one source image.

    Transform methods return a new handle; the operation tuple is never
    shared mutably, so clones can diverge freely.
    """

    source: bytes
    options: Mapping[str, Any]
    operations: tuple[tuple[Any, ...], ...] = ()

    @property
    def is_svg(self) -> bool:
        return looks_like_svg(self.source)

    def clone(self) -> "ImageHandle":
        return ImageHandle(self.source, self.options, self.operations)

    def resize(self, width: int, allow_enlarge: bool = False) -> "ImageHandle":
        return ImageHandle(
            self.source, self.options, self.operations + (("resize", int(width), allow_enlarge),)
        )

    def rotate(self, angle: float | None = None) -> "ImageHandle":
        return ImageHandle(self.source, self.options, self.operations + (("rotate", angle),))

    def probe(self) -> ImageMetadata:
        """Return dimensions, native format and orientation of the source."""
        if self.is_svg:
            dimensions = sniff_svg_dimensions(self.source)
            if dimensions is None:
                raise ValueError("Unable to determine SVG dimensions")
            width, height = dimensions
            return ImageMetadata(width=width, height=height, format="svg", size=len(self.source))

        with Image.open(BytesIO(self.source), formats=self.options.get("formats")) as image:
            return _metadata_from_image(image)

    def encode(self, output_format: str, format_options: Mapping[str, Any]) -> EncodedImage:
        """Decode, apply the recorded operations and encode to *output_format*."""
        pillow_format = _PILLOW_FORMATS.get(output_format)
        if pillow_format is None:
            raise ValueError(f"Unsupported output format: {output_format}")

        image = self._decode()
        try:
            for operation in self.operations:
                image = self._apply(image, operation)
            if pillow_format == "JPEG" and image.mode not in _JPEG_MODES:
                image = image.convert("RGB")
            buffer = BytesIO()
            image.save(buffer, format=pillow_format, **dict(format_options))
        finally:
            image.close()
        data = buffer.getvalue()
        return EncodedImage(data=data, size=len(data))

    def _decode(self) -> Image.Image:
        if not self.is_svg:
            image = Image.open(BytesIO(self.source), formats=self.options.get("formats"))
            image.load()
            return image
        if cairosvg is None:
            raise MaterializationError("Rasterizing SVG input requires the cairosvg package")
        render_width, render_height = self._svg_render_size()
        png = cairosvg.svg2png(  # type: ignore[attr-defined]
            bytestring=self.source, output_width=render_width, output_height=render_height
        )
        image = Image.open(BytesIO(png))
        image.load()
        return image

    def _svg_render_size(self) -> tuple[int | None, int | None]:
        # Vector input is rendered straight at the requested width instead of being resampled.
        dimensions = sniff_svg_dimensions(self.source)
        for operation in self.operations:
            if operation[0] != "resize":
                continue
            _, width, allow_enlarge = operation
            if dimensions is None:
                return width, None
            if allow_enlarge or width < dimensions[0]:
                return width, _scaled_height(width, *dimensions)
        return None, None

    def _apply(self, image: Image.Image, operation: tuple[Any, ...]) -> Image.Image:
        kind = operation[0]
        if kind == "rotate":
            angle = operation[1]
            if angle is None:
                result = ImageOps.exif_transpose(image)
            else:
                result = image.rotate(-float(angle), expand=True)
        elif kind == "resize":
            _, width, allow_enlarge = operation
            if width == image.width or (width > image.width and not allow_enlarge):
                return image
            height = _scaled_height(width, image.width, image.height)
            result = image.resize((width, height), _resample_filter(self.options))
        else:
            raise ValueError(f"Unknown image operation: {kind}")
        if result is not image:
            image.close()
        return result


def _scaled_height(width: int, source_width: int, source_height: int) -> int:
    # Same rounding as the planned stat height.
    return max(1, math.floor(width * source_height / source_width))


def _metadata_from_image(image: Image.Image) -> ImageMetadata:
    width, height = image.size
    orientation = image.getexif().get(_EXIF_ORIENTATION_TAG)
    frames = getattr(image, "n_frames", 1)
    return ImageMetadata(
        width=width,
        height=height,
        format=_normalize_native_format(image.format),
        orientation=int(orientation) if orientation else None,
        page_height=height if frames > 1 else None,
    )


class PillowCodec:
    """Codec engine producing :class:`ImageHandle` instances."""

    def open(self, data: bytes, options: Mapping[str, Any] | None = None) -> ImageHandle:
        return ImageHandle(bytes(data), dict(options or {}))

    def probe_dimensions(self, src: str | bytes) -> ImageMetadata:
        """Read only the header of *src* (a path or a buffer) to get its dimensions."""
        if isinstance(src, (bytes, bytearray)):
            return ImageHandle(bytes(src), {}).probe()

        path = Path(src)
        with path.open("rb") as handle:
            head = handle.read(1024)
        if looks_like_svg(head):
            data = path.read_bytes()
            dimensions = sniff_svg_dimensions(data)
            if dimensions is None:
                raise ValueError(f"Unable to determine SVG dimensions for {path}")
            return ImageMetadata(width=dimensions[0], height=dimensions[1], format="svg", size=len(data))

        with Image.open(path) as image:
            return _metadata_from_image(image)


default_codec = PillowCodec()
