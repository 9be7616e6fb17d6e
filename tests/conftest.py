from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
from PIL import Image

from imgset.io.models import EncodedImage, ImageMetadata

SVG_SOURCE = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="100" viewBox="0 0 200 100">\n'
    '  <rect width="200" height="100" fill="#3366cc"/>\n'
    "</svg>\n"
)


class FakeHandle:
    """Records transforms and returns deterministic bytes on encode."""

    def __init__(self, codec: "FakeCodec", source: bytes, operations: tuple = ()) -> None:
        self.codec = codec
        self.source = source
        self.operations = operations

    def probe(self) -> ImageMetadata:
        self.codec.probe_calls += 1
        return self.codec.metadata

    def clone(self) -> "FakeHandle":
        return FakeHandle(self.codec, self.source, self.operations)

    def resize(self, width: int, allow_enlarge: bool = False) -> "FakeHandle":
        return FakeHandle(self.codec, self.source, self.operations + (("resize", width, allow_enlarge),))

    def rotate(self, angle: float | None = None) -> "FakeHandle":
        return FakeHandle(self.codec, self.source, self.operations + (("rotate", angle),))

    def encode(self, output_format: str, format_options: Any) -> EncodedImage:
        self.codec.encode_calls.append((output_format, self.operations))
        if self.codec.fail:
            raise OSError("encoder exploded")
        width = self.codec.metadata.width
        for operation in self.operations:
            if operation[0] == "resize":
                width = operation[1]
        size = self.codec.size_for(output_format, width)
        data = bytes(size)
        return EncodedImage(data=data, size=size)


class FakeCodec:
    """Stand-in codec engine that counts how often it is used."""

    def __init__(
        self,
        metadata: ImageMetadata,
        size_for: Callable[[str, int], int] | None = None,
        fail: bool = False,
    ) -> None:
        self.metadata = metadata
        self.size_for = size_for or (lambda fmt, width: width)
        self.fail = fail
        self.open_calls = 0
        self.probe_calls = 0
        self.encode_calls: list[tuple[str, tuple]] = []

    def open(self, data: bytes, options: Any = None) -> FakeHandle:
        self.open_calls += 1
        return FakeHandle(self, bytes(data))

    def probe_dimensions(self, src: Any) -> ImageMetadata:
        self.probe_calls += 1
        return self.metadata


@pytest.fixture
def make_fake_codec() -> Callable[..., FakeCodec]:
    return FakeCodec


@pytest.fixture
def jpeg_path(tmp_path: Path) -> Path:
    path = tmp_path / "source" / "photo.jpg"
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (1280, 853), color=(200, 120, 40)).save(path, format="JPEG")
    return path


@pytest.fixture
def rotated_jpeg_path(tmp_path: Path) -> Path:
    path = tmp_path / "source" / "rotated.jpg"
    path.parent.mkdir(parents=True, exist_ok=True)
    exif = Image.Exif()
    exif[0x0112] = 6
    Image.new("RGB", (400, 200), color=(10, 200, 90)).save(path, format="JPEG", exif=exif.tobytes())
    return path


@pytest.fixture
def png_bytes() -> bytes:
    from io import BytesIO

    buffer = BytesIO()
    Image.new("RGBA", (300, 150), color=(0, 0, 255, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def svg_path(tmp_path: Path) -> Path:
    path = tmp_path / "source" / "logo.svg"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SVG_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"
