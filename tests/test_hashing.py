"""Tests for content hashing."""

import re

import pytest

import imgset
from imgset.hashing import content_hash
from imgset.hashing.content_hash import codec_parameters, compute_hash
from imgset.io.models import SourceDescriptor, resolve_options
from imgset.pipeline.orchestrator import ImageDerivation

_URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


def _hash(src, **options):
    resolved = resolve_options(**options)
    source = SourceDescriptor.from_src(src, resolved)
    contents = source.src if source.is_buffer else None
    return compute_hash(source, resolved, contents)


class TestComputeHash:
    """Tests for compute_hash."""

    def test_default_length_and_alphabet(self):
        value = _hash(b"image-bytes")
        assert len(value) == 10
        assert _URL_SAFE.match(value)

    def test_hash_length_truncates(self):
        assert len(_hash(b"image-bytes", hash_length=4)) == 4

    def test_deterministic(self):
        assert _hash(b"abc") == _hash(b"abc")

    def test_insensitive_to_layout_options(self):
        base = _hash(b"abc")
        assert base == _hash(
            b"abc",
            widths=[100, 200],
            formats=["avif"],
            output_dir="elsewhere/",
            url_path="/cdn/",
        )

    def test_sensitive_to_encoder_parameters(self):
        assert _hash(b"abc") != _hash(b"abc", pillow_webp_options={"quality": 50})
        assert _hash(b"abc", pillow_jpeg_options={"quality": 80}) != _hash(
            b"abc", pillow_jpeg_options={"quality": 81}
        )

    def test_parameter_key_order_does_not_matter(self):
        assert _hash(b"abc", pillow_png_options={"optimize": True, "compress_level": 9}) == _hash(
            b"abc", pillow_png_options={"compress_level": 9, "optimize": True}
        )

    def test_svg_newlines_are_ignored(self):
        unix = b'<svg width="1" height="1">\n<rect/>\n</svg>'
        windows = b'<svg width="1" height="1">\r\n<rect/>\r\n</svg>'
        assert _hash(unix) == _hash(windows)

    def test_raster_newlines_are_significant(self):
        assert _hash(b"\x89PNG\n\x00") != _hash(b"\x89PNG\r\n\x00")

    def test_remote_hash_uses_url_and_cache_validity(self, tmp_path):
        first = _hash("https://example.com/a.jpg", cache_options={"directory": str(tmp_path)})
        second = _hash("https://example.com/b.jpg", cache_options={"directory": str(tmp_path)})
        assert first != second

    def test_codec_parameters_skip_empty_groups(self):
        options = resolve_options(pillow_webp_options={"quality": 70})
        assert codec_parameters(options) == {"pillow_webp_options": {"quality": 70}}


class TestHashMemoization:
    """Tests for hash reuse within one derivation."""

    def test_hash_computed_once(self, jpeg_path, monkeypatch):
        calls = []
        original = content_hash.compute_hash

        def counting(*args, **kwargs):
            calls.append(args)
            return original(*args, **kwargs)

        monkeypatch.setattr("imgset.pipeline.orchestrator.compute_hash", counting)
        derivation = ImageDerivation(str(jpeg_path), {"widths": [100, 200, 300]})
        plan = derivation.get_full_stats(derivation.probe_dimensions())

        assert sum(len(stats) for stats in plan.values()) == 6
        assert len(calls) == 1

    def test_path_and_buffer_hash_identically(self, jpeg_path):
        assert imgset.get_hash(str(jpeg_path)) == imgset.get_hash(jpeg_path.read_bytes())

    def test_missing_path_hashes_its_name(self):
        assert imgset.get_hash("does/not/exist.jpg") == imgset.get_hash("does/not/exist.jpg")
        assert imgset.get_hash("does/not/exist.jpg") != imgset.get_hash("does/not/other.jpg")

    @pytest.mark.parametrize("hash_length", [6, 16])
    def test_get_hash_respects_length(self, jpeg_path, hash_length):
        assert len(imgset.get_hash(str(jpeg_path), hash_length=hash_length)) == hash_length
