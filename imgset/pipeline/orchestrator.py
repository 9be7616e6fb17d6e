"""Per-source derivation: input acquisition, planning and materialization."""

from __future__ import annotations

import asyncio
import enum
import hashlib
import json
import logging
import math
import os
from pathlib import Path
from typing import Any, Callable, Mapping

from ..codec.compress import brotli_size
from ..codec.engine import PillowCodec, default_codec
from ..errors import (
    ConfigurationError,
    ImageDerivationError,
    InputError,
    MaterializationError,
    UnsupportedFormatError,
)
from ..fetch.remote import RemoteFetchQueue, fetch_queue as default_fetch_queue
from ..hashing.content_hash import compute_hash
from ..io.models import (
    FullStatsPlan,
    ImageMetadata,
    ImageOptions,
    SourceDescriptor,
    Stat,
    resolve_options,
)
from ..paths.stats import build_stat, group_stats
from ..policy.formats import resolve_formats
from ..policy.widths import resolve_widths

logger = logging.getLogger(__name__)


class DerivationState(enum.Enum):
    CREATED = "created"
    INPUT_ACQUIRED = "input_acquired"
    PLAN_COMPUTED = "plan_computed"
    MATERIALIZING = "materializing"
    DONE = "done"
    FAILED = "failed"


def needs_rotation(orientation: int | None) -> bool:
    """EXIF orientations 5-8 rotate the image by 90 degrees, swapping width and height."""
    return orientation is not None and 5 <= orientation <= 8


def _signature_default(value: Any) -> Any:
    if callable(value):
        module = getattr(value, "__module__", "")
        name = getattr(value, "__qualname__", type(value).__qualname__)
        return f"{module}.{name}"
    if isinstance(value, (bytes, bytearray)):
        return hashlib.sha1(value).hexdigest()
    if isinstance(value, Mapping):
        return dict(value)
    return repr(value)


def _write_output(path: str, data: bytes) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


class ImageDerivation:
    """Derives every output for one source under one set of options.

    Moves through :class:`DerivationState` from ``CREATED`` to ``DONE`` (or
    ``FAILED``). The content hash and the source bytes are computed at most
    once per instance.
    """

    def __init__(
        self,
        src: Any,
        options: ImageOptions | Mapping[str, Any] | None = None,
        *,
        codec: PillowCodec | Any = None,
        fetch_queue: RemoteFetchQueue | None = None,
        size_estimator: Callable[[bytes], int] | None = None,
    ) -> None:
        self.options = resolve_options(options)
        self.source = SourceDescriptor.from_src(src, self.options)
        self.codec = codec if codec is not None else default_codec
        self.fetch_queue = fetch_queue if fetch_queue is not None else default_fetch_queue
        self.size_estimator = size_estimator or brotli_size
        self.state = DerivationState.CREATED
        self._contents: bytes | None = None
        self._hash: str | None = None

    @property
    def src(self) -> Any:
        return self.source.src

    def describe_src(self) -> str:
        if self.source.is_buffer:
            return f"<buffer {len(self.source.src)} bytes>"
        return str(self.source.src)

    # Identity

    def signature(self) -> str:
        """Return the in-memory de-duplication key for this request."""
        data: dict[str, Any] = self.options.as_dict()
        source = self.source
        if source.is_buffer:
            data["__original_src"] = hashlib.sha1(source.src).hexdigest()
            data["__original_size"] = len(source.src)
        else:
            data["__original_src"] = source.src
        if source.is_remote and source.asset_cache is not None:
            data["source_url"] = source.src
            data["__valid_asset_cache"] = source.asset_cache.is_cache_valid(
                source.cache_duration
            )
        elif not source.is_buffer:
            try:
                data["__original_size"] = os.stat(source.src).st_size
            except FileNotFoundError as exc:
                raise InputError(f"Input file not found: {source.src}", source.src) from exc
        return json.dumps(data, sort_keys=True, default=_signature_default)

    def get_file_contents(self) -> bytes | None:
        """Return local or buffer bytes (read once), or ``None`` for remote sources."""
        if self.source.is_remote:
            return None
        if self._contents is None:
            if self.source.is_buffer:
                self._contents = self.source.src  # type: ignore[assignment]
            else:
                logger.debug("Reading from file system: %s", self.source.src)
                try:
                    self._contents = Path(self.source.src).read_bytes()  # type: ignore[arg-type]
                except FileNotFoundError as exc:
                    raise InputError(
                        f"Input file not found: {self.source.src}", self.source.src
                    ) from exc
                except OSError as exc:
                    raise InputError(
                        f"Unable to read {self.source.src}: {exc}", self.source.src
                    ) from exc
        return self._contents

    def get_hash(self) -> str:
        if self._hash is not None:
            logger.debug("Re-using computed hash for %s: %s", self.describe_src(), self._hash)
            return self._hash
        contents: bytes | None = None
        if self.source.is_buffer or (
            not self.source.is_remote and os.path.exists(self.source.src)  # type: ignore[arg-type]
        ):
            contents = self.get_file_contents()
        self._hash = compute_hash(self.source, self.options, contents)
        return self._hash

    # Planning

    def get_stat(self, output_format: str, width: int, height: int) -> Stat:
        return build_stat(output_format, width, height, self.src, self.options, self.get_hash)

    @staticmethod
    def effective_dimensions(metadata: ImageMetadata) -> tuple[int, int]:
        width, height = metadata.width, metadata.height
        if needs_rotation(metadata.orientation):
            width, height = height, width
        if metadata.page_height:
            # animated sources report the frame height separately
            height = metadata.page_height
        return width, height

    def get_full_stats(self, metadata: ImageMetadata) -> FullStatsPlan:
        """Return the planned stats for *metadata*, grouped by format."""
        options = self.options
        native_format = metadata.format or options.override_input_format
        output_formats = resolve_formats(options.formats, native_format, options.svg_short_circuit)
        width, height = self.effective_dimensions(metadata)

        results: list[Stat] = []
        for output_format in output_formats:
            if not output_format or output_format == "auto":
                raise UnsupportedFormatError(
                    "`formats: [None | 'auto']` needs a known native format; it is not "
                    "supported when only dimensions are supplied."
                )
            if output_format == "svg":
                if native_format != "svg":
                    logger.debug("Skipping SVG output for %s: received raster input.", self.describe_src())
                    continue
                svg_stat = self.get_stat("svg", width, height)
                if metadata.size:
                    svg_stat = svg_stat.materialized(metadata.size)
                results.append(svg_stat)
                if options.svg_short_circuit is True:
                    break
                continue

            allow_upscale = metadata.format == "svg" and options.svg_allow_upscale
            widths = resolve_widths(width, options.widths, allow_upscale, options.minimum_threshold)
            for output_width in widths:
                # guessed dimensions with the wrong aspect ratio give wrong heights here
                output_height = math.floor(output_width * height / width)
                results.append(self.get_stat(output_format, output_width, output_height))

        self.state = DerivationState.PLAN_COMPUTED
        return group_stats(results, output_formats, options.svg_short_circuit)

    def stats_only_plan(self) -> FullStatsPlan:
        """Plan without decoding pixels: caller metadata for URLs, a header probe otherwise."""
        if self.source.is_remote:
            remote = self.options.remote_image_metadata or {}
            if not remote.get("width") or not remote.get("height"):
                raise ConfigurationError(
                    "When using `stats_only` with remote images, you must supply "
                    "`remote_image_metadata` with { width, height, format? }"
                )
            metadata = ImageMetadata(
                width=int(remote["width"]),
                height=int(remote["height"]),
                format=remote.get("format"),
            )
        else:
            metadata = self.probe_dimensions()
        return self.get_full_stats(metadata)

    def probe_dimensions(self) -> ImageMetadata:
        try:
            return self.codec.probe_dimensions(self.source.src)
        except FileNotFoundError as exc:
            raise InputError(f"Input file not found: {self.source.src}", self.source.src) from exc
        except ImageDerivationError:
            raise
        except Exception as exc:  # noqa: BLE001 - codec errors vary by format plugin
            raise MaterializationError(
                f"Unable to read image dimensions from {self.describe_src()}: {exc}"
            ) from exc

    # Execution

    async def acquire_input(self) -> bytes:
        """Return the source bytes, fetching remote URLs through the shared fetch queue."""
        if self.source.is_remote and self.source.asset_cache is not None:
            try:
                data = await self.fetch_queue.fetch(self.source.asset_cache)
            except ImageDerivationError:
                raise
            except OSError as exc:
                raise InputError(f"Unable to cache {self.source.src}: {exc}", self.source.src) from exc
        else:
            data = await asyncio.to_thread(self.get_file_contents)
        self.state = DerivationState.INPUT_ACQUIRED
        return data  # type: ignore[return-value]

    async def materialize(self, data: bytes) -> FullStatsPlan:
        """Probe *data*, plan its outputs and produce every one not already on disk."""
        try:
            handle = self.codec.open(data, self.options.pillow_options)
            metadata = await asyncio.to_thread(handle.probe)
        except ImageDerivationError:
            raise
        except Exception as exc:  # noqa: BLE001 - codec errors vary by format plugin
            raise MaterializationError(
                f"Unable to read image metadata from {self.describe_src()}: {exc}"
            ) from exc

        full_stats = self.get_full_stats(metadata)
        self.state = DerivationState.MATERIALIZING
        jobs = [
            self._materialize_stat(output_format, stat, handle, metadata)
            for output_format, stats in full_stats.items()
            for stat in stats
        ]
        files = await asyncio.gather(*jobs)
        self.state = DerivationState.DONE
        return group_stats(
            [stat for stat in files if stat is not None],
            list(full_stats),
            self.options.svg_short_circuit,
        )

    async def run(self) -> FullStatsPlan:
        """Execute the whole derivation and return the grouped stats."""
        try:
            if self.options.stats_only:
                plan = await asyncio.to_thread(self.stats_only_plan)
                self.state = DerivationState.DONE
                return plan
            data = await self.acquire_input()
            return await self.materialize(data)
        except Exception:
            self.state = DerivationState.FAILED
            raise

    def _reuse_existing(self, output_format: str, stat: Stat) -> Stat:
        options = self.options
        path = Path(stat.output_path)  # type: ignore[arg-type]
        contents = path.read_bytes() if options.dry_run else None
        if output_format == "svg" and options.svg_compression_size == "br":
            if contents is None:
                contents = path.read_bytes()
            size = self.size_estimator(contents)
        else:
            size = path.stat().st_size
        logger.debug("Re-using existing output %s", stat.output_path)
        return stat.materialized(size, buffer=contents if options.dry_run else None)

    async def _materialize_stat(
        self,
        output_format: str,
        stat: Stat,
        handle: Any,
        metadata: ImageMetadata,
    ) -> Stat | None:
        options = self.options
        try:
            if options.use_cache and stat.output_path and os.path.exists(stat.output_path):
                return await asyncio.to_thread(self._reuse_existing, output_format, stat)

            instance = handle.clone()
            if options.fix_orientation or needs_rotation(metadata.orientation):
                instance = instance.rotate()
            native_width, _ = self.effective_dimensions(metadata)
            svg_upscale = options.svg_allow_upscale and metadata.format == "svg"
            if stat.width < native_width or svg_upscale:
                instance = instance.resize(stat.width, allow_enlarge=svg_upscale)
            if options.transform_hook is not None:
                instance = options.transform_hook(instance)

            format_hook = options.format_hooks.get(output_format)
            if format_hook is not None:
                output = await asyncio.to_thread(format_hook, stat, instance)
                if not output:
                    return None
                output = bytes(output)
                if options.svg_compression_size == "br":
                    size = self.size_estimator(output)
                else:
                    size = len(output)
            else:
                encoded = await asyncio.to_thread(
                    instance.encode, output_format, options.codec_options_for(output_format)
                )
                output, size = encoded.data, encoded.size

            if options.dry_run or not stat.output_path:
                return stat.materialized(size, buffer=output)
            await asyncio.to_thread(_write_output, stat.output_path, output)
            logger.debug("Wrote %s", stat.output_path)
            return stat.materialized(size)
        except ImageDerivationError:
            raise
        except Exception as exc:  # noqa: BLE001 - codec and disk failures share one error type
            target = stat.output_path or stat.url
            raise MaterializationError(
                f"Failed to produce {target}: {exc}", stat.output_path
            ) from exc


def stats_sync(
    src: Any,
    options: ImageOptions | Mapping[str, Any] | None = None,
    *,
    codec: PillowCodec | Any = None,
    **overrides: Any,
) -> FullStatsPlan:
    """Return the planned stats for a local or buffer source without writing anything."""
    derivation = ImageDerivation(src, resolve_options(options, **overrides), codec=codec)
    if derivation.source.is_remote:
        raise ConfigurationError(
            "`stats_sync` is not supported with remote sources. "
            "Use `stats_by_dimensions_sync` instead."
        )
    return derivation.get_full_stats(derivation.probe_dimensions())


def stats_by_dimensions_sync(
    src: Any,
    width: int,
    height: int,
    options: ImageOptions | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> FullStatsPlan:
    """Return the planned stats for caller-supplied dimensions."""
    derivation = ImageDerivation(src, resolve_options(options, **overrides))
    return derivation.get_full_stats(ImageMetadata(width=int(width), height=int(height)))
