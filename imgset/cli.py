"""Command-line interface for the imgset project."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable

from tqdm import tqdm

from .errors import ImageDerivationError
from .io.models import FullStatsPlan, ImageOptions, resolve_options
from .io.outputs import write_manifest
from .pipeline.service import DerivationService, default_service

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST = Path("img") / "manifest.json"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the image derivation CLI."""
    parser = argparse.ArgumentParser(
        description="Derive resized and re-encoded image sets for responsive markup."
    )
    parser.add_argument(
        "sources",
        nargs="+",
        help="Local image paths or http(s) URLs.",
    )
    parser.add_argument(
        "--out-dir",
        default="img/",
        help="Directory where derived images are written (default: img/).",
    )
    parser.add_argument(
        "--url-path",
        default="/img/",
        help="URL prefix for derived images (default: /img/).",
    )
    parser.add_argument(
        "--widths",
        default="auto",
        help="Comma separated widths; 'auto' keeps the native width.",
    )
    parser.add_argument(
        "--formats",
        default="webp,jpeg",
        help="Comma separated output formats; 'auto' keeps the native format.",
    )
    parser.add_argument(
        "--svg-short-circuit",
        choices=("true", "size"),
        default=None,
        help="Skip raster outputs for SVG input, or drop those larger than the SVG.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Encode images but do not write them to disk.",
    )
    parser.add_argument(
        "--stats-only",
        action="store_true",
        help="Only compute output metadata; no image is decoded or written.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum number of sources processed at once (default 10).",
    )
    parser.add_argument(
        "--manifest",
        default=None,
        help="Path of the JSON manifest (default: img/manifest.json).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def build_options(args: argparse.Namespace) -> ImageOptions:
    """Translate parsed CLI flags into :class:`ImageOptions`."""
    short_circuit: bool | str = False
    if args.svg_short_circuit == "true":
        short_circuit = True
    elif args.svg_short_circuit == "size":
        short_circuit = "size"
    return resolve_options(
        widths=args.widths,
        formats=args.formats,
        output_dir=args.out_dir,
        url_path=args.url_path,
        svg_short_circuit=short_circuit,
        dry_run=args.dry_run,
        stats_only=args.stats_only,
    )


async def derive_all(
    sources: list[str],
    options: ImageOptions,
    service: DerivationService,
) -> tuple[dict[str, FullStatsPlan], dict[str, str]]:
    """Derive every source, returning the successful plans and per-source errors."""
    plans: dict[str, FullStatsPlan] = {}
    failures: dict[str, str] = {}

    async def _one(src: str) -> tuple[str, Any]:
        try:
            return src, await service.derive(src, options)
        except ImageDerivationError as exc:
            return src, exc

    jobs = [_one(src) for src in sources]
    for finished in tqdm(
        asyncio.as_completed(jobs), total=len(jobs), desc="Deriving images", unit="image", leave=False
    ):
        src, outcome = await finished
        if isinstance(outcome, ImageDerivationError):
            logger.warning("Failed to derive %s: %s", src, outcome)
            failures[src] = str(outcome)
        else:
            plans[src] = outcome
    return plans, failures


def _summarize(plans: dict[str, FullStatsPlan]) -> None:
    for src, plan in plans.items():
        for fmt, stats in plan.items():
            for stat in stats:
                size = f"{stat.size} bytes" if stat.size is not None else "size n/a"
                print(f"[{fmt}] {src} -> {stat.url} ({stat.width}x{stat.height}, {size})")


def main(argv: Iterable[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    options = build_options(args)
    service = default_service
    if args.concurrency is not None:
        service.concurrency = args.concurrency

    plans, failures = asyncio.run(derive_all(list(args.sources), options, service))
    _summarize(plans)

    manifest_path = Path(args.manifest) if args.manifest else DEFAULT_MANIFEST
    if not args.dry_run:
        write_manifest(manifest_path, plans)
        print(f"[manifest] wrote {len(plans)} source(s) to {manifest_path}")
    if failures:
        print(f"[error] {len(failures)} source(s) failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
