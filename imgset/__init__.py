"""Derive responsive image sets from a single source image."""

from __future__ import annotations

import asyncio
import sys
import types
from typing import Any, Mapping

from .errors import (
    ConfigurationError,
    ImageDerivationError,
    InputError,
    MaterializationError,
    UnsupportedFormatError,
)
from .io.markup import generate_html, generate_object
from .io.models import FullStatsPlan, ImageOptions, Stat, resolve_options
from .pipeline.orchestrator import ImageDerivation, stats_by_dimensions_sync, stats_sync
from .pipeline.service import DerivationService, default_service
from .policy.formats import resolve_formats
from .policy.widths import resolve_widths

__all__ = [
    "ConfigurationError",
    "DerivationService",
    "FullStatsPlan",
    "ImageDerivation",
    "ImageDerivationError",
    "ImageOptions",
    "InputError",
    "MaterializationError",
    "Stat",
    "UnsupportedFormatError",
    "derive",
    "generate_html",
    "generate_object",
    "get_formats",
    "get_hash",
    "get_widths",
    "resolve_options",
    "stats_by_dimensions_sync",
    "stats_sync",
]

get_formats = resolve_formats
get_widths = resolve_widths


def derive(
    src: Any, options: ImageOptions | Mapping[str, Any] | None = None, **overrides: Any
) -> asyncio.Future[FullStatsPlan]:
    """Derive all outputs for *src* through the process-wide service."""
    return default_service.derive(src, options, **overrides)


def get_hash(src: Any, options: ImageOptions | Mapping[str, Any] | None = None, **overrides: Any) -> str:
    """Return the content hash used to name the outputs of *src*."""
    return ImageDerivation(src, resolve_options(options, **overrides)).get_hash()


class _ImgsetModule(types.ModuleType):
    """Module type exposing ``concurrency`` as a property of the default service."""

    @property
    def concurrency(self) -> int:
        return default_service.concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        default_service.concurrency = value


sys.modules[__name__].__class__ = _ImgsetModule
