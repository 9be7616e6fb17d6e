"""Exception hierarchy for the image derivation pipeline."""

from __future__ import annotations


class ImageDerivationError(Exception):
    """Base class for every error raised by imgset."""


class ConfigurationError(ImageDerivationError):
    """Raised for invalid or incomplete caller-supplied configuration."""


class UnsupportedFormatError(ConfigurationError):
    """Raised when ``auto`` formats are requested but no native format is known."""


class InputError(ImageDerivationError):
    """Raised when source bytes cannot be obtained."""

    def __init__(self, message: str, src: object | None = None) -> None:
        super().__init__(message)
        self.src = src


class MaterializationError(ImageDerivationError):
    """Raised when probing, encoding or writing an output fails."""

    def __init__(self, message: str, output_path: str | None = None) -> None:
        super().__init__(message)
        self.output_path = output_path
