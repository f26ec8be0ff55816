"""Exception hierarchy for the mosaic engine."""

from __future__ import annotations

from pathlib import Path


class MosaicError(Exception):
    """Base class for every error raised by :mod:`tile_mosaic`."""


class ConfigError(MosaicError, ValueError):
    """Invalid configuration, detected before any work begins."""


class CatalogIOError(MosaicError):
    """The pieces directory is missing or cannot be read."""


class EmptyCatalogError(MosaicError):
    """Composition was attempted against a catalog with no usable pieces."""


class SourceDecodeError(MosaicError):
    """The image to convert could not be decoded."""

    def __init__(self, path: str | Path, reason: str = "") -> None:
        self.path = Path(path)
        msg = f"Cannot decode image '{self.path}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class WorkerFailure(MosaicError):
    """A composition worker failed; the whole compose call is aborted."""
