"""Centralised configuration via a frozen dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from tile_mosaic.errors import ConfigError

ALGORITHMS = ("histogram", "kmeans")


@dataclass(frozen=True)
class MosaicConfig:
    """All tuneable parameters for a mosaic run.

    Attributes:
        tile_size:          Each source pixel becomes a tile_size x tile_size piece.
        allow_transparent_pieces: Admit pieces containing translucent pixels.
        algorithm:          Representative colour strategy - "histogram" or "kmeans".
        cluster_iterations: Independent k-means attempts per piece.
        cluster_count:      Number of k-means clusters.
        cluster_min_score:  Reject pieces whose best distortion exceeds this (0 = off).
        dither:             Apply Floyd-Steinberg dithering before composing.
        workers:            Number of horizontal bands / threads per compose call.
        max_side:           Optionally downscale the source so its longest side
                            is at most this many pixels (None = keep size).
        pieces_dir:         Folder holding the piece images.
        input_dir:          Folder to scan for source images (batch mode).
        output_dir:         Folder for results.
    """

    # Pieces
    tile_size: int = 16
    allow_transparent_pieces: bool = False

    # Representative colour
    algorithm: str = "histogram"  # "histogram" | "kmeans"
    cluster_iterations: int = 25
    cluster_count: int = 8
    cluster_min_score: float = 0.0

    # Composition
    dither: bool = False
    workers: int = 4
    max_side: int | None = None

    # Paths
    pieces_dir: Path = field(default_factory=lambda: Path("pieces"))
    input_dir: Path = field(default_factory=lambda: Path("images"))
    output_dir: Path = field(default_factory=lambda: Path("output"))

    SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
        {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tiff", ".tif", ".webp"}
    )

    def validate(self) -> MosaicConfig:
        """Raise :class:`ConfigError` for values no run could succeed with."""
        if self.tile_size < 1:
            msg = f"tile_size must be >= 1, got {self.tile_size}"
            raise ConfigError(msg)
        if self.workers < 1:
            msg = f"workers must be >= 1, got {self.workers}"
            raise ConfigError(msg)
        if self.algorithm not in ALGORITHMS:
            msg = f"Unknown algorithm '{self.algorithm}'. Available: {', '.join(ALGORITHMS)}"
            raise ConfigError(msg)
        if self.cluster_iterations < 1:
            msg = f"cluster_iterations must be >= 1, got {self.cluster_iterations}"
            raise ConfigError(msg)
        if self.cluster_count < 1:
            msg = f"cluster_count must be >= 1, got {self.cluster_count}"
            raise ConfigError(msg)
        if self.cluster_min_score < 0:
            msg = f"cluster_min_score must be >= 0, got {self.cluster_min_score}"
            raise ConfigError(msg)
        if self.max_side is not None and self.max_side < 1:
            msg = f"max_side must be >= 1, got {self.max_side}"
            raise ConfigError(msg)
        return self
