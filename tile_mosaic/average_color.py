"""Representative-colour strategies: reduce a piece image to one RGB triple.

Two strategies are available and selected at runtime by name:

- **histogram** - the most frequent exact colour among opaque pixels.
- **kmeans** - k-means in CIELAB, returning the centroid of the most
  populated cluster of the best (lowest distortion) attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from scipy.cluster.vq import kmeans, vq

from tile_mosaic.color_utils import lab_to_rgb, opaque_mask, rgb_to_lab
from tile_mosaic.config import ALGORITHMS, MosaicConfig
from tile_mosaic.errors import ConfigError

logger = logging.getLogger(__name__)

RGB = tuple[int, int, int]

# Attempt i of the k-means strategy is seeded with BASE_SEED + i.
BASE_SEED = 72_342_792_347


class AverageColorStrategy(Protocol):
    """Anything able to summarise a piece image as one RGB colour."""

    def representative_color(self, tile: np.ndarray) -> RGB | None: ...


def _pixels(tile: np.ndarray) -> np.ndarray:
    return np.asarray(tile, dtype=np.uint8).reshape(-1, tile.shape[-1])


@dataclass(frozen=True)
class HistogramStrategy:
    """Most frequent exact colour; ties go to the first one in scan order."""

    def representative_color(self, tile: np.ndarray) -> RGB | None:
        pixels = _pixels(tile)
        if len(pixels) == 0:
            return None

        opaque = opaque_mask(tile).reshape(-1)
        if opaque.any():
            pixels = pixels[opaque]
        rgb = pixels[:, :3].astype(np.uint32)

        keys = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
        uniq, first, counts = np.unique(keys, return_index=True, return_counts=True)
        winners = np.flatnonzero(counts == counts.max())
        key = int(uniq[winners[np.argmin(first[winners])]])
        return (key >> 16) & 0xFF, (key >> 8) & 0xFF, key & 0xFF


@dataclass(frozen=True)
class ClusterDominantStrategy:
    """Dominant k-means cluster in CIELAB.

    Attributes:
        iterations: Independent k-means attempts, each with its own seed.
        clusters:   Cluster count (capped at the number of pixels).
        min_score:  When non-zero, pieces whose best distortion (mean CIELAB
                    distance to the assigned centroid) exceeds it are rejected.
        thresh:     Convergence threshold handed to :func:`scipy.cluster.vq.kmeans`.
    """

    iterations: int = 25
    clusters: int = 8
    min_score: float = 0.0
    thresh: float = 1e-5

    def representative_color(self, tile: np.ndarray) -> RGB | None:
        pixels = _pixels(tile)
        if len(pixels) == 0:
            return None

        lab = rgb_to_lab(pixels[:, :3])
        k = min(self.clusters, len(lab))

        best_codebook: np.ndarray | None = None
        best_score = np.inf
        for attempt in range(self.iterations):
            rng = np.random.default_rng(BASE_SEED + attempt)
            guess = lab[rng.choice(len(lab), size=k, replace=False)]
            codebook, distortion = kmeans(lab, guess, thresh=self.thresh)
            if distortion < best_score:
                best_codebook, best_score = codebook, distortion

        if best_codebook is None:
            return None
        if self.min_score and best_score > self.min_score:
            logger.debug(
                "Rejected piece: distortion %.2f above min score %.2f",
                best_score, self.min_score,
            )
            return None

        labels, _ = vq(lab, best_codebook)
        counts = np.bincount(labels, minlength=len(best_codebook))
        r, g, b = lab_to_rgb(best_codebook[int(np.argmax(counts))])[0]
        return int(r), int(g), int(b)


def make_strategy(
    algorithm: str = "histogram",
    iterations: int = 25,
    clusters: int = 8,
    min_score: float = 0.0,
) -> AverageColorStrategy:
    """Build a strategy object from its configuration name."""
    if algorithm == "histogram":
        return HistogramStrategy()
    if algorithm == "kmeans":
        if iterations < 1 or clusters < 1:
            msg = "kmeans needs iterations >= 1 and clusters >= 1"
            raise ConfigError(msg)
        if min_score < 0:
            msg = f"min_score must be >= 0, got {min_score}"
            raise ConfigError(msg)
        return ClusterDominantStrategy(iterations, clusters, min_score)
    msg = f"Unknown algorithm '{algorithm}'. Available: {', '.join(ALGORITHMS)}"
    raise ConfigError(msg)


def strategy_from_config(cfg: MosaicConfig) -> AverageColorStrategy:
    return make_strategy(
        cfg.algorithm,
        iterations=cfg.cluster_iterations,
        clusters=cfg.cluster_count,
        min_score=cfg.cluster_min_score,
    )
