"""Colour-space conversion and nearest-colour matching."""

from __future__ import annotations

import numpy as np
from skimage.color import lab2rgb, rgb2lab

from tile_mosaic.errors import EmptyCatalogError

# Samples with alpha below this are treated as transparent.
ALPHA_THRESHOLD = 128


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) uint8 RGB → (N, 3) float64 CIELAB."""
    return rgb2lab(rgb.astype(np.float64).reshape(1, -1, 3) / 255.0).reshape(-1, 3)


def lab_to_rgb(lab: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) CIELAB → (N, 3) uint8 RGB (rounded, clipped)."""
    rgb = lab2rgb(np.asarray(lab, dtype=np.float64).reshape(1, -1, 3)).reshape(-1, 3)
    return np.round(np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)


def opaque_mask(buffer: np.ndarray) -> np.ndarray:
    """Boolean (H, W) mask of samples at or above :data:`ALPHA_THRESHOLD`."""
    if buffer.shape[-1] < 4:
        return np.ones(buffer.shape[:-1], dtype=bool)
    return buffer[..., 3] >= ALPHA_THRESHOLD


def color_distance(a, b) -> int:
    """Squared Euclidean distance between two RGB triples."""
    d = np.asarray(a, dtype=np.int64)[:3] - np.asarray(b, dtype=np.int64)[:3]
    return int(np.dot(d, d))


def nearest_color_index(target, palette: np.ndarray) -> int:
    """Index of the palette entry closest to *target*.

    Linear scan; when several entries share the minimal distance the one
    appearing first in *palette* wins.
    """
    return int(nearest_color_indices(np.asarray(target).reshape(1, -1), palette)[0])


def nearest_color_indices(
    targets: np.ndarray,
    palette: np.ndarray,
    chunk_size: int = 4096,
) -> np.ndarray:
    """Vectorised :func:`nearest_color_index` over many colours.

    Args:
        targets: (M, 3+) colours; only the first three channels are used.
        palette: (N, 3) uint8 palette.
        chunk_size: Targets compared per batch (controls peak RAM).

    Returns:
        (M,) int64 palette indices.
    """
    pal = np.asarray(palette, dtype=np.int64).reshape(-1, 3)
    if len(pal) == 0:
        msg = "Cannot match colours against an empty palette"
        raise EmptyCatalogError(msg)

    t = np.asarray(targets, dtype=np.int64)
    t = t.reshape(-1, t.shape[-1])[:, :3]
    m = len(t)
    out = np.empty(m, dtype=np.int64)
    for i in range(0, m, chunk_size):
        j = min(i + chunk_size, m)
        diff = t[i:j, np.newaxis, :] - pal[np.newaxis, :, :]
        # argmin keeps the first minimum, preserving palette order on ties
        out[i:j] = np.argmin(np.sum(diff * diff, axis=2), axis=1)
    return out
