"""Floyd-Steinberg error-diffusion dithering against the piece palette.

Every pixel is snapped to its nearest palette colour and the quantisation
error is pushed onto the unvisited neighbours, so that regions keep their
average tone even though only palette colours remain.

Diffusion carries state left-to-right and top-to-bottom across the whole
image, so this pass must run once over the full source before it is split
into bands.  Running it per band would leave seams at every band edge.
"""

from __future__ import annotations

import logging
import time

import numpy as np

from tile_mosaic.color_utils import nearest_color_index
from tile_mosaic.errors import EmptyCatalogError

logger = logging.getLogger(__name__)

# (dx, dy, weight / 16)
FS_WEIGHTS: tuple[tuple[int, int, int], ...] = (
    (1, 0, 7),    # right
    (-1, 1, 3),   # below-left
    (0, 1, 5),    # below
    (1, 1, 1),    # below-right
)


def diffuse_error(error: np.ndarray) -> list[tuple[int, int, np.ndarray]]:
    """Split a quantisation error into its four neighbour shares.

    Returns:
        ``[(dx, dy, share), ...]`` where the shares sum to *error*.
    """
    err = np.asarray(error, dtype=np.float64)
    return [(dx, dy, err * weight / 16) for dx, dy, weight in FS_WEIGHTS]


def apply_dithering(buffer: np.ndarray, palette: np.ndarray) -> np.ndarray:
    """Dither *buffer* in place so that every pixel becomes a palette colour.

    Only the RGB channels are touched; alpha is left as is.  Pixels on the
    image border are quantised but do not propagate their error.

    Args:
        buffer:  (H, W, 3|4) uint8 - modified in place.
        palette: (N, 3) uint8.

    Returns:
        The same *buffer*, for chaining.
    """
    pal = np.asarray(palette, dtype=np.uint8).reshape(-1, 3)
    if len(pal) == 0:
        msg = "Cannot dither against an empty palette"
        raise EmptyCatalogError(msg)

    h, w = buffer.shape[:2]
    t0 = time.perf_counter()

    for y in range(h):
        for x in range(w):
            old = buffer[y, x, :3].astype(np.float64)
            new = pal[nearest_color_index(buffer[y, x, :3], pal)]
            buffer[y, x, :3] = new

            if 0 < x < w - 1 and 0 < y < h - 1:
                for dx, dy, share in diffuse_error(old - new):
                    nx, ny = x + dx, y + dy
                    value = buffer[ny, nx, :3] + share
                    buffer[ny, nx, :3] = np.clip(value, 0, 255).astype(np.uint8)

    logger.debug("Dithered %dx%d image  (%.2f s)", w, h, time.perf_counter() - t0)
    return buffer
