"""Mosaic composition: dither once, then fill the canvas band by band in parallel."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

import numpy as np
from PIL import Image

from tile_mosaic.catalog import PieceCatalog
from tile_mosaic.color_utils import nearest_color_indices, opaque_mask
from tile_mosaic.dithering import apply_dithering
from tile_mosaic.errors import ConfigError, EmptyCatalogError, WorkerFailure
from tile_mosaic.image_io import load_tile

logger = logging.getLogger(__name__)


def split_bands(height: int, workers: int) -> list[tuple[int, int]]:
    """Partition rows ``[0, height)`` into *workers* contiguous bands.

    Band sizes differ by at most one row.  When there are more workers
    than rows the trailing bands are empty.
    """
    if workers < 1:
        msg = f"workers must be >= 1, got {workers}"
        raise ConfigError(msg)
    return [
        (height * i // workers, height * (i + 1) // workers)
        for i in range(workers)
    ]


def _as_rgba(source: np.ndarray) -> np.ndarray:
    src = np.asarray(source, dtype=np.uint8)
    if src.ndim != 3 or src.shape[2] not in (3, 4):
        msg = f"Expected an (H, W, 3|4) image, got shape {src.shape}"
        raise ValueError(msg)
    if src.shape[2] == 3:
        alpha = np.full(src.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([src, alpha], axis=2)
    return src.copy()


class Compositor:
    """Turns a source pixel buffer into a mosaic of catalog pieces.

    Args:
        catalog: Loaded pieces; shared read-only with every worker.
        workers: Number of horizontal bands, one thread each.
    """

    def __init__(self, catalog: PieceCatalog, workers: int = 4) -> None:
        if workers < 1:
            msg = f"workers must be >= 1, got {workers}"
            raise ConfigError(msg)
        self.catalog = catalog
        self.workers = workers

    def compose(self, source: np.ndarray, dither: bool = False) -> np.ndarray:
        """Build the mosaic for *source*.

        Args:
            source: (H, W, 3|4) uint8; never modified.
            dither: Run Floyd-Steinberg over the whole image first.

        Returns:
            (H * tile_h, W * tile_w, 4) uint8 canvas.

        Raises:
            EmptyCatalogError: the catalog has no pieces.
            WorkerFailure: a band worker failed (e.g. a piece file vanished).
        """
        if len(self.catalog) == 0:
            msg = "Load at least one piece before composing"
            raise EmptyCatalogError(msg)

        target = _as_rgba(source)
        palette = self.catalog.palette
        h, w = target.shape[:2]
        tile_w, tile_h = self.catalog.tile_size

        t0 = time.perf_counter()
        if dither:
            logger.info("Applying Floyd-Steinberg dithering ...")
            apply_dithering(target, palette)

        canvas = np.zeros((h * tile_h, w * tile_w, 4), dtype=np.uint8)
        bands = split_bands(h, self.workers)
        logger.debug("Composing %dx%d source in %d band(s)", w, h, len(bands))

        with ThreadPoolExecutor(max_workers=len(bands)) as pool:
            futures = [
                pool.submit(self._fill_band, target, canvas, start, end)
                for start, end in bands
            ]
            wait(futures)

        for (start, end), fut in zip(bands, futures, strict=True):
            exc = fut.exception()
            if exc is not None:
                msg = f"Worker for rows [{start}, {end}) failed: {exc}"
                raise WorkerFailure(msg) from exc

        logger.info(
            "Mosaic %dx%d ready  (%.2f s)",
            canvas.shape[1], canvas.shape[0], time.perf_counter() - t0,
        )
        return canvas

    def _fill_band(
        self,
        target: np.ndarray,
        canvas: np.ndarray,
        start: int,
        end: int,
    ) -> None:
        """Paste pieces for source rows ``[start, end)`` into *canvas*.

        Only canvas rows ``[start * tile_h, end * tile_h)`` are written.
        """
        if start >= end:
            return
        tile_w, tile_h = self.catalog.tile_size
        pieces = self.catalog.pieces
        band = target[start:end]
        visible = opaque_mask(band)
        matches = nearest_color_indices(band.reshape(-1, 4), self.catalog.palette)
        matches = matches.reshape(band.shape[:2])

        tiles: dict[Path, Image.Image] = {}
        t0 = time.perf_counter()
        for y in range(end - start):
            top = (start + y) * tile_h
            for x in range(band.shape[1]):
                if not visible[y, x]:
                    continue
                piece = pieces[matches[y, x]]
                tile = tiles.get(piece.source)
                if tile is None:
                    tile = Image.fromarray(load_tile(piece.source, (tile_w, tile_h)))
                    tiles[piece.source] = tile

                left = x * tile_w
                cell = canvas[top:top + tile_h, left:left + tile_w]
                cell[...] = np.asarray(
                    Image.alpha_composite(Image.fromarray(np.ascontiguousarray(cell)), tile),
                )
        logger.debug(
            "Band [%d, %d) done  (%d distinct pieces, %.2f s)",
            start, end, len(tiles), time.perf_counter() - t0,
        )
