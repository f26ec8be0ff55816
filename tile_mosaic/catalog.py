"""Piece catalog: candidate tiles, their representative colours, and the palette."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from tile_mosaic.average_color import RGB, AverageColorStrategy, HistogramStrategy
from tile_mosaic.color_utils import nearest_color_index
from tile_mosaic.errors import (
    CatalogIOError,
    ConfigError,
    EmptyCatalogError,
    SourceDecodeError,
)
from tile_mosaic.image_io import is_fully_opaque, load_rgba

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Piece:
    """One candidate tile: where its bitmap lives and the colour it stands for."""

    source: Path
    color: RGB


class PieceCatalog:
    """Ordered collection of :class:`Piece` objects plus the derived palette.

    The palette is an (N, 3) uint8 array whose row *i* is the colour of
    ``pieces[i]``; it is rebuilt whenever the piece list changes.
    """

    def __init__(self, tile_size: int | tuple[int, int] = 16) -> None:
        if isinstance(tile_size, int):
            tile_size = (tile_size, tile_size)
        if min(tile_size) < 1:
            msg = f"tile_size must be positive, got {tile_size}"
            raise ConfigError(msg)
        self.tile_size: tuple[int, int] = tile_size
        self._pieces: list[Piece] = []
        self._palette = np.zeros((0, 3), dtype=np.uint8)
        self._by_color: dict[RGB, int] = {}

    # -- Loading -------------------------------------------------------

    @classmethod
    def load(
        cls,
        directory: str | Path,
        allow_transparent: bool = False,
        strategy: AverageColorStrategy | None = None,
        tile_size: int | tuple[int, int] = 16,
    ) -> PieceCatalog:
        """Build a catalog from every decodable image in *directory*.

        Unreadable, non-image and (unless *allow_transparent*) translucent
        files are skipped with a warning; pieces the strategy rejects are
        skipped silently.

        Raises:
            CatalogIOError: *directory* cannot be listed.
        """
        catalog = cls(tile_size)
        catalog.load_pieces(directory, allow_transparent, strategy)
        return catalog

    def load_pieces(
        self,
        directory: str | Path,
        allow_transparent: bool = False,
        strategy: AverageColorStrategy | None = None,
    ) -> PieceCatalog:
        directory = Path(directory)
        strategy = strategy or HistogramStrategy()
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            msg = f"Cannot read pieces directory '{directory}': {exc}"
            raise CatalogIOError(msg) from exc

        t0 = time.perf_counter()
        before = len(self._pieces)
        for entry in entries:
            if not entry.is_file():
                continue
            try:
                tile = load_rgba(entry)
            except SourceDecodeError:
                logger.warning("Ignoring %s: not an image or corrupted", entry)
                continue

            if not allow_transparent and not is_fully_opaque(tile):
                logger.warning("Ignoring %s: contains transparent pixels", entry)
                continue

            color = strategy.representative_color(tile)
            if color is None:
                logger.debug("Ignoring %s: no representative colour", entry)
                continue

            logger.debug("Loaded %s -> rgb%s", entry.name, color)
            self._pieces.append(Piece(entry, color))

        self._rebuild()
        loaded = len(self._pieces) - before
        logger.info(
            "Loaded %d piece(s) from %s  (%.1f s)",
            loaded, directory, time.perf_counter() - t0,
        )
        if loaded == 0:
            logger.warning("No usable pieces found in %s", directory)
        return self

    def add(self, piece: Piece) -> None:
        self._pieces.append(piece)
        self._rebuild()

    def clear(self) -> None:
        self._pieces.clear()
        self._rebuild()

    def _rebuild(self) -> None:
        if self._pieces:
            self._palette = np.array([p.color for p in self._pieces], dtype=np.uint8)
        else:
            self._palette = np.zeros((0, 3), dtype=np.uint8)
        self._by_color = {}
        for i, p in enumerate(self._pieces):
            self._by_color.setdefault(p.color, i)

    # -- Queries -------------------------------------------------------

    @property
    def pieces(self) -> tuple[Piece, ...]:
        return tuple(self._pieces)

    @property
    def palette(self) -> np.ndarray:
        """(N, 3) uint8 read-only view of the piece colours, in load order."""
        view = self._palette.view()
        view.flags.writeable = False
        return view

    def index_of(self, color: RGB) -> int | None:
        """Index of the first piece whose colour is exactly *color*."""
        return self._by_color.get(tuple(int(c) for c in color))

    def nearest_piece(self, color) -> Piece:
        if not self._pieces:
            msg = "The piece catalog is empty"
            raise EmptyCatalogError(msg)
        return self._pieces[nearest_color_index(color, self._palette)]

    def __len__(self) -> int:
        return len(self._pieces)

    def __repr__(self) -> str:
        return f"PieceCatalog(pieces={len(self._pieces)}, tile_size={self.tile_size})"
