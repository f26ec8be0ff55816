"""
Tile Mosaic Generator
=====================

Rebuild any image out of a folder of small picture tiles. Every source
pixel is replaced by the tile whose representative colour matches it best.
Ships two representative-colour strategies:

- **Histogram** (most frequent exact colour)
- **K-means** (dominant cluster in CIELAB)

plus optional Floyd-Steinberg dithering and multi-threaded composition.
"""

__version__ = "1.0.0"

from tile_mosaic.average_color import (
    ClusterDominantStrategy,
    HistogramStrategy,
    make_strategy,
)
from tile_mosaic.catalog import Piece, PieceCatalog
from tile_mosaic.color_utils import color_distance, nearest_color_index
from tile_mosaic.compositor import Compositor, split_bands
from tile_mosaic.config import MosaicConfig
from tile_mosaic.dithering import apply_dithering
from tile_mosaic.errors import (
    CatalogIOError,
    ConfigError,
    EmptyCatalogError,
    MosaicError,
    SourceDecodeError,
    WorkerFailure,
)

__all__ = [
    "CatalogIOError",
    "ClusterDominantStrategy",
    "Compositor",
    "ConfigError",
    "EmptyCatalogError",
    "HistogramStrategy",
    "MosaicConfig",
    "MosaicError",
    "Piece",
    "PieceCatalog",
    "SourceDecodeError",
    "WorkerFailure",
    "apply_dithering",
    "color_distance",
    "make_strategy",
    "nearest_color_index",
    "split_bands",
]
