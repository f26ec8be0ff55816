#!/usr/bin/env python3
"""
main.py — Quick-start entry point.

Drop tile images into ``pieces/`` and source images into ``images/``, then run:

    python main.py batch

Or use the full CLI:

    python -m tile_mosaic.cli batch --help
    python -m tile_mosaic.cli single my_photo.jpg --tile-size 16 --dither
"""

from tile_mosaic.cli import app

if __name__ == "__main__":
    app()
