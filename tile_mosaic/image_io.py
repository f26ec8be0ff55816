"""Image loading and saving: sources, pieces and animated frames."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, ImageSequence, UnidentifiedImageError

from tile_mosaic.errors import SourceDecodeError

# DecompressionBombError is not an OSError
_DECODE_ERRORS = (OSError, UnidentifiedImageError, Image.DecompressionBombError)


def compute_target_size(
    original_width: int,
    original_height: int,
    max_side: int,
) -> tuple[int, int]:
    """Compute downscaled (w, h) preserving aspect ratio.

    The longest side becomes *max_side*; the other is scaled
    proportionally (rounded to the nearest integer, minimum 1).
    """
    if original_width >= original_height:
        w = max_side
        h = max(1, round(original_height * max_side / original_width))
    else:
        h = max_side
        w = max(1, round(original_width * max_side / original_height))
    return w, h


def to_rgba_array(img: Image.Image, max_side: int | None = None) -> np.ndarray:
    """RGBA pixels of *img*, shrunk (never enlarged) to fit *max_side*."""
    img = img.convert("RGBA")
    if max_side is not None and max(img.size) > max_side:
        w, h = compute_target_size(img.width, img.height, max_side)
        img = img.resize((w, h), Image.LANCZOS)
    return np.array(img, dtype=np.uint8)


def load_rgba(path: str | Path) -> np.ndarray:
    """Decode an image file.

    Returns:
        (H, W, 4) uint8 array.

    Raises:
        SourceDecodeError: the file is missing or not a decodable image.
    """
    return load_and_resize(path, None)


def load_and_resize(path: str | Path, max_side: int | None = None) -> np.ndarray:
    """Like :func:`load_rgba` but shrinks the longest side to *max_side*.

    Images already within *max_side* are never upscaled.
    """
    try:
        with Image.open(path) as img:
            return to_rgba_array(img, max_side)
    except _DECODE_ERRORS as exc:
        raise SourceDecodeError(path, str(exc)) from exc


def load_tile(path: str | Path, tile_size: tuple[int, int]) -> np.ndarray:
    """Decode a piece bitmap at exactly *tile_size* (w, h).

    Unlike :func:`load_rgba` this lets ``OSError`` propagate: a piece that
    vanished mid-run is a fatal condition for the caller to report.
    """
    with Image.open(path) as img:
        img = img.convert("RGBA")
        if img.size != tile_size:
            img = img.resize(tile_size, Image.NEAREST)
        return np.array(img, dtype=np.uint8)


def is_fully_opaque(buffer: np.ndarray) -> bool:
    """True when every sample has alpha 255."""
    return buffer.shape[-1] < 4 or bool(np.all(buffer[..., 3] == 255))


def save_rgba(array: np.ndarray, path: str | Path) -> None:
    """Encode an (H, W, 4) or (H, W, 3) uint8 array to *path*.

    Formats without alpha support (e.g. JPEG) receive an RGB copy.
    """
    path = Path(path)
    img = Image.fromarray(array.astype(np.uint8))
    if path.suffix.lower() in {".jpg", ".jpeg", ".bmp"} and img.mode == "RGBA":
        img = img.convert("RGB")
    img.save(path)


# -- Animated images ---------------------------------------------------


def is_animated(path: str | Path) -> bool:
    try:
        with Image.open(path) as img:
            return getattr(img, "n_frames", 1) > 1
    except _DECODE_ERRORS as exc:
        raise SourceDecodeError(path, str(exc)) from exc


def load_frames(
    path: str | Path,
    max_side: int | None = None,
) -> tuple[list[np.ndarray], list[int], int]:
    """Decode every frame of an animated image.

    Returns:
        (frames, durations_ms, loop) - frames as (H, W, 4) uint8 arrays.
    """
    frames: list[np.ndarray] = []
    durations: list[int] = []
    try:
        with Image.open(path) as img:
            loop = int(img.info.get("loop", 0))
            for frame in ImageSequence.Iterator(img):
                frames.append(to_rgba_array(frame, max_side))
                durations.append(int(frame.info.get("duration", 100)))
    except _DECODE_ERRORS as exc:
        raise SourceDecodeError(path, str(exc)) from exc
    return frames, durations, loop


def save_frames(
    frames: list[np.ndarray],
    durations: list[int],
    path: str | Path,
    loop: int = 0,
) -> None:
    """Re-assemble frames into an animated image with per-frame timing."""
    images = [Image.fromarray(f.astype(np.uint8)) for f in frames]
    images[0].save(
        path,
        save_all=True,
        append_images=images[1:],
        duration=durations,
        loop=loop,
        disposal=2,
    )
