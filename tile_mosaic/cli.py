"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from tile_mosaic.average_color import strategy_from_config
from tile_mosaic.catalog import PieceCatalog
from tile_mosaic.compositor import Compositor
from tile_mosaic.config import MosaicConfig
from tile_mosaic.errors import ConfigError, EmptyCatalogError, MosaicError
from tile_mosaic.image_io import (
    is_animated,
    load_and_resize,
    load_frames,
    save_frames,
    save_rgba,
)

app = typer.Typer(
    name="tile-mosaic",
    help="Rebuild images out of a folder of picture tiles.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()
logger = logging.getLogger("tile_mosaic")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _collect_images(folder: Path, extensions: frozenset[str]) -> list[Path]:
    """All supported images below *folder*, recursively, in sorted order."""
    if not folder.exists():
        return []
    return sorted(
        f for f in folder.rglob("*")
        if f.is_file() and f.suffix.lower() in extensions
    )


def _build(cfg: MosaicConfig) -> Compositor:
    cfg.validate()
    catalog = PieceCatalog.load(
        cfg.pieces_dir,
        allow_transparent=cfg.allow_transparent_pieces,
        strategy=strategy_from_config(cfg),
        tile_size=cfg.tile_size,
    )
    if len(catalog) == 0:
        msg = f"No usable pieces in {cfg.pieces_dir}"
        if cfg.algorithm == "kmeans" and cfg.cluster_min_score:
            # min score rejected every piece: a configuration problem
            raise ConfigError(f"{msg} (try lowering --kmeans-min-score)")
        raise EmptyCatalogError(msg)
    return Compositor(catalog, workers=cfg.workers)


def convert_file(
    source: Path,
    output: Path,
    compositor: Compositor,
    cfg: MosaicConfig,
) -> tuple[int, int]:
    """Convert one file; animated inputs are converted frame by frame.

    Returns:
        (width, height) of the written mosaic.
    """
    output.parent.mkdir(parents=True, exist_ok=True)

    if is_animated(source):
        frames, durations, loop = load_frames(source, cfg.max_side)
        logger.info("%s: %d frames", source.name, len(frames))
        mosaics = [compositor.compose(f, dither=cfg.dither) for f in frames]
        save_frames(mosaics, durations, output, loop=loop)
        h, w = mosaics[0].shape[:2]
        return w, h

    image = load_and_resize(source, cfg.max_side)
    h, w = image.shape[:2]
    logger.info("Source: %dx%d = %d pixels", w, h, w * h)
    mosaic = compositor.compose(image, dither=cfg.dither)
    save_rgba(mosaic, output)
    return mosaic.shape[1], mosaic.shape[0]


# Defaults come from MosaicConfig - single source of truth
_DEFAULTS = MosaicConfig()


# -- batch command -----------------------------------------------------

@app.command()
def batch(
    input_dir: Path = typer.Option(
        _DEFAULTS.input_dir, "--input", "-i", help="Folder with source images (walked recursively)",
    ),
    output_dir: Path = typer.Option(
        _DEFAULTS.output_dir, "--output", "-o", help="Results folder (mirrors the input tree)",
    ),
    pieces_dir: Path = typer.Option(
        _DEFAULTS.pieces_dir, "--pieces", "-p", help="Folder with tile images",
    ),
    tile_size: int = typer.Option(
        _DEFAULTS.tile_size, "--tile-size", "-t", help="Output pixels per source pixel",
    ),
    allow_transparent: bool = typer.Option(
        _DEFAULTS.allow_transparent_pieces, "--allow-transparent/--opaque-only",
        help="Admit tiles containing transparent pixels",
    ),
    algorithm: str = typer.Option(
        _DEFAULTS.algorithm, "--algorithm", "-a", help="'histogram' or 'kmeans'",
    ),
    iterations: int = typer.Option(
        _DEFAULTS.cluster_iterations, "--kmeans-iter", help="K-means attempts per tile",
    ),
    clusters: int = typer.Option(
        _DEFAULTS.cluster_count, "--kmeans-clusters", help="K-means cluster count",
    ),
    min_score: float = typer.Option(
        _DEFAULTS.cluster_min_score, "--kmeans-min-score",
        help="Reject tiles whose k-means distortion exceeds this (0 = off)",
    ),
    dither: bool = typer.Option(
        _DEFAULTS.dither, "--dither/--no-dither", help="Floyd-Steinberg dithering",
    ),
    workers: int = typer.Option(
        _DEFAULTS.workers, "--workers", "-w", help="Threads (horizontal bands) per image",
    ),
    max_side: int | None = typer.Option(
        _DEFAULTS.max_side, "--max-side", "-m",
        help="Downscale sources so the longest side is at most this",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Convert every image below INPUT_DIR and write results to OUTPUT_DIR."""
    _setup_logging(verbose)

    cfg = MosaicConfig(
        tile_size=tile_size,
        allow_transparent_pieces=allow_transparent,
        algorithm=algorithm,
        cluster_iterations=iterations,
        cluster_count=clusters,
        cluster_min_score=min_score,
        dither=dither,
        workers=workers,
        max_side=max_side,
        pieces_dir=pieces_dir,
        input_dir=input_dir,
        output_dir=output_dir,
    )

    images = _collect_images(input_dir, cfg.SUPPORTED_EXTENSIONS)
    if not images:
        console.print(f"\n[yellow]No images found in {input_dir}/[/yellow]")
        console.print("Place .jpg / .png / .gif ... files there and re-run.\n")
        raise typer.Exit(0)

    try:
        compositor = _build(cfg)
    except MosaicError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(Panel.fit(
        f"[bold]TILE MOSAIC GENERATOR[/bold]\n"
        f"Pieces: {len(compositor.catalog)}  |  Tile size: {cfg.tile_size}\n"
        f"Algorithm: {cfg.algorithm}  |  Workers: {cfg.workers}\n"
        f"Dithering: {cfg.dither}  |  Images: {len(images)}",
        border_style="cyan",
    ))

    failed = 0
    for idx, img_path in enumerate(images, 1):
        rel = img_path.relative_to(input_dir)
        console.rule(f"[bold cyan][{idx}/{len(images)}] {rel}[/bold cyan]")
        t_total = time.perf_counter()
        out_path = output_dir / rel.parent / f"{img_path.stem}_mosaic{img_path.suffix.lower()}"
        try:
            w, h = convert_file(img_path, out_path, compositor, cfg)
        except MosaicError as exc:
            failed += 1
            console.print(f"  [red]✗[/red] {exc}")
            continue
        elapsed = time.perf_counter() - t_total
        console.print(
            f"  [green]✓[/green] {out_path}  "
            f"[dim]{w}x{h}  time={elapsed:.1f}s[/dim]"
        )

    style = "green" if not failed else "yellow"
    console.print(Panel.fit(
        f"[bold {style}]DONE[/bold {style}] - {len(images) - failed}/{len(images)} "
        f"converted, results in [bold]{output_dir}/[/bold]",
        border_style=style,
    ))
    if failed:
        raise typer.Exit(1)


# -- single-image command ----------------------------------------------

@app.command()
def single(
    target: Path = typer.Argument(..., help="Path to the image to convert"),
    output: Path = typer.Option(Path("output/mosaic.png"), "--output", "-o"),
    pieces_dir: Path = typer.Option(_DEFAULTS.pieces_dir, "--pieces", "-p"),
    tile_size: int = typer.Option(_DEFAULTS.tile_size, "--tile-size", "-t"),
    allow_transparent: bool = typer.Option(
        _DEFAULTS.allow_transparent_pieces, "--allow-transparent/--opaque-only",
    ),
    algorithm: str = typer.Option(_DEFAULTS.algorithm, "--algorithm", "-a"),
    iterations: int = typer.Option(_DEFAULTS.cluster_iterations, "--kmeans-iter"),
    clusters: int = typer.Option(_DEFAULTS.cluster_count, "--kmeans-clusters"),
    min_score: float = typer.Option(_DEFAULTS.cluster_min_score, "--kmeans-min-score"),
    dither: bool = typer.Option(_DEFAULTS.dither, "--dither/--no-dither"),
    workers: int = typer.Option(_DEFAULTS.workers, "--workers", "-w"),
    max_side: int | None = typer.Option(_DEFAULTS.max_side, "--max-side", "-m"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Convert a single image (animated GIFs are converted frame by frame)."""
    _setup_logging(verbose)

    cfg = MosaicConfig(
        tile_size=tile_size,
        allow_transparent_pieces=allow_transparent,
        algorithm=algorithm,
        cluster_iterations=iterations,
        cluster_count=clusters,
        cluster_min_score=min_score,
        dither=dither,
        workers=workers,
        max_side=max_side,
        pieces_dir=pieces_dir,
    )

    try:
        compositor = _build(cfg)
        w, h = convert_file(target, output, compositor, cfg)
    except MosaicError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(
        f"[green]✓[/green] Saved to {output}  "
        f"[dim]{w}x{h}  pieces={len(compositor.catalog)}[/dim]"
    )


if __name__ == "__main__":
    app()
