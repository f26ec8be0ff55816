"""Tests for the tile_mosaic package."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from tile_mosaic.average_color import (
    ClusterDominantStrategy,
    HistogramStrategy,
    make_strategy,
    strategy_from_config,
)
from tile_mosaic.catalog import Piece, PieceCatalog
from tile_mosaic.cli import _build, app
from tile_mosaic.color_utils import (
    color_distance,
    nearest_color_index,
    nearest_color_indices,
)
from tile_mosaic.compositor import Compositor, split_bands
from tile_mosaic.config import MosaicConfig
from tile_mosaic.dithering import FS_WEIGHTS, apply_dithering, diffuse_error
from tile_mosaic.errors import (
    CatalogIOError,
    ConfigError,
    EmptyCatalogError,
    SourceDecodeError,
    WorkerFailure,
)
from tile_mosaic.image_io import (
    compute_target_size,
    load_frames,
    load_rgba,
    save_frames,
    to_rgba_array,
)

# -- Fixtures ----------------------------------------------------------

W, H = 9, 7  # non-square source


def _write_tile(
    path: Path,
    color: tuple[int, int, int],
    size: tuple[int, int] = (8, 8),
    alpha: int = 255,
) -> Path:
    Image.new("RGBA", size, (*color, alpha)).save(path)
    return path


def _write_pattern_tile(path: Path, seed: int, size: int = 8) -> Path:
    """Opaque tile dominated by one colour with a few noisy pixels."""
    rng = np.random.default_rng(seed)
    base = rng.integers(0, 256, size=3, dtype=np.uint8)
    arr = np.empty((size, size, 4), dtype=np.uint8)
    arr[..., :3] = base
    arr[..., 3] = 255
    arr[0, :, :3] = rng.integers(0, 256, size=(size, 3), dtype=np.uint8)
    Image.fromarray(arr).save(path)
    return path


@pytest.fixture
def bw_pieces(tmp_path: Path) -> Path:
    folder = tmp_path / "bw"
    folder.mkdir()
    _write_tile(folder / "a_black.png", (0, 0, 0))
    _write_tile(folder / "b_white.png", (255, 255, 255))
    return folder


@pytest.fixture
def pattern_pieces(tmp_path: Path) -> Path:
    folder = tmp_path / "pattern"
    folder.mkdir()
    for i in range(6):
        _write_pattern_tile(folder / f"piece_{i}.png", seed=i)
    return folder


@pytest.fixture
def source() -> np.ndarray:
    """Synthetic non-square RGBA source with one transparent pixel."""
    rng = np.random.default_rng(456)
    img = rng.integers(0, 256, size=(H, W, 4), dtype=np.uint8)
    img[..., 3] = 255
    img[3, 4, 3] = 0
    return img


# -- Config ------------------------------------------------------------

class TestConfig:
    def test_defaults(self) -> None:
        cfg = MosaicConfig()
        assert cfg.tile_size == 16
        assert cfg.algorithm == "histogram"
        assert cfg.validate() is cfg

    def test_frozen(self) -> None:
        cfg = MosaicConfig()
        with pytest.raises(AttributeError):
            cfg.workers = 8  # type: ignore[misc]

    @pytest.mark.parametrize("overrides", [
        {"workers": 0},
        {"tile_size": 0},
        {"algorithm": "median"},
        {"cluster_iterations": 0},
        {"cluster_count": 0},
        {"cluster_min_score": -1.0},
    ])
    def test_invalid(self, overrides: dict) -> None:
        with pytest.raises(ConfigError):
            MosaicConfig(**overrides).validate()


# -- Colour matching ---------------------------------------------------

class TestColorMatcher:
    def test_exact_match(self) -> None:
        palette = np.array([[1, 2, 3], [10, 20, 30], [200, 100, 50]], dtype=np.uint8)
        idx = nearest_color_index((10, 20, 30), palette)
        assert idx == 1
        assert color_distance(palette[idx], (10, 20, 30)) == 0

    def test_distance_symmetry(self) -> None:
        rng = np.random.default_rng(0)
        for a, b in rng.integers(0, 256, size=(200, 2, 3)):
            assert color_distance(a, b) == color_distance(b, a)

    def test_distance_no_overflow(self) -> None:
        assert color_distance((0, 0, 0), (255, 255, 255)) == 3 * 255 ** 2

    def test_first_wins_ties(self) -> None:
        palette = np.array([[0, 0, 0], [20, 20, 20], [0, 0, 0]], dtype=np.uint8)
        assert nearest_color_index((10, 10, 10), palette) == 0
        assert nearest_color_index((0, 0, 0), palette) == 0

    def test_vectorised_agrees(self) -> None:
        rng = np.random.default_rng(1)
        palette = rng.integers(0, 256, size=(12, 3), dtype=np.uint8)
        targets = rng.integers(0, 256, size=(50, 4), dtype=np.uint8)
        many = nearest_color_indices(targets, palette, chunk_size=7)
        one = [nearest_color_index(t, palette) for t in targets]
        np.testing.assert_array_equal(many, one)

    def test_empty_palette(self) -> None:
        with pytest.raises(EmptyCatalogError):
            nearest_color_index((1, 2, 3), np.zeros((0, 3), dtype=np.uint8))


# -- Representative colour ---------------------------------------------

class TestHistogram:
    def test_most_frequent(self) -> None:
        tile = np.zeros((2, 3, 4), dtype=np.uint8)
        tile[..., 3] = 255
        tile[0, 0, :3] = (9, 9, 9)
        assert HistogramStrategy().representative_color(tile) == (0, 0, 0)

    def test_tie_first_in_scan_order(self) -> None:
        tile = np.array([[[200, 0, 0, 255], [0, 0, 200, 255]]], dtype=np.uint8)
        assert HistogramStrategy().representative_color(tile) == (200, 0, 0)

    def test_ignores_transparent_pixels(self) -> None:
        tile = np.zeros((2, 2, 4), dtype=np.uint8)
        tile[0, 0] = (50, 60, 70, 255)
        assert HistogramStrategy().representative_color(tile) == (50, 60, 70)

    def test_empty_tile(self) -> None:
        tile = np.zeros((0, 0, 4), dtype=np.uint8)
        assert HistogramStrategy().representative_color(tile) is None


class TestClusterDominant:
    def test_dominant_cluster(self) -> None:
        tile = np.zeros((4, 4, 3), dtype=np.uint8)
        tile[:3] = (220, 20, 20)
        tile[3] = (20, 20, 220)
        color = ClusterDominantStrategy(iterations=10).representative_color(tile)
        np.testing.assert_allclose(color, (220, 20, 20), atol=1)

    def test_clusters_capped_by_pixel_count(self) -> None:
        tile = np.full((1, 2, 3), 77, dtype=np.uint8)
        color = ClusterDominantStrategy(iterations=2, clusters=8).representative_color(tile)
        np.testing.assert_allclose(color, (77, 77, 77), atol=1)

    def test_min_score_rejects_noise(self) -> None:
        rng = np.random.default_rng(3)
        noise = rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8)
        assert ClusterDominantStrategy(iterations=2, min_score=0.5).representative_color(noise) is None
        assert ClusterDominantStrategy(iterations=2).representative_color(noise) is not None

    def test_deterministic(self) -> None:
        rng = np.random.default_rng(4)
        tile = rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
        s = ClusterDominantStrategy(iterations=4)
        assert s.representative_color(tile) == s.representative_color(tile)

    def test_factory(self) -> None:
        assert isinstance(make_strategy("histogram"), HistogramStrategy)
        strategy = strategy_from_config(MosaicConfig(algorithm="kmeans", cluster_count=3))
        assert isinstance(strategy, ClusterDominantStrategy)
        assert strategy.clusters == 3
        with pytest.raises(ConfigError):
            make_strategy("median")


# -- Catalog -----------------------------------------------------------

class TestCatalog:
    def test_load_order_and_palette(self, bw_pieces: Path) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=16)
        assert len(catalog) == 2
        np.testing.assert_array_equal(catalog.palette, [[0, 0, 0], [255, 255, 255]])
        assert catalog.pieces[0].source.name == "a_black.png"
        assert catalog.index_of((255, 255, 255)) == 1
        assert catalog.index_of((1, 2, 3)) is None

    def test_transparency_exclusion(self, tmp_path: Path) -> None:
        _write_tile(tmp_path / "opaque.png", (10, 20, 30))
        translucent = np.full((8, 8, 4), 255, dtype=np.uint8)
        translucent[0, 0, 3] = 200
        Image.fromarray(translucent).save(tmp_path / "translucent.png")

        assert len(PieceCatalog.load(tmp_path, allow_transparent=False)) == 1
        assert len(PieceCatalog.load(tmp_path, allow_transparent=True)) == 2

    def test_skips_non_images(self, bw_pieces: Path) -> None:
        (bw_pieces / "notes.txt").write_text("not an image")
        (bw_pieces / "subdir").mkdir()
        assert len(PieceCatalog.load(bw_pieces)) == 2

    def test_skips_decompression_bombs(
        self, bw_pieces: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _write_tile(bw_pieces / "c_huge.png", (90, 90, 90), size=(64, 64))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        catalog = PieceCatalog.load(bw_pieces)
        assert [p.source.name for p in catalog.pieces] == ["a_black.png", "b_white.png"]

    def test_strategy_rejection_skips(self, bw_pieces: Path) -> None:
        class RejectAll:
            def representative_color(self, tile: np.ndarray) -> None:
                return None

        catalog = PieceCatalog.load(bw_pieces, strategy=RejectAll())
        assert len(catalog) == 0

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(CatalogIOError):
            PieceCatalog.load(tmp_path / "nope")

    def test_add_and_clear(self, bw_pieces: Path) -> None:
        catalog = PieceCatalog(4)
        catalog.add(Piece(bw_pieces / "a_black.png", (0, 0, 0)))
        assert catalog.nearest_piece((30, 30, 30)).color == (0, 0, 0)
        catalog.clear()
        assert len(catalog) == 0
        assert catalog.palette.shape == (0, 3)
        with pytest.raises(EmptyCatalogError):
            catalog.nearest_piece((0, 0, 0))

    def test_palette_read_only(self, bw_pieces: Path) -> None:
        catalog = PieceCatalog.load(bw_pieces)
        with pytest.raises(ValueError):
            catalog.palette[0, 0] = 1


# -- Dithering ---------------------------------------------------------

class TestDithering:
    def test_error_conservation(self) -> None:
        assert sum(w for _, _, w in FS_WEIGHTS) == 16
        error = np.array([37.0, -12.5, 200.0])
        shares = diffuse_error(error)
        np.testing.assert_allclose(sum(s for _, _, s in shares), error)

    def test_output_in_palette(self, source: np.ndarray) -> None:
        palette = np.array([[0, 0, 0], [255, 255, 255], [255, 0, 0]], dtype=np.uint8)
        img = source.copy()
        apply_dithering(img, palette)
        used = {tuple(c) for c in img[..., :3].reshape(-1, 3)}
        assert used.issubset({tuple(c) for c in palette})

    def test_alpha_untouched(self, source: np.ndarray) -> None:
        palette = np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8)
        img = source.copy()
        apply_dithering(img, palette)
        np.testing.assert_array_equal(img[..., 3], source[..., 3])

    def test_border_pixels_do_not_diffuse(self) -> None:
        img = np.full((2, 2, 3), 100, dtype=np.uint8)
        palette = np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8)
        apply_dithering(img, palette)
        np.testing.assert_array_equal(img, np.zeros((2, 2, 3), dtype=np.uint8))

    def test_interior_pixel_diffuses(self) -> None:
        img = np.full((3, 3, 3), 100, dtype=np.uint8)
        palette = np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8)
        apply_dithering(img, palette)
        # (1, 1) pushes +100 * 7/16 right: 143 is nearer white
        assert tuple(img[1, 2]) == (255, 255, 255)

    def test_preserves_average_tone(self) -> None:
        img = np.full((32, 32, 3), 128, dtype=np.uint8)
        palette = np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8)
        apply_dithering(img, palette)
        inner = img[1:-1, 1:-1].astype(np.float64)
        assert 60 < inner.mean() < 200

    def test_empty_palette(self, source: np.ndarray) -> None:
        with pytest.raises(EmptyCatalogError):
            apply_dithering(source.copy(), np.zeros((0, 3), dtype=np.uint8))


# -- Compositor --------------------------------------------------------

class TestCompositor:
    def test_split_bands(self) -> None:
        for height, workers in [(7, 1), (7, 3), (7, 7), (3, 5), (0, 2)]:
            bands = split_bands(height, workers)
            assert len(bands) == workers
            assert bands[0][0] == 0
            assert bands[-1][1] == height
            for (_, end), (start, _) in zip(bands, bands[1:]):
                assert end == start

    def test_dimension_law(self, bw_pieces: Path) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=16)
        src = np.full((2, 2, 3), 128, dtype=np.uint8)
        out = Compositor(catalog, workers=2).compose(src)
        assert out.shape == (32, 32, 4)
        assert out.dtype == np.uint8

    def test_non_square_dimensions(self, bw_pieces: Path, source: np.ndarray) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=(3, 5))
        out = Compositor(catalog).compose(source)
        assert out.shape == (H * 5, W * 3, 4)

    def test_nearest_piece_pasted(self, bw_pieces: Path) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=16)
        src = np.array([[[10, 10, 10], [250, 250, 250]]], dtype=np.uint8)
        out = Compositor(catalog, workers=1).compose(src, dither=False)
        black = np.asarray(Image.open(bw_pieces / "a_black.png").convert("RGBA").resize((16, 16)))
        white = np.asarray(Image.open(bw_pieces / "b_white.png").convert("RGBA").resize((16, 16)))
        np.testing.assert_array_equal(out[:, :16], black)
        np.testing.assert_array_equal(out[:, 16:], white)

    def test_transparent_pixels_skipped(self, bw_pieces: Path, source: np.ndarray) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=4)
        out = Compositor(catalog).compose(source)
        assert not out[12:16, 16:20].any()
        assert out[0:4, 0:4, 3].min() == 255

    def test_thread_count_invariance(
        self, pattern_pieces: Path, source: np.ndarray,
    ) -> None:
        catalog = PieceCatalog.load(pattern_pieces, tile_size=8)
        single = Compositor(catalog, workers=1).compose(source, dither=True)
        for workers in (2, 3, H + 3):
            multi = Compositor(catalog, workers=workers).compose(source, dither=True)
            np.testing.assert_array_equal(single, multi)

    def test_source_not_mutated(self, bw_pieces: Path, source: np.ndarray) -> None:
        before = source.copy()
        Compositor(PieceCatalog.load(bw_pieces, tile_size=2)).compose(source, dither=True)
        np.testing.assert_array_equal(source, before)

    def test_empty_catalog(self, source: np.ndarray) -> None:
        with pytest.raises(EmptyCatalogError):
            Compositor(PieceCatalog(8)).compose(source)

    def test_zero_workers(self, bw_pieces: Path) -> None:
        with pytest.raises(ConfigError):
            Compositor(PieceCatalog.load(bw_pieces), workers=0)

    def test_worker_failure(self, bw_pieces: Path, source: np.ndarray) -> None:
        catalog = PieceCatalog.load(bw_pieces, tile_size=4)
        for piece in catalog.pieces:
            piece.source.unlink()
        with pytest.raises(WorkerFailure):
            Compositor(catalog, workers=3).compose(source)


# -- Image I/O ---------------------------------------------------------

class TestImageIO:
    def test_aspect(self) -> None:
        assert compute_target_size(1920, 1080, 64) == (64, 36)
        assert compute_target_size(1080, 1920, 64) == (36, 64)

    def test_decode_error(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"garbage")
        with pytest.raises(SourceDecodeError) as info:
            load_rgba(bad)
        assert info.value.path == bad

    def test_decompression_bomb(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        big = _write_tile(tmp_path / "big.png", (1, 2, 3), size=(64, 64))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        with pytest.raises(SourceDecodeError):
            load_rgba(big)

    def test_never_upscales(self) -> None:
        small = Image.new("RGB", (6, 3), (5, 5, 5))
        assert to_rgba_array(small, 48).shape == (3, 6, 4)
        assert to_rgba_array(Image.new("RGB", (96, 48)), 48).shape == (24, 48, 4)

    def test_frames_keep_timing(self, tmp_path: Path) -> None:
        frames = [
            np.full((4, 4, 4), (255, 0, 0, 255), dtype=np.uint8),
            np.full((4, 4, 4), (0, 0, 255, 255), dtype=np.uint8),
        ]
        path = tmp_path / "anim.gif"
        save_frames(frames, [120, 340], path)
        loaded, durations, _ = load_frames(path)
        assert len(loaded) == 2
        assert durations == [120, 340]


# -- CLI ---------------------------------------------------------------

class TestCLI:
    def test_single(self, bw_pieces: Path, tmp_path: Path) -> None:
        src = tmp_path / "src.png"
        Image.fromarray(np.full((3, 5, 3), 200, dtype=np.uint8)).save(src)
        out = tmp_path / "out" / "mosaic.png"
        result = CliRunner().invoke(app, [
            "single", str(src), "-o", str(out), "-p", str(bw_pieces),
            "-t", "4", "-w", "2",
        ])
        assert result.exit_code == 0, result.output
        assert Image.open(out).size == (20, 12)

    def test_missing_pieces(self, tmp_path: Path) -> None:
        src = tmp_path / "src.png"
        Image.fromarray(np.zeros((2, 2, 3), dtype=np.uint8)).save(src)
        result = CliRunner().invoke(app, [
            "single", str(src), "-p", str(tmp_path / "missing"),
        ])
        assert result.exit_code == 1

    def test_min_score_rejecting_everything(self, tmp_path: Path) -> None:
        pieces = tmp_path / "noisy"
        pieces.mkdir()
        rng = np.random.default_rng(3)
        noise = rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8)
        Image.fromarray(noise).save(pieces / "noise.png")
        src = tmp_path / "src.png"
        Image.fromarray(np.zeros((2, 2, 3), dtype=np.uint8)).save(src)

        result = CliRunner().invoke(app, [
            "single", str(src), "-p", str(pieces), "-o", str(tmp_path / "out.png"),
            "-a", "kmeans", "--kmeans-iter", "2", "--kmeans-min-score", "0.1",
        ])
        assert result.exit_code == 1
        assert "--kmeans-min-score" in result.output
        assert not (tmp_path / "out.png").exists()

        cfg = MosaicConfig(
            algorithm="kmeans", cluster_iterations=2, cluster_min_score=0.1,
            pieces_dir=pieces,
        )
        with pytest.raises(ConfigError):
            _build(cfg)

    def test_empty_pieces_folder(self, tmp_path: Path) -> None:
        pieces = tmp_path / "empty"
        pieces.mkdir()
        with pytest.raises(EmptyCatalogError):
            _build(MosaicConfig(pieces_dir=pieces))

    def test_batch_mirrors_tree_and_keeps_frame_timing(
        self, bw_pieces: Path, tmp_path: Path,
    ) -> None:
        src_dir = tmp_path / "in"
        (src_dir / "sub").mkdir(parents=True)
        Image.fromarray(np.full((3, 4, 3), 30, dtype=np.uint8)).save(src_dir / "sub" / "x.png")
        frames = [
            np.full((3, 3, 4), (10, 10, 10, 255), dtype=np.uint8),
            np.full((3, 3, 4), (240, 240, 240, 255), dtype=np.uint8),
        ]
        save_frames(frames, [70, 90], src_dir / "anim.gif")
        (src_dir / "broken.png").write_bytes(b"not a png")
        out_dir = tmp_path / "out"

        result = CliRunner().invoke(app, [
            "batch", "-i", str(src_dir), "-o", str(out_dir), "-p", str(bw_pieces),
            "-t", "2", "-w", "2",
        ])
        # the broken file fails, the rest still convert
        assert result.exit_code == 1, result.output
        assert Image.open(out_dir / "sub" / "x_mosaic.png").size == (8, 6)
        mosaics, durations, _ = load_frames(out_dir / "anim_mosaic.gif")
        assert len(mosaics) == 2
        assert durations == [70, 90]
        assert mosaics[0].shape == (6, 6, 4)
        assert not (out_dir / "broken_mosaic.png").exists()
