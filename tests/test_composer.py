"""Tests for the out-of-core mosaic composer."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from tile_mosaic.backend.composer import Artifact, MosaicComposer, reduction_levels
from tile_mosaic.backend.workspace import ScopedWorkspace
from tile_mosaic.exceptions import ComposeError, TileFetchError
from tile_mosaic.models import TileRange

from mosaic_helpers import FakeProvider, solid_tile, tile_color

TILE = 8


def assert_tiles_match(path: Path, tile_range: TileRange, tile_size: int = TILE) -> None:
    """Every tile-sized cell of the image equals its source tile's color."""
    with Image.open(path) as image:
        pixels = np.asarray(image.convert("RGBA"))
    assert pixels.shape == (tile_range.height * tile_size, tile_range.width * tile_size, 4)
    for j in range(tile_range.height):
        for i in range(tile_range.width):
            cell = pixels[j * tile_size : (j + 1) * tile_size, i * tile_size : (i + 1) * tile_size]
            expected = tile_color(tile_range.min_x + i, tile_range.min_y + j)
            assert (cell == np.array(expected, dtype=np.uint8)).all(), (i, j)


@pytest.fixture
def composer() -> MosaicComposer:
    """Fixture for a composer that always takes the out-of-core path."""
    return MosaicComposer(
        tile_size=TILE,
        block_size=2,
        memory_tile_threshold=0,
        fetch_workers=4,
        block_workers=2,
        strip_rows=5,
    )


class TestReductionLevels:
    """Tests for the merge tree depth."""

    @pytest.mark.parametrize(("count", "levels"), [(1, 0), (2, 1), (3, 2), (4, 2), (5, 3), (1000, 10)])
    def test_levels(self, count: int, levels: int) -> None:
        assert reduction_levels(count) == levels


class TestCompose:
    """Tests for composing tile grids."""

    @pytest.mark.parametrize(("width", "height"), [(1, 1), (2, 1), (5, 3), (3, 7), (6, 6)])
    def test_pixels_match_source_tiles(
        self,
        composer: MosaicComposer,
        fake_provider: FakeProvider,
        tmp_path: Path,
        width: int,
        height: int,
    ) -> None:
        """Each output cell equals its tile's solid color, with clean seams."""
        tile_range = TileRange(min_x=20, max_x=19 + width, min_y=40, max_y=39 + height, zoom=7)
        output = tmp_path / "mosaic.png"

        with ScopedWorkspace(parent=tmp_path, prefix="ws_") as workspace:
            result = composer.compose(tile_range, fake_provider, output, workspace)

        assert result.path == output
        assert (result.width, result.height) == (width * TILE, height * TILE)
        assert_tiles_match(output, tile_range)
        assert sorted(fake_provider.calls) == sorted(
            (x, y, 7) for x, y in tile_range.coordinates()
        )

    def test_in_memory_path_for_small_grids(
        self, fake_provider: FakeProvider, tmp_path: Path
    ) -> None:
        """Grids under the threshold are composed on one canvas without merges."""
        composer = MosaicComposer(tile_size=TILE, memory_tile_threshold=100)
        tile_range = TileRange(min_x=0, max_x=3, min_y=0, max_y=2, zoom=3)

        result = composer.compose(tile_range, fake_provider, tmp_path / "small.png")

        assert result.merge_count == 0
        assert result.peak_buffer_bytes == 4 * TILE * 3 * TILE * 4
        assert_tiles_match(tmp_path / "small.png", tile_range)

    def test_merge_tree_shape(
        self, composer: MosaicComposer, fake_provider: FakeProvider, tmp_path: Path
    ) -> None:
        """A 3x3 block grid needs two merges per row and two for the column."""
        tile_range = TileRange(min_x=0, max_x=5, min_y=0, max_y=5, zoom=3)
        result = composer.compose(tile_range, fake_provider, tmp_path / "tree.png")
        assert result.merge_count == 3 * 2 + 2

    def test_memory_stays_below_mosaic_size(
        self,
        composer: MosaicComposer,
        fake_provider: FakeProvider,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """No in-memory canvas ever reaches the size of the full mosaic."""
        tile_range = TileRange(min_x=0, max_x=6, min_y=0, max_y=5, zoom=3)
        full_pixels = tile_range.width * TILE * tile_range.height * TILE
        allocated: list[int] = []
        original_new = Image.new

        def tracking_new(mode: str, size: tuple[int, int], *args: object, **kwargs: object) -> Image.Image:
            allocated.append(size[0] * size[1])
            return original_new(mode, size, *args, **kwargs)

        monkeypatch.setattr(Image, "new", tracking_new)
        result = composer.compose(tile_range, fake_provider, tmp_path / "big.png")
        monkeypatch.undo()

        assert allocated
        assert max(allocated) < full_pixels
        assert result.peak_buffer_bytes < full_pixels * 4
        assert_tiles_match(tmp_path / "big.png", tile_range)

    @pytest.mark.parametrize("block_size", [10, 40])
    def test_short_wide_grid_stays_below_mosaic_size(
        self, fake_provider: FakeProvider, tmp_path: Path, block_size: int
    ) -> None:
        """A mosaic shorter than strip_rows is still merged in partial strips."""
        composer = MosaicComposer(
            tile_size=TILE, block_size=block_size, memory_tile_threshold=100
        )
        tile_range = TileRange(min_x=0, max_x=59, min_y=0, max_y=1, zoom=8)
        full_bytes = tile_range.width * TILE * tile_range.height * TILE * 4

        result = composer.compose(tile_range, fake_provider, tmp_path / "strip.png")

        assert composer.strip_rows >= result.height
        assert result.merge_count > 0
        assert result.peak_buffer_bytes < full_bytes
        assert_tiles_match(tmp_path / "strip.png", tile_range)

    def test_resamples_mismatched_tiles(self, composer: MosaicComposer, tmp_path: Path) -> None:
        """Tiles with a different native size are normalized to tile_size."""
        provider = FakeProvider(size=TILE * 2)
        tile_range = TileRange(min_x=0, max_x=2, min_y=0, max_y=2, zoom=2)

        result = composer.compose(tile_range, provider, tmp_path / "resampled.png")

        assert (result.width, result.height) == (3 * TILE, 3 * TILE)
        with Image.open(tmp_path / "resampled.png") as image:
            pixels = np.asarray(image.convert("RGBA")).astype(int)
        center = pixels[TILE + TILE // 2, TILE + TILE // 2]
        assert np.abs(center - np.array(tile_color(1, 1))).max() <= 1

    def test_fetch_failure_writes_nothing(
        self, composer: MosaicComposer, tmp_path: Path
    ) -> None:
        """A single failing tile aborts the mosaic and leaves no artifacts."""
        tile_range = TileRange(min_x=0, max_x=4, min_y=0, max_y=4, zoom=3)

        def loader(x: int, y: int, zoom: int) -> bytes:
            if (x, y) == (3, 3):
                raise TileFetchError(x, y, zoom, ConnectionError("reset"))
            return solid_tile(tile_color(x, y), TILE)

        output = tmp_path / "out" / "broken.png"
        workspace = ScopedWorkspace(parent=tmp_path / "scratch", prefix="ws_")
        with pytest.raises(TileFetchError):
            with workspace:
                composer.compose(tile_range, loader, output, workspace)

        assert not output.exists()
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_undecodable_tile(self, composer: MosaicComposer, tmp_path: Path) -> None:
        """Garbage bytes raise ComposeError and no output is written."""
        tile_range = TileRange(min_x=0, max_x=1, min_y=0, max_y=1, zoom=1)
        output = tmp_path / "garbage.png"
        with pytest.raises(ComposeError):
            composer.compose(tile_range, lambda x, y, z: b"not an image", output)
        assert not output.exists()
        assert [p for p in tmp_path.iterdir()] == []

    def test_private_workspace_removed(
        self, composer: MosaicComposer, fake_provider: FakeProvider, tmp_path: Path
    ) -> None:
        """Without a workspace, intermediates live next to the output and are removed."""
        tile_range = TileRange(min_x=0, max_x=4, min_y=0, max_y=2, zoom=3)
        composer.compose(tile_range, fake_provider, tmp_path / "only.png")
        assert [p.name for p in tmp_path.iterdir()] == ["only.png"]

    def test_unsupported_output_format(
        self, composer: MosaicComposer, fake_provider: FakeProvider, tmp_path: Path
    ) -> None:
        tile_range = TileRange(min_x=0, max_x=0, min_y=0, max_y=0, zoom=1)
        with pytest.raises(ComposeError):
            composer.compose(tile_range, fake_provider, tmp_path / "mosaic.unknown")


class TestRowsPerStep:
    """Tests for the size of merge copy steps."""

    def test_row_limit(self, composer: MosaicComposer) -> None:
        assert composer.rows_per_step(16) == 5

    def test_byte_limit(self) -> None:
        composer = MosaicComposer(tile_size=TILE)
        assert composer.rows_per_step(480, step_bytes=25600) == 13

    def test_at_least_one_row(self) -> None:
        composer = MosaicComposer(tile_size=TILE)
        assert composer.rows_per_step(10_000, step_bytes=100) == 1


class TestMergePair:
    """Tests for single artifact merges."""

    def _artifact(
        self, composer: MosaicComposer, workspace: ScopedWorkspace, width: int, height: int, value: int
    ) -> Artifact:
        image = Image.new("RGBA", (width, height), (value, value, value, 255))
        return composer._save_artifact(image, workspace, _Tracker())

    def test_horizontal_merge_dimensions(self, composer: MosaicComposer, tmp_path: Path) -> None:
        """Widths add up, heights must match, inputs are deleted."""
        with ScopedWorkspace(parent=tmp_path) as workspace:
            left = self._artifact(composer, workspace, 16, 8, 10)
            right = self._artifact(composer, workspace, 24, 8, 200)
            merged = composer._merge_pair(left, right, "x", workspace, _Tracker())

            pixels = np.load(merged.path)
            assert (merged.width, merged.height) == (40, 8)
            assert pixels.shape == (8, 40, 4)
            assert (pixels[:, :16, 0] == 10).all()
            assert (pixels[:, 16:, 0] == 200).all()
            assert not left.path.exists()
            assert not right.path.exists()

    def test_vertical_merge_dimensions(self, composer: MosaicComposer, tmp_path: Path) -> None:
        with ScopedWorkspace(parent=tmp_path) as workspace:
            top = self._artifact(composer, workspace, 16, 8, 1)
            bottom = self._artifact(composer, workspace, 16, 16, 2)
            merged = composer._merge_pair(top, bottom, "y", workspace, _Tracker())

            pixels = np.load(merged.path)
            assert pixels.shape == (24, 16, 4)
            assert (pixels[:8, :, 1] == 1).all()
            assert (pixels[8:, :, 1] == 2).all()

    def test_mismatched_edges(self, composer: MosaicComposer, tmp_path: Path) -> None:
        """Artifacts that do not share the other axis cannot be merged."""
        with ScopedWorkspace(parent=tmp_path) as workspace:
            a = self._artifact(composer, workspace, 16, 8, 1)
            b = self._artifact(composer, workspace, 16, 16, 2)
            with pytest.raises(ComposeError):
                composer._merge_pair(a, b, "x", workspace, _Tracker())


class _Tracker:
    def record(self, nbytes: int) -> None:
        pass

    def count_merge(self) -> None:
        pass
