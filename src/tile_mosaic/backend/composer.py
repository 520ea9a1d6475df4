"""Out-of-core mosaic composition.

A tile grid is stitched in three phases so that very large mosaics (tens of
thousands of tiles) never need the whole image in memory:

1. Block tiling: the grid is split into blocks of at most B x B tiles. Each
   block's tiles are fetched concurrently, normalized to the configured tile
   size and pasted onto a block canvas, which is saved to the workspace as an
   uncompressed ``.npy`` artifact.
2. Row reduction: the blocks of each block row are merged pairwise, left to
   right, in a binary tree of ``ceil(log2 n)`` levels. An odd leftover is
   carried to the next level unmerged.
3. Column reduction: the row artifacts are merged the same way, vertically.

Every merge reads two artifacts memory-mapped and writes a new memory-mapped
artifact of exactly the combined size. Each copy step moves at most
``strip_rows`` pixel rows and never more bytes than the largest block, so no
in-memory buffer grows with the mosaic. The final artifact is then encoded to
the output file.

Grids with at most ``memory_tile_threshold`` tiles skip the merge tree and are
composed on a single in-memory canvas.
"""

import logging
import math
import os
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Literal, NamedTuple, TypeVar

import numpy as np
from PIL import Image, UnidentifiedImageError

from tile_mosaic.backend.workspace import ScopedWorkspace
from tile_mosaic.config import MosaicSettings
from tile_mosaic.exceptions import ComposeError
from tile_mosaic.grid import Block, iter_blocks
from tile_mosaic.models import TileRange

logger = logging.getLogger(__name__)

TileLoader = Callable[[int, int, int], bytes]

CHANNELS = 4
T = TypeVar("T")
R = TypeVar("R")


class Artifact(NamedTuple):
    """An RGBA image persisted in the workspace as a ``.npy`` array."""

    path: Path
    width: int
    height: int


@dataclass
class MosaicResult:
    """Outcome of a composition.

    Attributes:
        path: The final image file.
        width: Width in pixels.
        height: Height in pixels.
        peak_buffer_bytes: Largest in-memory pixel buffer allocated.
        merge_count: Number of pairwise artifact merges performed.
    """

    path: Path
    width: int
    height: int
    peak_buffer_bytes: int = 0
    merge_count: int = 0


class _BufferTracker:
    def __init__(self) -> None:
        self.peak = 0
        self.merges = 0
        self._lock = threading.Lock()

    def record(self, nbytes: int) -> None:
        with self._lock:
            self.peak = max(self.peak, nbytes)

    def count_merge(self) -> None:
        with self._lock:
            self.merges += 1


def reduction_levels(count: int) -> int:
    """Number of pairwise merge levels needed to reduce count artifacts to one."""
    return math.ceil(math.log2(count)) if count > 1 else 0


def _run_all(pool: ThreadPoolExecutor, func: Callable[[T], R], items: Iterable[T]) -> list[R]:
    """Run func over items on a pool, failing fast on the first exception.

    Results are returned in item order. On failure the pending tasks are
    cancelled and the first exception is raised.
    """
    futures: list[Future[R]] = [pool.submit(func, item) for item in items]
    done, pending = wait(futures, return_when=FIRST_EXCEPTION)
    for future in futures:
        if future in done and future.exception() is not None:
            for other in pending:
                other.cancel()
            wait(pending)
            raise future.exception()  # type: ignore[misc]
    return [future.result() for future in futures]


class MosaicComposer:
    """Assemble a uniform tile grid into one large raster.

    Attributes:
        tile_size: Edge length in pixels every tile is normalized to.
        block_size: Block edge length in tiles.
        memory_tile_threshold: Largest tile count composed in memory directly.
        fetch_workers: Concurrent tile loads.
        block_workers: Concurrent block compositions and row merges.
        strip_rows: Most pixel rows copied per step when merging; a step
            never copies more bytes than the largest block.
    """

    def __init__(
        self,
        tile_size: int,
        block_size: int = 10,
        memory_tile_threshold: int = 100,
        fetch_workers: int = 8,
        block_workers: int = 4,
        strip_rows: int = 1024,
    ) -> None:
        if tile_size <= 0:
            raise ValueError(f"Tile size must be positive, got {tile_size}")
        self.tile_size = tile_size
        self.block_size = block_size
        self.memory_tile_threshold = memory_tile_threshold
        self.fetch_workers = fetch_workers
        self.block_workers = block_workers
        self.strip_rows = strip_rows

    @classmethod
    def from_settings(cls, settings: MosaicSettings) -> "MosaicComposer":
        return cls(
            tile_size=settings.tile_size,
            block_size=settings.block_size,
            memory_tile_threshold=settings.memory_tile_threshold,
            fetch_workers=settings.fetch_workers,
            block_workers=settings.block_workers,
            strip_rows=settings.strip_rows,
        )

    def compose(
        self,
        tile_range: TileRange,
        tile_loader: TileLoader,
        output_path: str | Path,
        workspace: ScopedWorkspace | None = None,
    ) -> MosaicResult:
        """Fetch and stitch every tile of a range into one image file.

        Args:
            tile_range: The tiles to stitch, row-major.
            tile_loader: Returns the encoded bytes of (x, y, zoom).
            output_path: Destination of the final image. Only written on success.
            workspace: Open scratch space for intermediates. A private one is
                created (and removed) next to the output when omitted.

        Returns:
            The final image path, its pixel size and buffer statistics.

        Raises:
            TileFetchError: If any tile cannot be loaded.
            ComposeError: If a tile cannot be decoded or artifacts cannot be merged.
        """
        output_path = Path(output_path)
        if workspace is None:
            with ScopedWorkspace(parent=output_path.parent, prefix=".mosaic_") as own:
                return self.compose(tile_range, tile_loader, output_path, own)

        tracker = _BufferTracker()
        width = tile_range.width * self.tile_size
        height = tile_range.height * self.tile_size

        with ThreadPoolExecutor(
            max_workers=self.fetch_workers, thread_name_prefix="tile-fetch"
        ) as fetch_pool:
            if tile_range.tile_count <= self.memory_tile_threshold:
                logger.info(f"   Stitching {tile_range.tile_count} tiles in memory...")
                whole = Block(0, 0, 0, 0, tile_range.width, tile_range.height)
                canvas = self._compose_block(whole, tile_range, tile_loader, fetch_pool, tracker)
                self._save_image(canvas, output_path)
            else:
                final = self._compose_out_of_core(
                    tile_range, tile_loader, workspace, fetch_pool, tracker
                )
                if (final.width, final.height) != (width, height):
                    raise ComposeError(
                        f"Mosaic is {final.width}x{final.height}, expected {width}x{height}"
                    )
                self._export(final, output_path)

        return MosaicResult(
            path=output_path,
            width=width,
            height=height,
            peak_buffer_bytes=tracker.peak,
            merge_count=tracker.merges,
        )

    def _compose_out_of_core(
        self,
        tile_range: TileRange,
        tile_loader: TileLoader,
        workspace: ScopedWorkspace,
        fetch_pool: ThreadPoolExecutor,
        tracker: _BufferTracker,
    ) -> Artifact:
        blocks = list(iter_blocks(tile_range.width, tile_range.height, self.block_size))
        block_rows = max(block.row for block in blocks) + 1
        block_cols = max(block.col for block in blocks) + 1
        step_bytes = max(block.width * block.height for block in blocks) * (
            self.tile_size * self.tile_size * CHANNELS
        )
        logger.info(
            f"   Stitching {tile_range.tile_count} tiles as {block_rows}x{block_cols} "
            f"blocks of up to {self.block_size}x{self.block_size} tiles..."
        )

        def build_block(block: Block) -> Artifact:
            canvas = self._compose_block(block, tile_range, tile_loader, fetch_pool, tracker)
            return self._save_artifact(canvas, workspace, tracker)

        def reduce_row(row: list[Artifact]) -> Artifact:
            return self._reduce(row, "x", workspace, tracker, step_bytes)

        with ThreadPoolExecutor(
            max_workers=self.block_workers, thread_name_prefix="mosaic-block"
        ) as block_pool:
            artifacts = _run_all(block_pool, build_block, blocks)
            rows = [
                [artifact for block, artifact in zip(blocks, artifacts) if block.row == row]
                for row in range(block_rows)
            ]
            logger.info(
                f"   Merging {block_cols} blocks per row "
                f"({reduction_levels(block_cols)} levels) across {block_rows} rows..."
            )
            row_artifacts = _run_all(block_pool, reduce_row, rows)

        logger.info(
            f"   Merging {block_rows} rows ({reduction_levels(block_rows)} levels) "
            "into final image..."
        )
        return self._reduce(row_artifacts, "y", workspace, tracker, step_bytes)

    def _compose_block(
        self,
        block: Block,
        tile_range: TileRange,
        tile_loader: TileLoader,
        fetch_pool: ThreadPoolExecutor,
        tracker: _BufferTracker,
    ) -> Image.Image:
        zoom = tile_range.zoom
        positions = [(i, j) for j in range(block.height) for i in range(block.width)]
        futures = {
            fetch_pool.submit(
                tile_loader,
                tile_range.min_x + block.x0 + i,
                tile_range.min_y + block.y0 + j,
                zoom,
            ): (i, j)
            for i, j in positions
        }
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in done:
            if future.exception() is not None:
                for other in pending:
                    other.cancel()
                raise future.exception()  # type: ignore[misc]

        size = (block.width * self.tile_size, block.height * self.tile_size)
        canvas = Image.new("RGBA", size, (0, 0, 0, 0))
        tracker.record(size[0] * size[1] * CHANNELS)
        for future, (i, j) in futures.items():
            x = tile_range.min_x + block.x0 + i
            y = tile_range.min_y + block.y0 + j
            tile = self._decode_tile(future.result(), x, y, zoom)
            canvas.paste(tile, (i * self.tile_size, j * self.tile_size))
        return canvas

    def _decode_tile(self, data: bytes, x: int, y: int, zoom: int) -> Image.Image:
        """Decode tile bytes to RGBA at exactly tile_size x tile_size."""
        try:
            with Image.open(BytesIO(data)) as raw:
                tile = raw.convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError) as exception:
            raise ComposeError(f"Cannot decode tile {zoom}/{x}/{y}: {exception}") from exception
        if tile.size != (self.tile_size, self.tile_size):
            tile = tile.resize((self.tile_size, self.tile_size), Image.Resampling.LANCZOS)
        return tile

    def _save_artifact(
        self, image: Image.Image, workspace: ScopedWorkspace, tracker: _BufferTracker
    ) -> Artifact:
        path = workspace.new_path("block", ".npy")
        pixels = np.asarray(image, dtype=np.uint8)
        tracker.record(pixels.nbytes)
        try:
            np.save(path, pixels)
        except OSError as exception:
            raise ComposeError(f"Cannot write block artifact {path}: {exception}") from exception
        return Artifact(path, image.width, image.height)

    def _reduce(
        self,
        artifacts: Sequence[Artifact],
        axis: Literal["x", "y"],
        workspace: ScopedWorkspace,
        tracker: _BufferTracker,
        step_bytes: int | None = None,
    ) -> Artifact:
        """Merge artifacts pairwise until one remains."""
        if not artifacts:
            raise ComposeError("Nothing to merge")
        level = list(artifacts)
        while len(level) > 1:
            merged = [
                self._merge_pair(level[i], level[i + 1], axis, workspace, tracker, step_bytes)
                for i in range(0, len(level) - 1, 2)
            ]
            if len(level) % 2:
                merged.append(level[-1])
            level = merged
        return level[0]

    def _merge_pair(
        self,
        first: Artifact,
        second: Artifact,
        axis: Literal["x", "y"],
        workspace: ScopedWorkspace,
        tracker: _BufferTracker,
        step_bytes: int | None = None,
    ) -> Artifact:
        """Join two artifacts side by side (x) or top to bottom (y).

        Pixels are copied in strips of at most ``strip_rows`` rows, further
        limited to ``step_bytes`` per strip when given.
        """
        if axis == "x":
            if first.height != second.height:
                raise ComposeError(
                    f"Cannot merge horizontally: heights {first.height} and {second.height} differ"
                )
            width, height = first.width + second.width, first.height
        else:
            if first.width != second.width:
                raise ComposeError(
                    f"Cannot merge vertically: widths {first.width} and {second.width} differ"
                )
            width, height = first.width, first.height + second.height

        step = self.rows_per_step(width, step_bytes)
        path = workspace.new_path(f"merge_{axis}", ".npy")
        try:
            left = self._open_artifact(first)
            right = self._open_artifact(second)
            out = np.lib.format.open_memmap(
                path, mode="w+", dtype=np.uint8, shape=(height, width, CHANNELS)
            )
            if axis == "x":
                for top in range(0, height, step):
                    bottom = min(top + step, height)
                    tracker.record((bottom - top) * width * CHANNELS)
                    out[top:bottom, : first.width] = left[top:bottom]
                    out[top:bottom, first.width :] = right[top:bottom]
            else:
                self._copy_rows(left, out, 0, step, tracker)
                self._copy_rows(right, out, first.height, step, tracker)
            out.flush()
            del out, left, right
        except (OSError, ValueError) as exception:
            raise ComposeError(
                f"Failed to merge {first.path.name} and {second.path.name}: {exception}"
            ) from exception

        for artifact in (first, second):
            artifact.path.unlink(missing_ok=True)
        tracker.count_merge()
        return Artifact(path, width, height)

    def rows_per_step(self, width: int, step_bytes: int | None = None) -> int:
        """Pixel rows of the given width copied per merge step."""
        rows = self.strip_rows
        if step_bytes is not None:
            rows = min(rows, max(1, step_bytes // (width * CHANNELS)))
        return rows

    def _copy_rows(
        self,
        source: np.ndarray,
        target: np.ndarray,
        offset: int,
        step: int,
        tracker: _BufferTracker,
    ) -> None:
        rows, width = source.shape[0], source.shape[1]
        for top in range(0, rows, step):
            bottom = min(top + step, rows)
            tracker.record((bottom - top) * width * CHANNELS)
            target[offset + top : offset + bottom] = source[top:bottom]

    def _open_artifact(self, artifact: Artifact) -> np.ndarray:
        pixels = np.load(artifact.path, mmap_mode="r")
        if pixels.shape != (artifact.height, artifact.width, CHANNELS):
            raise ComposeError(
                f"Artifact {artifact.path.name} has shape {pixels.shape}, "
                f"expected {(artifact.height, artifact.width, CHANNELS)}"
            )
        return pixels

    def _export(self, artifact: Artifact, output_path: Path) -> None:
        """Encode the final artifact without copying it into memory."""
        pixels = self._open_artifact(artifact)
        # A raw RGBA buffer with matching stride is mapped, not copied.
        image = Image.frombuffer(
            "RGBA", (artifact.width, artifact.height), pixels, "raw", "RGBA", 0, 1
        )
        try:
            self._save_image(image, output_path)
        finally:
            del image, pixels

    def _save_image(self, image: Image.Image, output_path: Path) -> None:
        """Write an image atomically; format follows the file suffix."""
        image_format = Image.registered_extensions().get(output_path.suffix.lower())
        if image_format is None:
            raise ComposeError(f"Unsupported output format: '{output_path.suffix}'")
        if image_format == "JPEG":
            image = image.convert("RGB")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = output_path.with_name(f".{output_path.name}.partial")
        try:
            image.save(temp_path, format=image_format)
            os.replace(temp_path, output_path)
        except (OSError, ValueError) as exception:
            raise ComposeError(f"Cannot write {output_path}: {exception}") from exception
        finally:
            temp_path.unlink(missing_ok=True)
