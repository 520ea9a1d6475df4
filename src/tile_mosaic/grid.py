"""Grid expansion, tile-count safety checks and block partitioning."""

from collections.abc import Iterator
from typing import NamedTuple

from tile_mosaic.exceptions import AreaTooLarge
from tile_mosaic.models import TileRange

# Center block plus one same-sized neighbour on each side.
GRID_FACTOR = 3


class Block(NamedTuple):
    """A rectangular sub-grid of tiles, in grid-relative tile offsets."""

    row: int
    col: int
    x0: int
    y0: int
    width: int
    height: int


def expand_to_grid(tile_range: TileRange, factor: int = GRID_FACTOR) -> TileRange:
    """Surround a tile range with same-sized neighbour blocks.

    With the default factor of 3 the result is three times as wide and tall,
    with the input as its exact center block.

    Args:
        tile_range: The center range.
        factor: Blocks per side. Must be odd so the input stays centered.

    Returns:
        The expanded range at the same zoom level.
    """
    if factor < 1 or factor % 2 == 0:
        raise ValueError(f"Grid factor must be a positive odd number, got {factor}")
    pad = factor // 2
    pad_x = tile_range.width * pad
    pad_y = tile_range.height * pad
    return TileRange(
        min_x=tile_range.min_x - pad_x,
        max_x=tile_range.max_x + pad_x,
        min_y=tile_range.min_y - pad_y,
        max_y=tile_range.max_y + pad_y,
        zoom=tile_range.zoom,
    )


def compute_tile_count(tile_range: TileRange) -> int:
    return tile_range.width * tile_range.height


def estimate_disk_mb(tile_count: int, tile_size: int) -> int:
    """Rough uncompressed RGBA footprint of a mosaic, in MiB."""
    return round(tile_count * tile_size * tile_size * 4 / (1024 * 1024))


def enforce_limit(count: int, ceiling: int, tile_size: int | None = None) -> None:
    """Fail fast when an area needs more tiles than allowed.

    Raises:
        AreaTooLarge: If count exceeds ceiling.
    """
    if count <= ceiling:
        return
    message = f"Area too large: requires {count:,} tiles, maximum allowed is {ceiling:,}"
    if tile_size is not None:
        message += f" (~{estimate_disk_mb(count, tile_size)}MB disk space)"
    message += (
        ". Reduce the area size, lower the zoom level, disable the 3x3 grid "
        "or raise max_tiles."
    )
    raise AreaTooLarge(count, ceiling, message)


def iter_blocks(num_tiles_x: int, num_tiles_y: int, block_size: int) -> Iterator[Block]:
    """Partition a grid into blocks of at most block_size x block_size tiles.

    Blocks are yielded row-major; edge blocks may be narrower or shorter.
    """
    if block_size < 1:
        raise ValueError(f"Block size must be at least 1, got {block_size}")
    for row, y0 in enumerate(range(0, num_tiles_y, block_size)):
        for col, x0 in enumerate(range(0, num_tiles_x, block_size)):
            yield Block(
                row=row,
                col=col,
                x0=x0,
                y0=y0,
                width=min(block_size, num_tiles_x - x0),
                height=min(block_size, num_tiles_y - y0),
            )
