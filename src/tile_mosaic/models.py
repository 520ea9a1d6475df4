"""Data models for the tile_mosaic package.

Configuration-facing records (`GeoPoint`, `Area`, `AreaResult`) are Pydantic
models so they can be loaded and validated from settings. The tile-grid value
types (`BoundingBox`, `TileCoordinate`, `TileRange`) are frozen dataclasses
whose invariants raise `InvalidArea` directly.
"""

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tile_mosaic.exceptions import InvalidArea


class GeoPoint(BaseModel):
    """A geographic point in degrees.

    Attributes:
        lat: Latitude (-90.0 to 90.0).
        lon: Longitude (-180.0 to 180.0).
    """

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees.")
    lon: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees.")


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in longitude/latitude degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self) -> None:
        if self.min_lon > self.max_lon or self.min_lat > self.max_lat:
            raise InvalidArea(
                f"Malformed bounding box [{self.min_lon}, {self.min_lat}, "
                f"{self.max_lon}, {self.max_lat}]: min must not exceed max"
            )

    @classmethod
    def from_points(cls, point1: GeoPoint, point2: GeoPoint) -> "BoundingBox":
        """Build the bounding box spanned by two arbitrary corner points."""
        return cls(
            min_lon=min(point1.lon, point2.lon),
            min_lat=min(point1.lat, point2.lat),
            max_lon=max(point1.lon, point2.lon),
            max_lat=max(point1.lat, point2.lat),
        )

    def as_list(self) -> list[float]:
        return [self.min_lon, self.min_lat, self.max_lon, self.max_lat]


@dataclass(frozen=True)
class TileCoordinate:
    x: int
    y: int
    zoom: int

    def __post_init__(self) -> None:
        limit = 2**self.zoom
        if not (0 <= self.x < limit and 0 <= self.y < limit):
            raise InvalidArea(f"Tile {self.zoom}/{self.x}/{self.y} is outside the zoom grid")


@dataclass(frozen=True)
class TileRange:
    """Inclusive rectangle of tile indices at a single zoom level."""

    min_x: int
    max_x: int
    min_y: int
    max_y: int
    zoom: int

    def __post_init__(self) -> None:
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise InvalidArea(
                f"Malformed tile range X[{self.min_x} to {self.max_x}] "
                f"Y[{self.min_y} to {self.max_y}]"
            )

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def tile_count(self) -> int:
        return self.width * self.height

    def fits_zoom_grid(self) -> bool:
        """Whether every tile of the range exists at its zoom level."""
        limit = 2**self.zoom
        return self.min_x >= 0 and self.min_y >= 0 and self.max_x < limit and self.max_y < limit

    def coordinates(self) -> Iterator[tuple[int, int]]:
        """Yield (x, y) pairs in row-major order."""
        for y in range(self.min_y, self.max_y + 1):
            for x in range(self.min_x, self.max_x + 1):
                yield x, y

    def describe(self) -> str:
        return (
            f"X[{self.min_x} to {self.max_x}] ({self.width} tiles), "
            f"Y[{self.min_y} to {self.max_y}] ({self.height} tiles)"
        )


class Area(BaseModel):
    """A named capture area, given as two corner points or a bounding box.

    Attributes:
        name: Area name, used in the output file name.
        point1: First corner (any corner).
        point2: Opposite corner.
        bbox: Alternative form, [min_lon, min_lat, max_lon, max_lat].
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Area name.")
    point1: GeoPoint | None = Field(default=None, description="First corner point.")
    point2: GeoPoint | None = Field(default=None, description="Opposite corner point.")
    bbox: tuple[float, float, float, float] | None = Field(
        default=None, description="Bounding box as [min_lon, min_lat, max_lon, max_lat]."
    )

    @model_validator(mode="after")
    def _check_shape(self) -> "Area":
        has_points = self.point1 is not None and self.point2 is not None
        if has_points == (self.bbox is not None):
            raise ValueError(
                f"Area '{self.name}' needs either point1 and point2, or bbox (exactly one form)"
            )
        if self.bbox is None and (self.point1 is None) != (self.point2 is None):
            raise ValueError(f"Area '{self.name}' is missing one of point1/point2")
        return self

    def bounding_box(self) -> BoundingBox:
        """Resolve the area to a bounding box.

        Raises:
            InvalidArea: If the explicit bbox has min greater than max, or no
                complete form is set.
        """
        if self.bbox is not None:
            return BoundingBox(*self.bbox)
        if self.point1 is None or self.point2 is None:
            raise InvalidArea(f"Area '{self.name}' has neither a bbox nor both corner points")
        return BoundingBox.from_points(self.point1, self.point2)


@dataclass
class CacheStats:
    """Thread-safe hit/miss counters for one area."""

    hits: int = 0
    misses: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_percent(self) -> int:
        """Percentage of tiles served from the cache, rounded."""
        return round(self.hits / self.total * 100) if self.total else 0


class AreaResult(BaseModel):
    """Outcome of processing a single area.

    Attributes:
        name: Area name.
        success: Whether the final image was written.
        output_path: Path of the final image, when written.
        width_px: Final image width in pixels.
        height_px: Final image height in pixels.
        tile_count: Number of tiles in the final (possibly expanded) range.
        cache_hits: Tiles served from the cache.
        cache_misses: Tiles downloaded from the provider.
        error: Failure description, when unsuccessful.
    """

    name: str
    success: bool
    output_path: Path | None = None
    width_px: int = 0
    height_px: int = 0
    tile_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    error: str | None = None
