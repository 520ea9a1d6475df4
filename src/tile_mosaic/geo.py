"""Slippy-map coordinate transforms between degrees and tile indices."""

import math

from tile_mosaic.exceptions import InvalidLatitude
from tile_mosaic.models import BoundingBox, TileRange

# atan(sinh(pi)) in degrees, the latitude of the top edge of tile row 0.
MAX_LATITUDE = 85.0511287798066


def longitude_to_tile_x(lon: float, zoom: int) -> int:
    """Return the tile column containing a longitude.

    lon = 180 lands on the last column instead of one past it.
    """
    n = 2**zoom
    x = math.floor((lon + 180.0) / 360.0 * n)
    return min(max(x, 0), n - 1)


def latitude_to_tile_y(lat: float, zoom: int) -> int:
    """Return the tile row containing a latitude.

    Raises:
        InvalidLatitude: If |lat| is at or beyond the Mercator limit.
    """
    if math.isnan(lat) or abs(lat) >= MAX_LATITUDE:
        raise InvalidLatitude(lat)
    lat_rad = math.radians(lat)
    n = 2**zoom
    y = math.floor(
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    )
    return min(max(y, 0), n - 1)


def bounding_box_to_tile_range(bbox: BoundingBox, zoom: int) -> TileRange:
    # Tile Y grows southwards, so the northern edge gives min_y.
    return TileRange(
        min_x=longitude_to_tile_x(bbox.min_lon, zoom),
        max_x=longitude_to_tile_x(bbox.max_lon, zoom),
        min_y=latitude_to_tile_y(bbox.max_lat, zoom),
        max_y=latitude_to_tile_y(bbox.min_lat, zoom),
        zoom=zoom,
    )


def tile_to_longitude(x: int, zoom: int) -> float:
    """Longitude of the western edge of tile column x."""
    return x / 2**zoom * 360.0 - 180.0


def tile_to_latitude(y: int, zoom: int) -> float:
    """Latitude of the northern edge of tile row y."""
    n = math.pi - 2.0 * math.pi * y / 2**zoom
    return math.degrees(math.atan(math.sinh(n)))


def tile_range_bounds(tile_range: TileRange) -> BoundingBox:
    """Geographic extent actually covered by a tile range."""
    zoom = tile_range.zoom
    return BoundingBox(
        min_lon=tile_to_longitude(tile_range.min_x, zoom),
        min_lat=tile_to_latitude(tile_range.max_y + 1, zoom),
        max_lon=tile_to_longitude(tile_range.max_x + 1, zoom),
        max_lat=tile_to_latitude(tile_range.min_y, zoom),
    )
