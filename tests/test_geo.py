"""Tests for the slippy-map coordinate transforms."""

import pytest

from tile_mosaic.exceptions import InvalidArea, InvalidLatitude
from tile_mosaic.geo import (
    MAX_LATITUDE,
    bounding_box_to_tile_range,
    latitude_to_tile_y,
    longitude_to_tile_x,
    tile_range_bounds,
    tile_to_latitude,
    tile_to_longitude,
)
from tile_mosaic.models import BoundingBox, GeoPoint, TileRange


class TestLongitudeToTileX:
    """Tests for longitude to tile column conversion."""

    @pytest.mark.parametrize("zoom", [0, 1, 5, 12, 18])
    def test_monotonic_and_bounded(self, zoom: int) -> None:
        """Tile X never decreases with longitude and stays within the grid."""
        previous = -1
        lon = -180.0
        while lon < 180.0:
            x = longitude_to_tile_x(lon, zoom)
            assert 0 <= x < 2**zoom
            assert x >= previous
            previous = x
            lon += 0.37

    def test_known_values(self) -> None:
        """Test the edges and the prime meridian."""
        assert longitude_to_tile_x(-180.0, 3) == 0
        assert longitude_to_tile_x(0.0, 1) == 1
        assert longitude_to_tile_x(179.999, 3) == 7

    def test_antimeridian_stays_in_grid(self) -> None:
        """lon = 180 maps onto the last column."""
        assert longitude_to_tile_x(180.0, 4) == 15


class TestLatitudeToTileY:
    """Tests for latitude to tile row conversion."""

    @pytest.mark.parametrize("zoom", [0, 2, 9, 18])
    def test_non_increasing_and_bounded(self, zoom: int) -> None:
        """Tile Y never increases with latitude and stays within the grid."""
        previous = 2**zoom
        lat = -85.0
        while lat < 85.0:
            y = latitude_to_tile_y(lat, zoom)
            assert 0 <= y < 2**zoom
            assert y <= previous
            previous = y
            lat += 0.41

    def test_equator(self) -> None:
        """The equator is the boundary between the two middle rows."""
        assert latitude_to_tile_y(0.0, 1) == 1
        assert latitude_to_tile_y(0.001, 1) == 0

    @pytest.mark.parametrize("lat", [85.06, -85.06, 90.0, -90.0, MAX_LATITUDE, float("nan")])
    def test_outside_mercator_range(self, lat: float) -> None:
        """Latitudes at or beyond the Mercator limit are rejected."""
        with pytest.raises(InvalidLatitude):
            latitude_to_tile_y(lat, 10)

    def test_invalid_latitude_is_value_error(self) -> None:
        """InvalidLatitude can be caught as a ValueError."""
        with pytest.raises(ValueError):
            latitude_to_tile_y(89.0, 3)


class TestBoundingBoxToTileRange:
    """Tests for bounding box to tile range conversion."""

    def test_los_angeles_zoom_18(self) -> None:
        """A ~1km box in downtown Los Angeles at zoom 18."""
        bbox = BoundingBox(-118.2537, 34.0422, -118.2437, 34.0522)
        tile_range = bounding_box_to_tile_range(bbox, 18)

        assert tile_range == TileRange(
            min_x=44962, max_x=44969, min_y=104672, max_y=104681, zoom=18
        )
        assert tile_range.width == 8
        assert tile_range.height == 10

    @pytest.mark.parametrize(
        "bbox",
        [
            BoundingBox(-180.0, -85.0, 179.9, 85.0),
            BoundingBox(10.0, 10.0, 10.0, 10.0),
            BoundingBox(-0.5, -0.5, 0.5, 0.5),
            BoundingBox(139.69, 35.68, 139.70, 35.69),
        ],
    )
    @pytest.mark.parametrize("zoom", [0, 3, 11, 19])
    def test_min_not_above_max(self, bbox: BoundingBox, zoom: int) -> None:
        """Well-formed boxes always give well-formed ranges."""
        tile_range = bounding_box_to_tile_range(bbox, zoom)
        assert tile_range.min_x <= tile_range.max_x
        assert tile_range.min_y <= tile_range.max_y

    def test_from_points_orders_corners(self) -> None:
        """Corners can be given in any order."""
        bbox = BoundingBox.from_points(
            GeoPoint(lat=34.06384, lon=-118.28422), GeoPoint(lat=34.03518, lon=-118.2389)
        )
        assert bbox.as_list() == [-118.28422, 34.03518, -118.2389, 34.06384]

    def test_malformed_bbox(self) -> None:
        """min greater than max raises InvalidArea."""
        with pytest.raises(InvalidArea):
            BoundingBox(10.0, 0.0, 5.0, 1.0)
        with pytest.raises(InvalidArea):
            BoundingBox(0.0, 10.0, 1.0, 5.0)


class TestInverseTransforms:
    """Tests for tile index to degree conversion."""

    def test_tile_corners(self) -> None:
        """Tile edges at zoom 1."""
        assert tile_to_longitude(0, 1) == -180.0
        assert tile_to_longitude(1, 1) == 0.0
        assert tile_to_latitude(1, 1) == pytest.approx(0.0, abs=1e-9)
        assert tile_to_latitude(0, 1) == pytest.approx(MAX_LATITUDE, abs=1e-9)

    def test_range_bounds_contain_source_box(self) -> None:
        """The covered extent encloses the requested box."""
        bbox = BoundingBox(-118.2537, 34.0422, -118.2437, 34.0522)
        covered = tile_range_bounds(bounding_box_to_tile_range(bbox, 16))
        assert covered.min_lon <= bbox.min_lon
        assert covered.max_lon >= bbox.max_lon
        assert covered.min_lat <= bbox.min_lat
        assert covered.max_lat >= bbox.max_lat
