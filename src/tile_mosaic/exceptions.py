"""Exception hierarchy for the tile_mosaic package.

Validation errors (`InvalidLatitude`, `InvalidArea`) and the pre-flight
`AreaTooLarge` are raised before any network I/O. `TileFetchError` and
`ComposeError` abort the mosaic of a single area. `CachePersistError` is never
raised out of a fetch; it is logged as a warning.
"""


class TileMosaicError(Exception):
    """Base class for all tile_mosaic errors."""


class ConfigurationError(TileMosaicError):
    """Raised when the settings cannot produce a working pipeline."""


class InvalidLatitude(TileMosaicError, ValueError):
    """Raised for latitudes outside the Web-Mercator valid range."""

    def __init__(self, lat: float) -> None:
        self.lat = lat
        super().__init__(f"Latitude {lat} is outside the Web-Mercator range")


class InvalidArea(TileMosaicError, ValueError):
    """Raised for a degenerate or malformed bounding box or tile range."""


class AreaTooLarge(TileMosaicError):
    """Raised when an area needs more tiles than the configured ceiling.

    Attributes:
        count: Number of tiles the area would require.
        ceiling: Maximum number of tiles allowed.
    """

    def __init__(self, count: int, ceiling: int, message: str | None = None) -> None:
        self.count = count
        self.ceiling = ceiling
        super().__init__(
            message or f"Area too large: requires {count:,} tiles, maximum allowed is {ceiling:,}"
        )


class TileFetchError(TileMosaicError):
    """Raised when a tile cannot be obtained from the provider.

    Attributes:
        x: Tile column.
        y: Tile row.
        zoom: Zoom level.
        cause: The underlying exception, if any.
    """

    def __init__(self, x: int, y: int, zoom: int, cause: BaseException | None = None) -> None:
        self.x = x
        self.y = y
        self.zoom = zoom
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to download tile {zoom}/{x}/{y}{detail}")


class CachePersistError(TileMosaicError):
    """Raised by a tile store when bytes cannot be persisted."""

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to cache tile '{key}'{detail}")


class ComposeError(TileMosaicError):
    """Raised when decoding, resampling or merging images fails."""
