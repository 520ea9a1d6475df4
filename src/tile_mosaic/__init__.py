"""Large map image capture from slippy-map tiles."""

from .backend.composer import MosaicComposer, MosaicResult
from .backend.fetcher import TileFetcher
from .backend.service import MosaicService
from .backend.storage import AzureBlobTileStore, FileSystemTileStore, MemoryTileStore
from .config import CacheSettings, MosaicSettings, ProviderSettings, Settings, get_settings
from .exceptions import (
    AreaTooLarge,
    CachePersistError,
    ComposeError,
    InvalidArea,
    InvalidLatitude,
    TileFetchError,
    TileMosaicError,
)
from .geo import bounding_box_to_tile_range, latitude_to_tile_y, longitude_to_tile_x
from .grid import compute_tile_count, enforce_limit, expand_to_grid
from .logger import configure_logging
from .models import Area, AreaResult, BoundingBox, CacheStats, GeoPoint, TileRange

__all__ = [
    "Area",
    "AreaResult",
    "AreaTooLarge",
    "AzureBlobTileStore",
    "BoundingBox",
    "CachePersistError",
    "CacheSettings",
    "CacheStats",
    "ComposeError",
    "FileSystemTileStore",
    "GeoPoint",
    "InvalidArea",
    "InvalidLatitude",
    "MemoryTileStore",
    "MosaicComposer",
    "MosaicResult",
    "MosaicService",
    "MosaicSettings",
    "ProviderSettings",
    "Settings",
    "TileFetchError",
    "TileFetcher",
    "TileMosaicError",
    "TileRange",
    "bounding_box_to_tile_range",
    "compute_tile_count",
    "configure_logging",
    "enforce_limit",
    "expand_to_grid",
    "get_settings",
    "latitude_to_tile_y",
    "longitude_to_tile_x",
]
