"""Backend package for tile_mosaic."""

from .composer import MosaicComposer, MosaicResult
from .fetcher import TileFetcher
from .providers import TileProvider, build_provider
from .service import MosaicService, results_frame
from .storage import (
    AzureBlobTileStore,
    FileSystemTileStore,
    MemoryTileStore,
    TileStore,
    build_tile_store,
)
from .workspace import ScopedWorkspace

__all__ = [
    "AzureBlobTileStore",
    "FileSystemTileStore",
    "MemoryTileStore",
    "MosaicComposer",
    "MosaicResult",
    "MosaicService",
    "ScopedWorkspace",
    "TileFetcher",
    "TileProvider",
    "TileStore",
    "build_provider",
    "build_tile_store",
    "results_frame",
]
