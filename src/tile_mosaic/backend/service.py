"""Module for the capture pipeline business logic.

This module provides `MosaicService`, which drives each configured area end to
end: bounding box to tile range, optional 3x3 expansion, the tile-count safety
check, cache-first fetching, out-of-core composition, and reporting. Areas are
processed one after another; a failing area is logged and skipped so the rest
of the batch still runs.
"""

import logging
import re
from collections.abc import Iterable
from functools import partial
from pathlib import Path

import pandas as pd

from tile_mosaic.backend.composer import MosaicComposer
from tile_mosaic.backend.fetcher import TileFetcher, TileSource
from tile_mosaic.backend.providers import build_provider
from tile_mosaic.backend.storage import TileStore, build_tile_store
from tile_mosaic.backend.workspace import ScopedWorkspace
from tile_mosaic.config import Settings
from tile_mosaic.exceptions import ConfigurationError, InvalidArea, TileMosaicError
from tile_mosaic.geo import bounding_box_to_tile_range
from tile_mosaic.grid import compute_tile_count, enforce_limit, estimate_disk_mb, expand_to_grid
from tile_mosaic.models import Area, AreaResult, CacheStats, TileRange

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


def safe_name(area_name: str) -> str:
    """Return an area name usable as a single file name component."""
    return _UNSAFE_CHARS.sub("_", area_name.strip()) or "area"


def output_filename(area_name: str, provider: str, zoom: int, suffix: str = ".png") -> str:
    """Return the file name of an area's final image."""
    return f"{safe_name(area_name)}_{provider}_zoom{zoom}{suffix}"


class MosaicService:
    """Core business logic for capturing map areas as single images.

    Attributes:
        settings (Settings): Application configuration settings.
        provider (TileSource): Remote tile capability.
        store (TileStore): Persistent tile cache.
        fetcher (TileFetcher): Cache-first tile fetcher.
        composer (MosaicComposer): Out-of-core mosaic compositor.
    """

    def __init__(
        self,
        settings: Settings,
        provider: TileSource | None = None,
        store: TileStore | None = None,
        composer: MosaicComposer | None = None,
    ) -> None:
        """Initialize the MosaicService.

        Args:
            settings: Application configuration.
            provider: Tile capability; built from settings.provider when omitted.
            store: Tile cache; built from settings.cache when omitted.
            composer: Compositor; built from settings.mosaic when omitted.
        """
        self.settings = settings
        if provider is None:
            provider = build_provider(settings.provider)
            provider_id = settings.provider.name
        else:
            provider_id = getattr(provider, "name", settings.provider.name)
        self.provider = provider
        self.store = store if store is not None else build_tile_store(settings.cache)
        self.fetcher = TileFetcher(self.provider, self.store, provider_id=provider_id)
        self.composer = composer or MosaicComposer.from_settings(settings.mosaic)

    @property
    def provider_id(self) -> str:
        return self.fetcher.provider_id

    def output_path_for(self, area: Area) -> Path:
        mosaic = self.settings.mosaic
        return mosaic.output_dir / output_filename(area.name, self.provider_id, mosaic.zoom)

    def plan_area(self, area: Area) -> TileRange:
        """Resolve an area to the tile range that will be fetched.

        Runs every pre-flight check; nothing is fetched here.

        Raises:
            InvalidLatitude: If a corner lies beyond the Mercator limit.
            InvalidArea: If the area is malformed or leaves the zoom grid.
            AreaTooLarge: If the final range exceeds the tile ceiling.
        """
        mosaic = self.settings.mosaic
        bbox = area.bounding_box()
        logger.info(
            f"Area bbox: [{bbox.min_lon:.6f}, {bbox.min_lat:.6f}, "
            f"{bbox.max_lon:.6f}, {bbox.max_lat:.6f}]"
        )

        center = bounding_box_to_tile_range(bbox, mosaic.zoom)
        logger.info(f"Center area: {center.describe()}")

        tile_range = expand_to_grid(center) if mosaic.use_3x3_grid else center
        tile_count = compute_tile_count(tile_range)
        enforce_limit(tile_count, mosaic.max_tiles, mosaic.tile_size)

        if not tile_range.fits_zoom_grid():
            raise InvalidArea(
                f"Tile range {tile_range.describe()} extends beyond the zoom {mosaic.zoom} grid"
            )

        if mosaic.use_3x3_grid:
            logger.info("Using 3x3 grid pattern:")
            logger.info(f"   Full area: {tile_range.describe()}")
        logger.info(
            f"   Estimated tiles: {tile_count:,} "
            f"(~{estimate_disk_mb(tile_count, mosaic.tile_size)}MB disk space)"
        )
        return tile_range

    def process_area(self, area: Area, stats: CacheStats | None = None) -> AreaResult:
        """Capture one area into its final image.

        Args:
            area: The area to capture.
            stats: Counters for this area's cache hits and misses.

        Returns:
            The successful AreaResult.

        Raises:
            TileMosaicError: On any validation, fetch or composition failure.
        """
        stats = stats if stats is not None else CacheStats()
        logger.info(f"Processing area: {area.name}...")
        tile_range = self.plan_area(area)
        output_path = self.output_path_for(area)

        logger.info(f"   Downloading {tile_range.tile_count:,} tiles...")
        with ScopedWorkspace(
            parent=self.settings.cache.data_folder, prefix=f"temp_{safe_name(area.name)}_"
        ) as workspace:
            result = self.composer.compose(
                tile_range,
                partial(self.fetcher.fetch_tile, stats=stats),
                output_path,
                workspace,
            )
            logger.info("   Cleaning up temporary files...")

        logger.info(
            f"   Cache: {stats.hits} from cache, {stats.misses} downloaded "
            f"({stats.hit_percent}% cached)"
        )
        logger.info(f"Map for {area.name} saved to {result.path}")
        logger.info(f"   Image size: {result.width}x{result.height} pixels")

        return AreaResult(
            name=area.name,
            success=True,
            output_path=result.path,
            width_px=result.width,
            height_px=result.height,
            tile_count=tile_range.tile_count,
            cache_hits=stats.hits,
            cache_misses=stats.misses,
        )

    def run(self, areas: Iterable[Area] | None = None) -> list[AreaResult]:
        """Capture every area in turn.

        A failing area is reported and the batch moves on to the next one.

        Args:
            areas: Areas to capture; defaults to settings.areas.

        Returns:
            One AreaResult per area, in order.

        Raises:
            ConfigurationError: If there is no area to process.
        """
        batch = list(self.settings.areas if areas is None else areas)
        if not batch:
            raise ConfigurationError("No areas configured; add at least one area")

        logger.info(f"Map Provider: {self.provider_id.upper()}")
        logger.info(
            f"Processing {len(batch)} area(s) at zoom level {self.settings.mosaic.zoom}"
        )

        results: list[AreaResult] = []
        for area in batch:
            stats = CacheStats()
            try:
                results.append(self.process_area(area, stats))
            except TileMosaicError as exception:
                logger.error(f"Failed to process {area.name}: {exception}")
                results.append(self._failure(area, stats, exception))
            except Exception as exception:
                logger.error(f"Failed to process {area.name}: {exception}", exc_info=True)
                results.append(self._failure(area, stats, exception))
        return results

    @staticmethod
    def _failure(area: Area, stats: CacheStats, exception: Exception) -> AreaResult:
        return AreaResult(
            name=area.name,
            success=False,
            cache_hits=stats.hits,
            cache_misses=stats.misses,
            error=f"{type(exception).__name__}: {exception}",
        )


def results_frame(results: Iterable[AreaResult]) -> pd.DataFrame:
    """Tabulate area results for reporting.

    Returns:
        DataFrame with one row per area and columns:
            - name (str), success (bool), size (str, "WxH" or empty),
            - tiles (int), cached (int), downloaded (int),
            - output (str), error (str).
    """
    columns = ["name", "success", "size", "tiles", "cached", "downloaded", "output", "error"]
    rows = [
        {
            "name": result.name,
            "success": result.success,
            "size": f"{result.width_px}x{result.height_px}" if result.success else "",
            "tiles": result.tile_count,
            "cached": result.cache_hits,
            "downloaded": result.cache_misses,
            "output": str(result.output_path) if result.output_path else "",
            "error": result.error or "",
        }
        for result in results
    ]
    return pd.DataFrame(rows, columns=columns)
