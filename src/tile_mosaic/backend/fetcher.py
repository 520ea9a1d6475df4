"""Cache-first tile fetching."""

import logging
from collections.abc import Callable

from tile_mosaic.backend.storage import TileStore, tile_key
from tile_mosaic.exceptions import CachePersistError, TileFetchError
from tile_mosaic.models import CacheStats

logger = logging.getLogger(__name__)

TileSource = Callable[[int, int, int], bytes]


class TileFetcher:
    """Resolve tile bytes from a persistent store, falling back to a provider.

    Attributes:
        provider: Capability returning the encoded bytes of (x, y, zoom).
        store: Persistent tile store used as the cache.
        provider_id: Provider identifier used in cache keys.
    """

    def __init__(
        self, provider: TileSource, store: TileStore, provider_id: str | None = None
    ) -> None:
        self.provider = provider
        self.store = store
        self.provider_id = provider_id or getattr(provider, "name", "custom")

    def fetch_tile(self, x: int, y: int, zoom: int, stats: CacheStats | None = None) -> bytes:
        """Return the encoded bytes of a tile.

        A cached copy is returned when present. Otherwise the provider is called
        once, with no retry, and the result is persisted on a best-effort basis.

        Args:
            x: Tile column.
            y: Tile row.
            zoom: Zoom level.
            stats: Counters updated with the hit or miss.

        Returns:
            The encoded tile bytes.

        Raises:
            TileFetchError: If the tile is not cached and the provider fails.
        """
        key = tile_key(self.provider_id, zoom, x, y)

        try:
            cached = self.store.get(key)
        except Exception as exception:
            logger.warning(f"Cache read failed for tile {zoom}/{x}/{y}, re-downloading: {exception}")
            cached = None
        if cached:
            if stats is not None:
                stats.record_hit()
            return cached

        if stats is not None:
            stats.record_miss()
        try:
            data = self.provider(x, y, zoom)
        except Exception as exception:
            logger.error(f"Failed to download tile {zoom}/{x}/{y} from {self.provider_id}")
            raise TileFetchError(x, y, zoom, exception) from exception
        if not data:
            raise TileFetchError(x, y, zoom, ValueError("empty tile payload"))

        try:
            self.store.put(key, data)
        except CachePersistError as exception:
            logger.warning(str(exception))
        except Exception as exception:
            logger.warning(str(CachePersistError(key, exception)))
        return data
