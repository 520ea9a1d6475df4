"""Tile providers: the remote capability (x, y, zoom) -> encoded tile bytes.

Every provider is a `TileProvider` variant. A variant only knows how to build
the URL of a tile; the HTTP request itself is shared. The variant is selected
once from the settings by `build_provider`.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

import requests

from tile_mosaic.config import ProviderSettings
from tile_mosaic.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ESRI_BASE_URL = "https://server.arcgisonline.com/ArcGIS/rest/services"


class TileProvider(ABC):
    """A remote source of slippy-map tiles.

    Attributes:
        name: Provider identifier, also used in cache keys and file names.
        native_tile_size: Pixel size of the tiles the server returns.
        attribution: Attribution text to show alongside the imagery.
    """

    name: str = "custom"
    native_tile_size: int = 256
    attribution: str | None = None

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    @abstractmethod
    def url_for(self, x: int, y: int, zoom: int) -> str:
        """Return the URL of a tile."""

    def __call__(self, x: int, y: int, zoom: int) -> bytes:
        """Download a tile.

        Raises:
            requests.RequestException: On network or HTTP errors.
            ValueError: If the server returned an empty body.
        """
        url = self.url_for(x, y, zoom)
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        if not response.content:
            raise ValueError(f"Empty response for tile {zoom}/{x}/{y}")
        return response.content


class EsriProvider(TileProvider):
    """ArcGIS Online map services; free, no API key required."""

    native_tile_size = 256
    attribution = "Powered by Esri"

    _SERVICES = {
        "esri": "World_Imagery",
        "esri-streets": "World_Street_Map",
        "esri-topo": "World_Topo_Map",
    }

    def __init__(self, name: str = "esri", **kwargs) -> None:
        super().__init__(**kwargs)
        if name not in self._SERVICES:
            raise ConfigurationError(f"Unknown ESRI map service: {name}")
        self.name = name
        self.service = self._SERVICES[name]

    def url_for(self, x: int, y: int, zoom: int) -> str:
        # ArcGIS tile endpoints take row before column.
        return f"{ESRI_BASE_URL}/{self.service}/MapServer/tile/{zoom}/{y}/{x}"


class MapboxProvider(TileProvider):
    """Mapbox raster tilesets, requested at @2x (512px)."""

    name = "mapbox"
    native_tile_size = 512
    attribution = "© Mapbox © OpenStreetMap"

    def __init__(self, token: str, style: str = "satellite-v9", **kwargs) -> None:
        super().__init__(**kwargs)
        self.token = token
        self.style = style

    def url_for(self, x: int, y: int, zoom: int) -> str:
        return (
            f"https://api.mapbox.com/v4/mapbox.{self.style}/{zoom}/{x}/{y}@2x.png"
            f"?access_token={self.token}"
        )


class GeoapifyProvider(TileProvider):
    """Geoapify OpenStreetMap-based raster styles."""

    name = "geoapify"
    native_tile_size = 256
    attribution = "Powered by Geoapify © OpenStreetMap contributors"

    def __init__(self, api_key: str, style: str = "osm-carto", **kwargs) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.style = style

    def url_for(self, x: int, y: int, zoom: int) -> str:
        return (
            f"https://maps.geoapify.com/v1/tile/{self.style}/{zoom}/{x}/{y}.png"
            f"?apiKey={self.api_key}"
        )


class OsmProvider(TileProvider):
    """OpenStreetMap standard tile layer."""

    name = "osm"
    native_tile_size = 256
    attribution = "© OpenStreetMap contributors"

    def url_for(self, x: int, y: int, zoom: int) -> str:
        return f"https://tile.openstreetmap.org/{zoom}/{x}/{y}.png"


def _make_session(settings: ProviderSettings) -> requests.Session:
    session = requests.Session()
    session.headers.update(settings.headers)
    return session


_FACTORIES: dict[str, Callable[[ProviderSettings, requests.Session], TileProvider]] = {
    "esri": lambda s, session: EsriProvider(
        "esri", session=session, timeout=s.request_timeout
    ),
    "esri-streets": lambda s, session: EsriProvider(
        "esri-streets", session=session, timeout=s.request_timeout
    ),
    "esri-topo": lambda s, session: EsriProvider(
        "esri-topo", session=session, timeout=s.request_timeout
    ),
    "mapbox": lambda s, session: MapboxProvider(
        s.mapbox_token, s.mapbox_style, session=session, timeout=s.request_timeout
    ),
    "geoapify": lambda s, session: GeoapifyProvider(
        s.geoapify_key, s.geoapify_style, session=session, timeout=s.request_timeout
    ),
    "osm": lambda s, session: OsmProvider(session=session, timeout=s.request_timeout),
}


def build_provider(settings: ProviderSettings) -> TileProvider:
    """Create the provider variant named in the settings."""
    factory = _FACTORIES.get(settings.name)
    if factory is None:
        raise ConfigurationError(f"Unknown provider: {settings.name}")
    provider = factory(settings, _make_session(settings))
    if provider.attribution:
        logger.info(f"Using {provider.name} tiles. Attribution: {provider.attribution}")
    return provider
