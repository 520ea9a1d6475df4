"""Configuration settings for the tile_mosaic application.

This module defines the settings for the capture pipeline: tile provider and
credentials, tile cache backend, mosaic geometry and concurrency, logging, and
the list of areas to capture. It uses Pydantic's BaseSettings so every value
can come from environment variables (prefix ``TILE_MOSAIC_``, nested with
``__``), a ``.env`` file, or a JSON configuration file.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tile_mosaic.exceptions import ConfigurationError
from tile_mosaic.models import Area

MAPBOX_TOKEN_PLACEHOLDER = "YOUR_MAPBOX_TOKEN_HERE"

ProviderName = Literal["esri", "esri-streets", "esri-topo", "mapbox", "geoapify", "osm"]


class ProviderSettings(BaseModel):
    """Tile provider selection and credentials.

    Attributes:
        name: Which provider variant serves the tiles.
        mapbox_token: Mapbox access token (mapbox only).
        mapbox_style: Mapbox tileset, e.g. 'satellite-v9' or 'satellite-streets-v12'.
        geoapify_key: Geoapify API key (geoapify only).
        geoapify_style: Geoapify style, e.g. 'osm-carto', 'osm-bright', 'klokantech-basic'.
        request_timeout: Per-request timeout in seconds.
        user_agent: User-Agent string sent with tile requests.
    """

    name: ProviderName = Field("esri-streets", description="Tile provider")
    mapbox_token: str = Field(MAPBOX_TOKEN_PLACEHOLDER, description="Mapbox access token")
    mapbox_style: str = Field("satellite-v9", description="Mapbox tileset style")
    geoapify_key: str = Field("", description="Geoapify API key")
    geoapify_style: str = Field("osm-carto", description="Geoapify map style")
    request_timeout: float = Field(30.0, gt=0, description="Request timeout in seconds")
    user_agent: str = Field("tile-mosaic/0.1", description="User-Agent string")

    @model_validator(mode="after")
    def _check_credentials(self) -> "ProviderSettings":
        if self.name == "mapbox" and (
            not self.mapbox_token or self.mapbox_token == MAPBOX_TOKEN_PLACEHOLDER
        ):
            raise ValueError("Provider 'mapbox' requires provider.mapbox_token to be set")
        if self.name == "geoapify" and not self.geoapify_key:
            raise ValueError("Provider 'geoapify' requires provider.geoapify_key to be set")
        return self

    @computed_field
    def headers(self) -> dict[str, str]:
        """Return the HTTP headers used for tile requests."""
        return {"User-Agent": self.user_agent, "Accept": "image/png,image/*;q=0.8,*/*;q=0.5"}


class AzureCacheSettings(BaseModel):
    """Azure Blob Storage connection details for the tile cache.

    Attributes:
        connection_string: The connection string for the storage account.
        container_name: The container holding cached tiles.
        prefix: Blob name prefix prepended to every tile key.
    """

    connection_string: str = Field(..., description="Azure Blob Storage connection string")
    container_name: str = Field(..., description="Container name")
    prefix: str = Field("tiles", description="Blob name prefix")


class CacheSettings(BaseModel):
    """Persistent tile cache settings.

    Attributes:
        backend: Storage backend for cached tiles.
        data_folder: Root folder for the filesystem cache and scratch space.
        azure: Azure settings, required when backend is 'azure'.
    """

    backend: Literal["filesystem", "azure", "memory"] = Field(
        "filesystem", description="Tile cache backend"
    )
    data_folder: Path = Field(Path("./data"), description="Folder to cache downloaded tiles")
    azure: AzureCacheSettings | None = Field(default=None, description="Azure cache settings")

    @model_validator(mode="after")
    def _check_backend(self) -> "CacheSettings":
        if self.backend == "azure" and self.azure is None:
            raise ValueError("Cache backend 'azure' requires cache.azure settings")
        return self


class MosaicSettings(BaseModel):
    """Mosaic geometry, safety limits and concurrency.

    Attributes:
        zoom: Zoom level; higher means more detail.
        tile_size: Edge length in pixels every tile is normalized to.
        use_3x3_grid: Capture the area plus its eight same-sized neighbours.
        max_tiles: Safety ceiling on the number of tiles per area.
        block_size: Tiles per block edge in the block tiling phase.
        memory_tile_threshold: Grids with at most this many tiles are
            composed on a single in-memory canvas.
        fetch_workers: Concurrent tile downloads.
        block_workers: Concurrent block compositions and row merges.
        strip_rows: Most pixel rows copied per merge step; steps are also
            capped at the byte size of the largest block.
        output_dir: Folder receiving the final images.
    """

    zoom: int = Field(18, ge=0, le=23, description="Zoom level")
    tile_size: int = Field(512, gt=0, description="Tile size in pixels")
    use_3x3_grid: bool = Field(True, description="Expand each area to a 3x3 grid")
    max_tiles: int = Field(50000, gt=0, description="Maximum tiles per area")
    block_size: int = Field(10, ge=1, description="Block edge length in tiles")
    memory_tile_threshold: int = Field(
        100, ge=0, description="Largest tile count composed fully in memory"
    )
    fetch_workers: int = Field(8, ge=1, description="Concurrent tile downloads")
    block_workers: int = Field(4, ge=1, description="Concurrent block/merge tasks")
    strip_rows: int = Field(1024, ge=1, description="Most pixel rows per merge copy step")
    output_dir: Path = Field(Path("."), description="Output folder for final images")


class LoggingSettings(BaseModel):
    """Logging configuration settings.

    Attributes:
        level: The logging level (e.g., INFO, DEBUG).
        format: The log message format string.
    """

    level: str = Field("INFO", description="Logging level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )


class Settings(BaseSettings):
    """Global application settings.

    Attributes:
        areas: Areas to capture, processed in order.
        provider: Tile provider settings.
        cache: Tile cache settings.
        mosaic: Mosaic geometry and concurrency settings.
        logging: Logging configuration settings.
    """

    areas: list[Area] = Field(default_factory=list)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    mosaic: MosaicSettings = Field(default_factory=MosaicSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="TILE_MOSAIC_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings, optionally overlaying a JSON configuration file.

    Values in the file take precedence over environment variables.

    Args:
        config_path: Optional path to a JSON file shaped like Settings.

    Returns:
        The loaded Settings instance.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    if config_path is None:
        return Settings()
    path = Path(config_path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exception:
        raise ConfigurationError(f"Cannot read configuration file '{path}': {exception}") from exception
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a JSON object")
    return Settings(**data)


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the settings loaded from the environment."""
    return Settings()
