"""Shared fixtures for the tile_mosaic tests."""

from collections.abc import Callable
from pathlib import Path

import pytest
from mosaic_helpers import FakeProvider

from tile_mosaic.backend.storage import MemoryTileStore
from tile_mosaic.config import CacheSettings, MosaicSettings, Settings


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Fixture for a provider of 8px solid tiles."""
    return FakeProvider()


@pytest.fixture
def memory_store() -> MemoryTileStore:
    """Fixture for an empty in-memory tile store."""
    return MemoryTileStore()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Fixture building Settings rooted in a temporary folder."""

    def _make(**mosaic_overrides: object) -> Settings:
        mosaic = {
            "zoom": 4,
            "tile_size": 8,
            "use_3x3_grid": True,
            "max_tiles": 1000,
            "block_size": 4,
            "memory_tile_threshold": 0,
            "fetch_workers": 4,
            "block_workers": 2,
            "strip_rows": 16,
            "output_dir": tmp_path / "out",
        }
        mosaic.update(mosaic_overrides)
        return Settings(
            cache=CacheSettings(backend="memory", data_folder=tmp_path / "data"),
            mosaic=MosaicSettings(**mosaic),
        )

    return _make
