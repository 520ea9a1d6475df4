"""Persistent tile stores for the tile_mosaic cache.

A tile store is a key-value blob store: keys are relative, slash-separated
names derived from (provider, zoom, x, y) and values are the raw encoded tile
bytes. Entries are written once and never invalidated.

Three backends are provided:
- `FileSystemTileStore`: files under a local data folder, written atomically.
- `AzureBlobTileStore`: blobs in an Azure Blob Storage container.
- `MemoryTileStore`: a process-local dict, for tests and dry runs.
"""

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from tile_mosaic.config import AzureCacheSettings, CacheSettings
from tile_mosaic.exceptions import CachePersistError, ConfigurationError

logger = logging.getLogger(__name__)


def tile_key(provider: str, zoom: int, x: int, y: int) -> str:
    """Return the deterministic cache key of a tile."""
    return f"{provider}_z{zoom}/tile_{x}_{y}.png"


class TileStore(ABC):
    """Key-value byte store addressed by tile keys."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None if the key is absent."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Persist bytes under a key.

        Raises:
            CachePersistError: If the bytes could not be stored.
        """


class MemoryTileStore(TileStore):
    """Process-local store backed by a dict."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class FileSystemTileStore(TileStore):
    """Store tiles as files below a root folder.

    Writes go to a temporary file in the destination folder and are moved into
    place with `os.replace`, so concurrent readers never observe partial bytes.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / key

    def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def put(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        temp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
            ) as handle:
                temp_name = handle.name
                handle.write(data)
            os.replace(temp_name, path)
            temp_name = None
        except OSError as exception:
            raise CachePersistError(key, exception) from exception
        finally:
            if temp_name is not None and os.path.exists(temp_name):
                os.remove(temp_name)


class AzureBlobTileStore(TileStore):
    """Store tiles as blobs in an Azure Blob Storage container."""

    def __init__(self, settings: AzureCacheSettings) -> None:
        """Initialize the storage client.

        Args:
            settings: Connection string, container name and blob prefix.
        """
        self.settings = settings
        try:
            self.blob_service_client = BlobServiceClient.from_connection_string(
                self.settings.connection_string
            )
            self.container_client = self.blob_service_client.get_container_client(
                container=self.settings.container_name
            )
        except Exception as exception:
            logger.error(f"Failed to initialize Azure Storage client: {exception}")
            raise

    def blob_name(self, key: str) -> str:
        prefix = self.settings.prefix.strip("/")
        return f"{prefix}/{key}" if prefix else key

    def get(self, key: str) -> bytes | None:
        """Download a cached tile.

        Returns:
            The blob content, or None if the blob does not exist.
        """
        blob_name = self.blob_name(key)
        try:
            return self.container_client.download_blob(blob_name).readall()
        except ResourceNotFoundError:
            return None
        except Exception as exception:
            logger.error(f"Error downloading blob '{blob_name}': {exception}")
            raise

    def put(self, key: str, data: bytes) -> None:
        # Blob uploads are committed atomically by the service.
        blob_name = self.blob_name(key)
        try:
            blob_client = self.container_client.get_blob_client(blob=blob_name)
            blob_client.upload_blob(data, overwrite=True)
            logger.debug(f"Uploaded blob '{blob_name}'.")
        except Exception as exception:
            raise CachePersistError(key, exception) from exception


def build_tile_store(settings: CacheSettings) -> TileStore:
    """Create the tile store selected by the cache settings."""
    if settings.backend == "memory":
        return MemoryTileStore()
    if settings.backend == "azure":
        if settings.azure is None:
            raise ConfigurationError("Cache backend 'azure' requires cache.azure settings")
        return AzureBlobTileStore(settings.azure)
    root = settings.data_folder
    if not root.exists():
        root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created cache folder: {root}")
    return FileSystemTileStore(root)
