"""
Local filesystem object storage.

Objects live under a base directory and are addressed by URLs of the
form "<base_url>/<name>". Suitable for development and single-host setups.
"""

import logging
import os

from .base import StorageAdapter, with_unique_suffix
from ..exceptions import StorageError

logger = logging.getLogger("moderation_worker")


class LocalStorageAdapter(StorageAdapter):
    """Filesystem implementation of storage adapter"""

    def __init__(self, base_dir: str, base_url: str = "/blobs"):
        self.base_dir = os.path.abspath(base_dir)
        self.base_url = base_url.rstrip("/")

    def connect(self):
        """Ensure the base directory exists"""
        os.makedirs(self.base_dir, exist_ok=True)
        logger.info(f"Local storage ready at {self.base_dir}")

    def put(self, name: str, data: bytes, content_type: str,
            public: bool = True, unique_suffix: bool = True) -> str:
        key = with_unique_suffix(name) if unique_suffix else name
        path = self._path_for_key(key)

        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            # Exclusive create: a name collision is an error, never an overwrite
            with open(path, 'xb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Error storing object {key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes as {key} ({content_type})")
        return f"{self.base_url}/{key}"

    def fetch(self, url: str) -> bytes:
        path = self._path_for_key(self._key_from_url(url))
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Error reading object {url}: {e}") from e

    def delete(self, url: str) -> None:
        path = self._path_for_key(self._key_from_url(url))
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Object already deleted: {url}")
        except OSError as e:
            raise StorageError(f"Error deleting object {url}: {e}") from e
        logger.debug(f"Deleted object {url}")

    def _key_from_url(self, url: str) -> str:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            raise StorageError(f"URL does not belong to this storage: {url}")
        return url[len(prefix):]

    def _path_for_key(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, key))
        if os.path.commonpath([path, self.base_dir]) != self.base_dir:
            raise StorageError(f"Object key escapes storage directory: {key}")
        return path

