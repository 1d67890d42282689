"""
Local Blob Store

Receipt images are written under a base directory, one file per key,
with a `<file>.meta.json` sidecar recording the content type.

Keys are relative paths such as `expenses/1718000000000-ab12cd34-receipt.png`;
anything that would escape the base directory is rejected.
"""

import json
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from expense_ledger.config import StorageSettings, get_settings
from expense_ledger.services.storage.interface import BlobStorageError, BlobStoreInterface


META_SUFFIX = ".meta.json"


class LocalBlobStore(BlobStoreInterface):
    """BlobStoreInterface on the local filesystem."""

    def __init__(self, base_dir: Optional[str] = None, settings: Optional[StorageSettings] = None):
        if base_dir is None:
            base_dir = (settings or get_settings().storage).blob_dir
        self._base_dir = Path(base_dir).resolve()

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise BlobStorageError(f"Invalid blob key: {key!r}")
        path = (self._base_dir / key).resolve()
        if self._base_dir not in path.parents:
            raise BlobStorageError(f"Invalid blob key: {key!r}")
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + META_SUFFIX)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
            async with aiofiles.open(self._meta_path(path), "w", encoding="utf-8") as f:
                await f.write(json.dumps({"content_type": content_type, "size_bytes": len(data)}))
        except OSError as e:
            raise BlobStorageError(f"Failed to store blob {key}: {e}") from e

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BlobStorageError(f"Failed to read blob {key}: {e}") from e

    async def get_content_type(self, key: str) -> Optional[str]:
        """Content type recorded when the blob was stored, if any."""
        path = self._meta_path(self._path_for(key))
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                meta = json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise BlobStorageError(f"Failed to read blob metadata {key}: {e}") from e
        return meta.get("content_type")

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        for target in (path, self._meta_path(path)):
            try:
                await aiofiles.os.remove(target)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise BlobStorageError(f"Failed to delete blob {key}: {e}") from e
