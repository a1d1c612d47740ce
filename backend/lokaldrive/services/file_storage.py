"""Blob storage on the local filesystem.

Blobs live flat under one directory, one file per storage key. Keys are
generated here, never overwritten and never reused; the metadata index maps
file ids to keys.
"""
import asyncio
import logging
import re
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path

import aiofiles
import aiofiles.os

from lokaldrive.errors import BlobNotFoundError, BlobStoreError, InvalidStorageKeyError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_NAME_HINT = 100
_MAX_KEY_ATTEMPTS = 5


def generate_storage_key(original_name: str) -> str:
    """Build '{epoch_ms}-{random}-{name hint}', e.g. '1718000000000-48213377-report.pdf'."""
    hint = _UNSAFE_CHARS.sub("_", original_name).strip("._") or "blob"
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}-{hint[-_MAX_NAME_HINT:]}"


class LocalFileStorage:
    """Handles blob create/read/delete on local disk.

    Operations on the same key are serialized; different keys run in parallel.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_users: dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, storage_key: str):
        lock = self._key_locks.setdefault(storage_key, asyncio.Lock())
        self._key_users[storage_key] = self._key_users.get(storage_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[storage_key] -= 1
            if not self._key_users[storage_key]:
                del self._key_users[storage_key]
                del self._key_locks[storage_key]

    def _path_for(self, storage_key: str) -> Path:
        if (
            not storage_key
            or storage_key in (".", "..")
            or "/" in storage_key
            or "\\" in storage_key
            or "\x00" in storage_key
        ):
            raise InvalidStorageKeyError(storage_key)
        return self.base_path / storage_key

    async def put(self, content: bytes, original_name: str) -> str:
        """Save blob bytes under a fresh key. Returns the storage key."""
        storage_key = ""
        for _ in range(_MAX_KEY_ATTEMPTS):
            storage_key = generate_storage_key(original_name)
            path = self._path_for(storage_key)
            async with self._locked(storage_key):
                try:
                    # "x" mode: never overwrite an existing blob
                    async with aiofiles.open(path, "xb") as f:
                        await f.write(content)
                except FileExistsError:
                    logger.warning("Storage key collision, regenerating: %s", storage_key)
                    continue
                except OSError as e:
                    logger.exception("Failed to write blob: %s", storage_key)
                    await self._discard_partial(path)
                    raise BlobStoreError(storage_key, "Failed to write blob") from e
            logger.info("Stored blob %s (%d bytes)", storage_key, len(content))
            return storage_key
        raise BlobStoreError(storage_key, "Could not allocate a unique storage key")

    async def _discard_partial(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to remove partially written blob: %s", path.name)

    async def remove(self, storage_key: str) -> None:
        """Delete a blob. Raises BlobNotFoundError if it is already gone."""
        path = self._path_for(storage_key)
        async with self._locked(storage_key):
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError as e:
                raise BlobNotFoundError(storage_key) from e
            except OSError as e:
                logger.exception("Failed to remove blob: %s", storage_key)
                raise BlobStoreError(storage_key, "Failed to remove blob") from e
        logger.info("Removed blob %s", storage_key)

    async def rollback_put(self, storage_key: str) -> None:
        """Delete a blob whose metadata insert failed.

        Best-effort: a failure is logged, not raised, because the caller is
        already propagating the insert error. reconcile() picks up whatever
        remains on the next start.
        """
        try:
            logger.warning("Rolling back upload, deleting blob: %s", storage_key)
            await self.remove(storage_key)
        except BlobNotFoundError:
            pass
        except BlobStoreError:
            logger.exception("Failed to rollback upload, orphaned blob: %s", storage_key)

    async def size_of(self, storage_key: str) -> int:
        path = self._path_for(storage_key)
        async with self._locked(storage_key):
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError as e:
                raise BlobNotFoundError(storage_key) from e
            except OSError as e:
                raise BlobStoreError(storage_key, "Failed to stat blob") from e
        return stat.st_size

    async def read(self, storage_key: str) -> bytes:
        path = self._path_for(storage_key)
        async with self._locked(storage_key):
            try:
                async with aiofiles.open(path, "rb") as f:
                    return await f.read()
            except FileNotFoundError as e:
                raise BlobNotFoundError(storage_key) from e
            except OSError as e:
                raise BlobStoreError(storage_key, "Failed to read blob") from e

    async def open(self, storage_key: str):
        """Open a blob for streaming. The handle stays readable if the blob is removed afterwards."""
        path = self._path_for(storage_key)
        async with self._locked(storage_key):
            try:
                return await aiofiles.open(path, "rb")
            except FileNotFoundError as e:
                raise BlobNotFoundError(storage_key) from e
            except OSError as e:
                raise BlobStoreError(storage_key, "Failed to open blob") from e

    async def list_keys(self) -> list[str]:
        """Every blob currently on disk, used by startup reconciliation."""
        def _scan() -> list[str]:
            return sorted(p.name for p in self.base_path.iterdir() if p.is_file())

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise BlobStoreError(str(self.base_path), "Failed to list blobs") from e
