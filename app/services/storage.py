"""Object storage for audio chunks and combined recordings.

Two implementations of the same small contract:
- LocalChunkStore keeps objects under UPLOAD_DIR on the local disk
- SupabaseChunkStore talks to the Supabase Storage REST API over httpx

All methods receive the full object path; no prefix manipulation happens here.
"""

import copy
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.message = message
        self.path = path


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist."""


class ChunkStore(ABC):
    """Get/put contract over a content-addressable object store."""

    bucket: str | None = None

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Return the object's bytes.

        Raises:
            ObjectNotFoundError: If nothing is stored at ``path``.
            StorageError: On any other failure.
        """
        ...

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        """Store ``data`` at ``path``.

        With ``upsert=False`` an existing object is an error; with ``upsert=True`` it is replaced.

        Raises:
            StorageError: If the write fails.
        """
        ...

    def for_bucket(self, bucket: str) -> "ChunkStore":
        """Return a store reading and writing the named bucket."""
        if bucket == self.bucket:
            return self
        raise StorageError(f"Bucket {bucket} is not available")


class LocalChunkStore(ChunkStore):
    """Filesystem-backed store rooted at a directory.

    The root holds one bucket; other buckets are sibling directories named after them.
    """

    def __init__(self, root: str | os.PathLike[str], bucket: str | None = None):
        self._root = Path(root)
        self.bucket = bucket or get_settings().STORAGE_BUCKET

    def for_bucket(self, bucket: str) -> "LocalChunkStore":
        if bucket == self.bucket:
            return self
        if bucket in {"", ".", ".."} or "/" in bucket or "\\" in bucket:
            raise StorageError(f"Invalid bucket name: {bucket}")
        return LocalChunkStore(self._root.parent / bucket, bucket=bucket)

    def _resolve(self, path: str) -> Path:
        relative = Path(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid storage path: {path}", path=path)
        return self._root / relative

    def get(self, path: str) -> bytes:
        file_path = self._resolve(path)
        try:
            return file_path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(f"Object not found: {path}", path=path) from None
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}", path=path) from e

    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        mode = "wb" if upsert else "xb"
        try:
            with open(file_path, mode) as f:
                f.write(data)
        except FileExistsError:
            raise StorageError(f"Object already exists: {path}", path=path) from None
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", path=path) from e


class SupabaseChunkStore(ChunkStore):
    """Supabase Storage client.

    One httpx.Client is shared across calls; it is safe to use from the
    download worker threads.
    """

    def __init__(self, supabase_url: str, service_key: str, bucket: str, timeout: float = 60.0):
        self._base_url = supabase_url.rstrip("/")
        self.bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._client = httpx.Client(
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
            timeout=timeout,
        )

    def for_bucket(self, bucket: str) -> "SupabaseChunkStore":
        if bucket == self.bucket:
            return self
        other = copy.copy(self)
        other.bucket = bucket
        return other

    def _object_url(self, path: str) -> str:
        return f"{self._storage_url}/object/{self.bucket}/{path}"

    def get(self, path: str) -> bytes:
        try:
            response = self._client.get(self._object_url(path))
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {path}: {e}", path=path) from e

        # Supabase reports missing objects as 404, or as 400 with a not_found body.
        if response.status_code == 404 or (response.status_code == 400 and "not_found" in response.text):
            raise ObjectNotFoundError(f"Object not found: {path}", path=path)
        if response.status_code != 200:
            raise StorageError(f"Failed to download {path}: {response.status_code} {response.text}", path=path)
        return response.content

    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        try:
            response = self._client.post(
                self._object_url(path),
                content=data,
                headers={
                    "Content-Type": content_type,
                    "x-upsert": "true" if upsert else "false",
                },
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to upload {path}: {e}", path=path) from e

        if response.status_code != 200:
            raise StorageError(f"Failed to upload {path}: {response.status_code} {response.text}", path=path)

    def close(self) -> None:
        self._client.close()


_chunk_store: ChunkStore | None = None


def get_chunk_store() -> ChunkStore:
    """Get the configured chunk store.

    Returns:
        SupabaseChunkStore if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        LocalChunkStore rooted at UPLOAD_DIR otherwise.
    """
    global _chunk_store
    if _chunk_store is None:
        settings = get_settings()
        if settings.use_supabase_storage:
            _chunk_store = SupabaseChunkStore(
                supabase_url=settings.SUPABASE_URL,
                service_key=settings.SUPABASE_SERVICE_KEY,
                bucket=settings.STORAGE_BUCKET,
                timeout=settings.STORAGE_TIMEOUT_SECONDS,
            )
        else:
            logger.info("Supabase storage not configured - using local storage at %s", settings.UPLOAD_DIR)
            _chunk_store = LocalChunkStore(settings.UPLOAD_DIR, bucket=settings.STORAGE_BUCKET)
    return _chunk_store
