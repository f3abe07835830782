# core/storage.py
"""
Core Storage Utilities.

Blob storage for uploaded photos. The uploader only depends on the
``PhotoStorage`` protocol (``put(key, data) -> StoredObject``), so the
Supabase implementation below can be swapped for another provider or a fake
in tests.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from core.models import StoredObject
from core.supabase_client import get_supabase_client

logger = logging.getLogger("PhotoBridge_Core").getChild("Storage")


class StorageError(Exception):
    """Raised when the storage provider rejects or fails a write."""
    pass


class PhotoStorage(Protocol):
    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        ...


class SupabasePhotoStorage:
    """Writes photos to a public Supabase Storage bucket (write-once, no upsert)."""

    def __init__(self, bucket: str, client_factory: Callable[..., Awaitable] = get_supabase_client):
        self.bucket = bucket
        self._client_factory = client_factory

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        try:
            supabase = await self._client_factory()
        except Exception as e:
            logger.error(f"Storage client unavailable for '{key}': {e}")
            raise StorageError(f"Storage client unavailable: {e}") from e

        file_options = {"content-type": content_type or "application/octet-stream", "upsert": "false"}

        def do_upload():
            bucket = supabase.storage.from_(self.bucket)
            bucket.upload(path=key, file=data, file_options=file_options)
            # Some storage3 versions append an empty query string
            return bucket.get_public_url(key).rstrip("?")

        logger.debug(f"Uploading {len(data)} bytes to bucket '{self.bucket}' as '{key}'")
        try:
            # Supabase SDK is synchronous, keep it off the event loop
            public_url = await asyncio.to_thread(do_upload)
        except Exception as e:
            logger.error(f"Upload of '{key}' to bucket '{self.bucket}' failed: {e}", exc_info=False)
            raise StorageError(f"Failed to upload {key}: {e}") from e

        logger.info(f"Stored '{key}' in bucket '{self.bucket}'")
        return StoredObject(key=key, url=public_url)
