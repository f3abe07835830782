# services/photo_uploader/app/handler.py
import asyncio
import logging
import os
import time
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from core.models import CompanionPolicy, UploadedPhoto, UploadResponse
from core.storage import PhotoStorage
from .companion import CompanionClient, CompanionError

logger = logging.getLogger("PhotoBridge_Core").getChild("PhotoUploader").getChild("Handler")

NO_PHOTOS_MESSAGE = "No photos uploaded"
DEFAULT_ERROR_MESSAGE = "Failed to process photos"
COMPANION_FAILED_MESSAGE = "Failed to process photos in companion app"


class PhotoValidationError(Exception):
    """Request rejected before any storage call (HTTP 400)."""
    pass


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class StorageKeyFactory:
    """
    Builds storage keys as ``<millisecond timestamp>-<original name>``.

    Timestamps never repeat within the process: a millisecond equal to or
    earlier than the last one handed out is bumped to last + 1.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._last = 0

    def __call__(self, filename: str) -> str:
        stamp = max(self._clock(), self._last + 1)
        self._last = stamp
        return f"{stamp}-{base_filename(filename)}"


def base_filename(filename: Optional[str]) -> str:
    """Strips any client-side directory components from a file name."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "photo"


class PendingPhoto:
    """A validated upload waiting for its storage write."""
    __slots__ = ("name", "content_type", "data")

    def __init__(self, name: str, content_type: Optional[str], data: bytes):
        self.name = name
        self.content_type = content_type
        self.data = data


class PhotoUploadHandler:
    """
    Stores every photo of a request, then tells the companion app about them.

    Uploads run concurrently and are all-or-nothing from the caller's point of
    view: one failure fails the request, though already-stored objects stay in
    the bucket. What a companion failure means is decided by ``policy``.
    """

    def __init__(
        self,
        storage: PhotoStorage,
        companion: CompanionClient,
        policy: CompanionPolicy = CompanionPolicy.STRICT,
        allowed_extensions: Iterable[str] = (".jpg", ".jpeg", ".png", ".gif", ".webp"),
        max_photo_bytes: Optional[int] = None,
        key_factory: Optional[Callable[[str], str]] = None,
    ):
        self.storage = storage
        self.companion = companion
        self.policy = CompanionPolicy(policy)
        self.allowed_extensions = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in allowed_extensions}
        self.max_photo_bytes = max_photo_bytes
        self.key_factory = key_factory or StorageKeyFactory()

    async def handle(self, files: Sequence) -> Tuple[int, UploadResponse]:
        """
        Runs the whole upload workflow for the files of one request.

        ``files`` are upload objects with ``filename``, ``content_type`` and an
        async ``read()`` (Starlette ``UploadFile``). Returns the HTTP status and
        the response envelope; never raises.
        """
        # Browsers send an empty, nameless part when nothing was picked
        files = [f for f in files if getattr(f, "filename", None)]
        if not files:
            logger.warning("Upload request contained no photos.")
            return 400, UploadResponse.failure(NO_PHOTOS_MESSAGE)

        logger.info(f"Received upload request with {len(files)} photo(s).")
        try:
            pending = await self._read_and_validate(files)
            photos = await self.upload_all(pending)
            await self._notify_companion(photos)
        except PhotoValidationError as e:
            logger.warning(f"Upload rejected: {e}")
            return 400, UploadResponse.failure(str(e))
        except Exception as e:
            logger.error(f"Upload error: {e}", exc_info=True)
            return 500, UploadResponse.failure(str(e) or DEFAULT_ERROR_MESSAGE)

        logger.info(f"Upload request completed: {len(photos)} photo(s) stored.")
        return 200, UploadResponse.ok(photos)

    async def _read_and_validate(self, files: Sequence) -> List[PendingPhoto]:
        pending = []
        for upload in files:
            name = base_filename(upload.filename)
            content_type = getattr(upload, "content_type", None)
            if not self._is_image(name, content_type):
                raise PhotoValidationError(f"Unsupported file type: {name}")
            data = await upload.read()
            if self.max_photo_bytes is not None and len(data) > self.max_photo_bytes:
                raise PhotoValidationError(f"File too large: {name}")
            pending.append(PendingPhoto(name, content_type, data))
        return pending

    def _is_image(self, name: str, content_type: Optional[str]) -> bool:
        if content_type and content_type.lower().startswith("image/"):
            return True
        return os.path.splitext(name)[1].lower() in self.allowed_extensions

    async def upload_all(self, pending: Sequence[PendingPhoto]) -> List[UploadedPhoto]:
        """Uploads all photos concurrently; result order matches input order."""
        async def upload_one(photo: PendingPhoto) -> UploadedPhoto:
            key = self.key_factory(photo.name)
            stored = await self.storage.put(key, photo.data, photo.content_type)
            return UploadedPhoto(filename=key, url=stored.url)

        # No return_exceptions: the first failure fails the request
        return list(await asyncio.gather(*(upload_one(p) for p in pending)))

    async def _notify_companion(self, photos: List[UploadedPhoto]) -> None:
        try:
            await self.companion.notify(photos)
        except CompanionError as e:
            if self.policy is CompanionPolicy.STRICT:
                # Photos stay in storage; nothing is rolled back
                raise RuntimeError(COMPANION_FAILED_MESSAGE) from e
            logger.warning(f"Companion notification failed, photos are stored regardless: {e}")
