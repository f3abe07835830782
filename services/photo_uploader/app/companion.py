# services/photo_uploader/app/companion.py
import logging
from typing import List

import httpx

from core.models import CompanionPayload, UploadedPhoto

logger = logging.getLogger("PhotoBridge_Core").getChild("PhotoUploader").getChild("Companion")


class CompanionError(Exception):
    """The companion endpoint could not be reached or rejected the photos."""
    pass


class CompanionClient:
    """Forwards uploaded photo URLs to the local companion app (note-taking plugin bridge)."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, path: str = "/photos", timeout: float = 5.0):
        self.http_client = http_client
        self.url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
        self.timeout = timeout

    async def notify(self, photos: List[UploadedPhoto]) -> None:
        payload = CompanionPayload(photos=photos)
        logger.info(f"Sending {len(photos)} photo URL(s) to companion at {self.url}")
        try:
            response = await self.http_client.post(self.url, json=payload.model_dump(), timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try: downstream_error = e.response.json().get('error', e.response.text[:200])
            except Exception: downstream_error = e.response.text[:200]
            logger.error(f"Companion returned error ({e.response.status_code}): {downstream_error}")
            raise CompanionError(f"Companion error ({e.response.status_code})") from e
        except httpx.RequestError as e:
            # Connection refused, DNS failure, timeout
            logger.error(f"Could not reach companion at {self.url}: {type(e).__name__}: {e}")
            raise CompanionError(f"Companion unreachable at {self.url}") from e

        logger.info(f"Companion accepted photos (Status: {response.status_code})")
