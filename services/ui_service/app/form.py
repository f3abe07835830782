# services/ui_service/app/form.py
"""
Client-side state of the photo upload page.

The page keeps an ordered list of picked files, each paired with a preview
handle. Previews are temporary copies of the picked files that the Gradio
gallery can serve; they are deleted as soon as the file leaves the selection.
"""
import logging
import mimetypes
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx
from pydantic import ValidationError

from core.models import UploadedPhoto, UploadResponse

logger = logging.getLogger("PhotoBridge_Core").getChild("UIService").getChild("UploadForm")

SUCCESS_MESSAGE = "Photos uploaded successfully"
FAILURE_MESSAGE = "Upload failed"


class PreviewStore:
    """Creates and releases preview copies of picked files."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or tempfile.mkdtemp(prefix="photo-previews-")
        os.makedirs(self.directory, exist_ok=True)

    def create(self, source_path: str) -> str:
        ext = os.path.splitext(source_path)[1]
        handle = os.path.join(self.directory, f"{uuid.uuid4().hex}{ext}")
        shutil.copyfile(source_path, handle)
        return handle

    def release(self, handle: str) -> None:
        try:
            os.remove(handle)
        except FileNotFoundError:
            logger.warning(f"Preview already released: {handle}")

    def close(self) -> None:
        """Deletes the preview directory and anything still in it."""
        shutil.rmtree(self.directory, ignore_errors=True)


@dataclass(frozen=True)
class SelectedPhoto:
    path: str
    name: str
    preview: str


class UploadForm:
    """Selection, preview and upload state for one page session."""

    def __init__(self, api_client: httpx.AsyncClient, previews: Optional[PreviewStore] = None, endpoint: str = "/photos"):
        self.api_client = api_client
        self.previews = previews or PreviewStore()
        self.endpoint = endpoint
        self.selection: List[SelectedPhoto] = []
        self.uploading = False
        self.message = ""
        self.message_is_error = False
        self.uploaded_photos: List[UploadedPhoto] = []

    @property
    def files(self) -> List[str]:
        return [item.path for item in self.selection]

    @property
    def preview_urls(self) -> List[str]:
        return [item.preview for item in self.selection]

    def select(self, paths: Optional[Sequence[str]]) -> None:
        """Replaces the selection with ``paths``; an empty pick changes nothing."""
        if not paths:
            return
        self._release_all()
        self.selection = [
            SelectedPhoto(path=path, name=os.path.basename(path), preview=self.previews.create(path))
            for path in paths
        ]
        logger.debug(f"Selected {len(self.selection)} photo(s).")

    def remove(self, index: int) -> None:
        if not self.selection or not 0 <= index < len(self.selection):
            return
        removed = self.selection[index]
        self.selection = [item for i, item in enumerate(self.selection) if i != index]
        self.previews.release(removed.preview)
        logger.debug(f"Removed photo {index} ({removed.name}); {len(self.selection)} left.")

    def clear(self) -> None:
        self._release_all()
        self.selection = []

    def close(self) -> None:
        """Ends the session: releases the selection and drops the preview directory."""
        self.clear()
        self.previews.close()
        logger.debug("Upload form closed.")

    def _release_all(self) -> None:
        for item in self.selection:
            self.previews.release(item.preview)

    async def upload(self) -> None:
        """Sends the whole selection in one multipart request to the uploader service."""
        if not self.selection or self.uploading:
            return

        self.uploading = True
        self.message = ""
        self.message_is_error = False
        self.uploaded_photos = []

        try:
            result = await self._post_selection()
            if result.success and result.photos is not None:
                self.message = SUCCESS_MESSAGE
                self.uploaded_photos = list(result.photos)
                self.clear()
                logger.info(f"Uploaded {len(self.uploaded_photos)} photo(s).")
            else:
                self._fail(result.error or FAILURE_MESSAGE)
        except (httpx.HTTPError, ValidationError, ValueError, OSError) as e:
            logger.error(f"Upload error: {e}", exc_info=False)
            self._fail(str(e) or FAILURE_MESSAGE)
        finally:
            self.uploading = False

    def _fail(self, message: str) -> None:
        self.message = message
        self.message_is_error = True

    async def _post_selection(self) -> UploadResponse:
        files = []
        for item in self.selection:
            with open(item.path, "rb") as f:
                content = f.read()
            content_type = mimetypes.guess_type(item.name)[0] or "application/octet-stream"
            files.append(("photos", (item.name, content, content_type)))
        response = await self.api_client.post(self.endpoint, files=files)
        # Error statuses still carry the JSON envelope
        return UploadResponse.model_validate(response.json())


def discard_form(form: Optional[UploadForm]) -> None:
    """Session teardown hook: a form that was never created has nothing to clean up."""
    if form is not None:
        form.close()
