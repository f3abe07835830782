import asyncio
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from services.photo_uploader.app.main import app, get_upload_handler, build_upload_handler
from services.photo_uploader.app.handler import (
    PhotoUploadHandler, StorageKeyFactory, base_filename,
    NO_PHOTOS_MESSAGE, COMPANION_FAILED_MESSAGE,
)
from services.photo_uploader.app.companion import CompanionClient, CompanionError
from core.config import Settings, settings
from core.models import CompanionPolicy, StoredObject, UploadedPhoto
from core.storage import StorageError


class FakeUpload:
    """Minimal stand-in for Starlette's UploadFile."""
    def __init__(self, filename, data=b"img", content_type="image/jpeg"):
        self.filename = filename
        self.content_type = content_type
        self._data = data

    async def read(self):
        return self._data


def make_storage(fail_on=None, delays=None):
    storage = AsyncMock()
    async def fake_put(key, data, content_type=None):
        name = key.split("-", 1)[1]
        if delays and name in delays:
            await asyncio.sleep(delays[name])
        if fail_on and name == fail_on:
            raise StorageError(f"Failed to upload {key}: quota exceeded")
        return StoredObject(key=key, url=f"https://cdn.test/photos/{key}")
    storage.put.side_effect = fake_put
    return storage


def make_handler(storage=None, companion=None, policy=CompanionPolicy.STRICT, clock=None, **kwargs):
    ticks = iter(range(1700000000000, 1700000001000))
    return PhotoUploadHandler(
        storage=storage or make_storage(),
        companion=companion or AsyncMock(spec=CompanionClient),
        policy=policy,
        key_factory=StorageKeyFactory(clock=clock or (lambda: next(ticks))),
        **kwargs,
    )


@pytest.fixture
def client():
    original_overrides = app.dependency_overrides.copy()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides = original_overrides


# --- Storage key generation ---
def test_key_factory_prefixes_timestamp():
    factory = StorageKeyFactory(clock=lambda: 1700000000123)
    assert factory("beach.jpg") == "1700000000123-beach.jpg"

def test_key_factory_never_repeats_within_same_millisecond():
    factory = StorageKeyFactory(clock=lambda: 1000)
    keys = [factory("same.jpg") for _ in range(3)]
    assert keys == ["1000-same.jpg", "1001-same.jpg", "1002-same.jpg"]

def test_key_factory_follows_clock_when_it_moves_forward():
    clock_values = iter([1000, 5000])
    factory = StorageKeyFactory(clock=lambda: next(clock_values))
    assert factory("a.jpg") == "1000-a.jpg"
    assert factory("a.jpg") == "5000-a.jpg"

def test_base_filename_strips_client_directories():
    assert base_filename("C:\\Users\\me\\Pictures\\cat.png") == "cat.png"
    assert base_filename("nested/dir/dog.jpg") == "dog.jpg"
    assert base_filename("") == "photo"


# --- Handler workflow ---
@pytest.mark.asyncio
async def test_handle_uploads_each_file_in_order_and_notifies_companion():
    storage = make_storage(delays={"first.jpg": 0.05, "second.png": 0.0})
    companion = AsyncMock(spec=CompanionClient)
    handler = make_handler(storage=storage, companion=companion)

    status, result = await handler.handle([FakeUpload("first.jpg"), FakeUpload("second.png", content_type="image/png")])

    assert status == 200
    assert result.success is True
    assert [p.filename for p in result.photos] == ["1700000000000-first.jpg", "1700000000001-second.png"]
    assert result.photos[0].url == "https://cdn.test/photos/1700000000000-first.jpg"
    assert storage.put.await_count == 2
    companion.notify.assert_awaited_once_with(result.photos)

@pytest.mark.asyncio
async def test_handle_passes_bytes_and_content_type_to_storage():
    storage = make_storage()
    handler = make_handler(storage=storage)
    await handler.handle([FakeUpload("pic.png", data=b"\x89PNG", content_type="image/png")])
    storage.put.assert_awaited_once_with("1700000000000-pic.png", b"\x89PNG", "image/png")

@pytest.mark.asyncio
async def test_handle_no_files_is_client_error_without_storage_calls():
    storage = make_storage()
    companion = AsyncMock(spec=CompanionClient)
    handler = make_handler(storage=storage, companion=companion)

    status, result = await handler.handle([])

    assert status == 400
    assert result.success is False
    assert result.error == NO_PHOTOS_MESSAGE
    storage.put.assert_not_awaited()
    companion.notify.assert_not_awaited()

@pytest.mark.asyncio
async def test_handle_ignores_nameless_parts():
    handler = make_handler()
    status, result = await handler.handle([FakeUpload("", data=b"")])
    assert status == 400
    assert result.error == NO_PHOTOS_MESSAGE

@pytest.mark.asyncio
async def test_handle_storage_failure_fails_whole_request():
    storage = make_storage(fail_on="bad.jpg")
    companion = AsyncMock(spec=CompanionClient)
    handler = make_handler(storage=storage, companion=companion)

    status, result = await handler.handle([FakeUpload("good.jpg"), FakeUpload("bad.jpg")])

    assert status == 500
    assert result.success is False
    assert result.photos is None
    assert "quota exceeded" in result.error
    companion.notify.assert_not_awaited()

@pytest.mark.asyncio
async def test_handle_rejects_non_image_before_any_upload():
    storage = make_storage()
    handler = make_handler(storage=storage)

    status, result = await handler.handle([FakeUpload("ok.jpg"), FakeUpload("notes.txt", content_type="text/plain")])

    assert status == 400
    assert result.error == "Unsupported file type: notes.txt"
    storage.put.assert_not_awaited()

@pytest.mark.asyncio
async def test_handle_falls_back_to_extension_allow_list():
    handler = make_handler()
    status, result = await handler.handle([FakeUpload("raw.heic", content_type="application/octet-stream")])
    assert status == 400 # .heic is not in the default allow-list

    handler = make_handler(allowed_extensions=[".heic"])
    status, result = await handler.handle([FakeUpload("raw.heic", content_type="application/octet-stream")])
    assert status == 200

@pytest.mark.asyncio
async def test_handle_rejects_oversized_photo():
    storage = make_storage()
    handler = make_handler(storage=storage, max_photo_bytes=3)

    status, result = await handler.handle([FakeUpload("big.jpg", data=b"abcd")])

    assert status == 400
    assert result.error == "File too large: big.jpg"
    storage.put.assert_not_awaited()

@pytest.mark.asyncio
async def test_strict_policy_companion_failure_fails_request_but_keeps_uploads():
    storage = make_storage()
    companion = AsyncMock(spec=CompanionClient)
    companion.notify.side_effect = CompanionError("Companion error (500)")
    handler = make_handler(storage=storage, companion=companion, policy=CompanionPolicy.STRICT)

    status, result = await handler.handle([FakeUpload("a.jpg"), FakeUpload("b.jpg")])

    assert status == 500
    assert result.success is False
    assert result.error == COMPANION_FAILED_MESSAGE
    assert storage.put.await_count == 2

@pytest.mark.asyncio
async def test_lenient_policy_companion_timeout_still_succeeds():
    companion = AsyncMock(spec=CompanionClient)
    companion.notify.side_effect = CompanionError("Companion unreachable at http://localhost:3001/photos")
    handler = make_handler(companion=companion, policy=CompanionPolicy.LENIENT)

    status, result = await handler.handle([FakeUpload("a.jpg"), FakeUpload("b.jpg")])

    assert status == 200
    assert result.success is True
    assert len(result.photos) == 2

@pytest.mark.asyncio
async def test_same_file_uploaded_twice_gets_distinct_names():
    handler = make_handler(clock=lambda: 1700000000000)
    _, first = await handler.handle([FakeUpload("dup.jpg")])
    _, second = await handler.handle([FakeUpload("dup.jpg")])
    assert first.photos[0].filename != second.photos[0].filename


# --- Wiring from settings ---
def test_build_upload_handler_uses_settings():
    config = Settings(COMPANION_POLICY="Lenient", COMPANION_BASE_URL="http://127.0.0.1:9000/", MAX_PHOTO_BYTES=10)
    handler = build_upload_handler(AsyncMock(), config=config)
    assert handler.policy is CompanionPolicy.LENIENT
    assert handler.companion.url == "http://127.0.0.1:9000/photos"
    assert handler.max_photo_bytes == 10


# --- HTTP endpoint ---
def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    json_response = response.json()
    assert json_response["status"] == "ok"
    assert json_response["dependencies"]["companion_policy"] in ("strict", "lenient")

def test_read_root(client: TestClient):
    response = client.get("/")
    assert response.status_code == 200
    assert "Photo Uploader Service is running" in response.json()["message"]

def test_post_photos_success(client: TestClient):
    handler = make_handler()
    app.dependency_overrides[get_upload_handler] = lambda: handler

    response = client.post("/photos", files=[
        ("photos", ("one.jpg", b"111", "image/jpeg")),
        ("photos", ("two.jpg", b"222", "image/jpeg")),
    ])

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "photos": [
            {"filename": "1700000000000-one.jpg", "url": "https://cdn.test/photos/1700000000000-one.jpg"},
            {"filename": "1700000000001-two.jpg", "url": "https://cdn.test/photos/1700000000001-two.jpg"},
        ],
    }

def test_post_photos_empty_form(client: TestClient):
    storage = make_storage()
    handler = make_handler(storage=storage)
    app.dependency_overrides[get_upload_handler] = lambda: handler

    response = client.post("/photos")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No photos uploaded"}
    storage.put.assert_not_awaited()

def test_post_photos_ignores_other_fields(client: TestClient):
    handler = make_handler()
    app.dependency_overrides[get_upload_handler] = lambda: handler

    response = client.post("/photos", files=[("attachments", ("one.jpg", b"111", "image/jpeg"))])

    assert response.status_code == 400
    assert response.json()["error"] == NO_PHOTOS_MESSAGE

def test_post_photos_storage_failure(client: TestClient):
    handler = make_handler(storage=make_storage(fail_on="two.jpg"))
    app.dependency_overrides[get_upload_handler] = lambda: handler

    response = client.post("/photos", files=[
        ("photos", ("one.jpg", b"111", "image/jpeg")),
        ("photos", ("two.jpg", b"222", "image/jpeg")),
    ])

    assert response.status_code == 500
    json_response = response.json()
    assert json_response["success"] is False
    assert "photos" not in json_response
    assert "quota exceeded" in json_response["error"]

def test_post_photos_beyond_starlette_default_file_limit(client: TestClient):
    handler = make_handler(clock=lambda: 1700000000000)
    app.dependency_overrides[get_upload_handler] = lambda: handler
    parts = [("photos", (f"img{i:04d}.jpg", b"x", "image/jpeg")) for i in range(1001)]

    response = client.post("/photos", files=parts)

    assert response.status_code == 200
    json_response = response.json()
    assert json_response["success"] is True
    assert len(json_response["photos"]) == 1001
    assert json_response["photos"][-1]["filename"].endswith("-img1000.jpg")

def test_post_photos_over_configured_file_limit_reports_parser_error(client: TestClient, monkeypatch):
    storage = make_storage()
    handler = make_handler(storage=storage)
    app.dependency_overrides[get_upload_handler] = lambda: handler
    monkeypatch.setattr(settings, "MAX_UPLOAD_FILES", 2)

    response = client.post("/photos", files=[("photos", (f"{i}.jpg", b"x", "image/jpeg")) for i in range(3)])

    assert response.status_code == 400
    json_response = response.json()
    assert json_response["success"] is False
    assert "Too many files" in json_response["error"]
    assert json_response["error"] != NO_PHOTOS_MESSAGE
    storage.put.assert_not_awaited()
