# services/photo_uploader/app/main.py
from fastapi import FastAPI, HTTPException, Request, Depends, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from core.config import settings, logger as core_logger
from core.models import HealthResponse, UploadResponse
from core.storage import SupabasePhotoStorage
from .companion import CompanionClient
from .handler import PhotoUploadHandler
import httpx
from contextlib import asynccontextmanager

logger = core_logger.getChild("PhotoUploader")

PHOTOS_FIELD = "photos"


def build_upload_handler(http_client: httpx.AsyncClient, config=settings) -> PhotoUploadHandler:
    """Wires a handler from settings; everything it needs is passed in here."""
    companion = CompanionClient(
        http_client,
        base_url=config.COMPANION_BASE_URL,
        path=config.COMPANION_PHOTOS_PATH,
        timeout=config.COMPANION_TIMEOUT_SECONDS,
    )
    return PhotoUploadHandler(
        storage=SupabasePhotoStorage(config.PHOTO_STORAGE_BUCKET),
        companion=companion,
        policy=config.COMPANION_POLICY,
        allowed_extensions=config.ALLOWED_PHOTO_EXTENSIONS,
        max_photo_bytes=config.MAX_PHOTO_BYTES,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the HTTP client used for companion calls and the upload handler built on it."""
    logger.info("Photo Uploader lifespan startup: Initializing HTTPX Client.")
    app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0))
    app.state.upload_handler = build_upload_handler(app.state.http_client)
    logger.info(f"Upload handler ready (companion policy: {app.state.upload_handler.policy.value}).")

    yield # Application runs here

    logger.info("Photo Uploader lifespan shutdown: Closing HTTPX Client.")
    await app.state.http_client.aclose()
    app.state.http_client = None
    app.state.upload_handler = None


app = FastAPI(
    title="Photo Uploader Service",
    description="Stores photos in blob storage and forwards their URLs to the companion app.",
    version="1.0.0",
    lifespan=lifespan
)


def get_upload_handler(request: Request) -> PhotoUploadHandler:
    """Dependency function to get the upload handler from app state."""
    handler = getattr(request.app.state, 'upload_handler', None)
    if handler is None:
        logger.error("Upload handler dependency not met: handler not available in application state.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Upload handler not ready")
    return handler


@app.get("/", tags=["Meta"])
async def read_root():
    return {"message": "Photo Uploader Service is running. POST photos to /photos"}


@app.get("/health", response_model=HealthResponse, tags=["Meta"])
async def health_check(request: Request):
    handler = getattr(request.app.state, 'upload_handler', None)
    storage_status = "configured" if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_KEY else "not_configured"
    return HealthResponse(
        status="ok",
        dependencies={
            "storage": storage_status,
            "companion_policy": handler.policy.value if handler else "unavailable",
        },
    )


@app.post("/photos", tags=["Photos"])
async def upload_photos(request: Request, handler: PhotoUploadHandler = Depends(get_upload_handler)):
    """Upload photos (multipart field `photos`, repeated) and forward their URLs to the companion app."""
    try:
        form = await request.form(max_files=settings.MAX_UPLOAD_FILES, max_fields=settings.MAX_UPLOAD_FIELDS)
    except StarletteHTTPException as e:
        # Starlette reports multipart errors (too many parts, bad boundary) as 400s
        logger.warning(f"Could not parse upload form: {e.detail}")
        return _envelope(e.status_code, UploadResponse.failure(str(e.detail)))
    except Exception as e:
        logger.warning(f"Could not parse upload form: {e}")
        return _envelope(status.HTTP_400_BAD_REQUEST, UploadResponse.failure(f"Invalid upload form: {e}"))

    files = [item for item in form.getlist(PHOTOS_FIELD) if isinstance(item, UploadFile)]
    status_code, result = await handler.handle(files)
    return _envelope(status_code, result)


def _envelope(status_code: int, result: UploadResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))
