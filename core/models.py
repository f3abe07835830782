# core/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from enum import Enum


# --- Enums ---

class CompanionPolicy(str, Enum):
    """How a failed companion notification affects the upload result."""
    STRICT = "strict"   # companion failure fails the whole request
    LENIENT = "lenient" # companion failure is logged, request still succeeds


# --- Core Data Models ---

class UploadedPhoto(BaseModel):
    """A photo stored by the storage provider."""
    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., description="Provider-side key: millisecond timestamp prefix + original file name")
    url: str = Field(..., description="Public URL issued by the storage provider")


class StoredObject(BaseModel):
    """Result of a single storage provider write."""
    key: str
    url: str


# --- Service Request/Response Models ---

# Photo Uploader Service
class UploadResponse(BaseModel):
    """Uniform envelope returned by POST /photos."""
    success: bool
    photos: Optional[List[UploadedPhoto]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, photos: List[UploadedPhoto]) -> "UploadResponse":
        return cls(success=True, photos=photos)

    @classmethod
    def failure(cls, message: str) -> "UploadResponse":
        return cls(success=False, error=message)


# Companion endpoint
class CompanionPayload(BaseModel):
    """JSON body sent to the companion endpoint after all uploads finish."""
    photos: List[UploadedPhoto] = Field(default_factory=list)


# --- Health Check ---
class HealthResponse(BaseModel):
    status: str = "ok"
    dependencies: dict = Field(default_factory=dict)
