# core/config.py
import os
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import logging
from typing import List

from core.models import CompanionPolicy

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- Supabase Storage Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key, used for uploads
    PHOTO_STORAGE_BUCKET: str = "photos" # Must be a public bucket

    # --- Companion (note-taking plugin bridge) ---
    # BRIDGE_SERVER_URL is still honoured for existing deployments
    COMPANION_BASE_URL: str = Field(
        default="http://localhost:3001",
        validation_alias=AliasChoices("COMPANION_BASE_URL", "BRIDGE_SERVER_URL"),
    )
    COMPANION_PHOTOS_PATH: str = "/photos"
    COMPANION_TIMEOUT_SECONDS: float = 5.0
    COMPANION_POLICY: CompanionPolicy = CompanionPolicy.STRICT

    # --- Upload Validation ---
    MAX_PHOTO_BYTES: int = 20 * 1024 * 1024
    ALLOWED_PHOTO_EXTENSIONS: List[str] = [".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif", ".bmp", ".tiff"]
    # Multipart parser limits; Starlette's own default is 1000 of each
    MAX_UPLOAD_FILES: int = 100_000
    MAX_UPLOAD_FIELDS: int = 1000

    # --- Service URLs ---
    PHOTO_UPLOADER_URL: str = "http://localhost:8000"

    @field_validator("COMPANION_POLICY", mode="before")
    @classmethod
    def _normalize_policy(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("PhotoBridge_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase URL/Service Key missing. Photo uploads will fail.")
if not settings.PHOTO_STORAGE_BUCKET: logger.warning("PHOTO_STORAGE_BUCKET missing.")
else: logger.info(f"Using Supabase Storage Bucket: {settings.PHOTO_STORAGE_BUCKET}")
logger.info(f"Companion Config: URL={settings.COMPANION_BASE_URL}{settings.COMPANION_PHOTOS_PATH}, Policy={settings.COMPANION_POLICY.value}, Timeout={settings.COMPANION_TIMEOUT_SECONDS}s")
