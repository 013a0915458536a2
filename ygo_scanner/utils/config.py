"""Configuration and settings management."""

import shutil
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Record store and source images
    STORE_DB_PATH: str = "data/scans.db"
    BLOB_DIR: str = "data/blobs"
    EMBED_SOURCE_IMAGES: bool = False
    # Seconds before an operation's claim on a scan counts as abandoned
    SCAN_CLAIM_TTL_S: float = 300.0

    # External card catalog (YGOPRODeck v7)
    CATALOG_BASE_URL: str = "https://db.ygoprodeck.com/api/v7"
    CATALOG_TIMEOUT_S: float = 10.0

    # OCR settings
    TESSERACT_PATH: Optional[str] = None
    OCR_LANGUAGE: str = "eng"
    OCR_TIMEOUT_S: float = 60.0
    OCR_MAX_WORKERS: int = 2

    # Optional vision identification service used by enhancement
    VISION_API_URL: Optional[str] = None
    VISION_API_KEY: Optional[str] = None
    VISION_MODEL: Optional[str] = None
    VISION_TIMEOUT_S: float = 60.0

    @field_validator("TESSERACT_PATH", "VISION_API_URL", "VISION_API_KEY", "VISION_MODEL", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Convert empty/whitespace strings to None."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "INFO"
        return v

    @field_validator("STORE_DB_PATH", mode="before")
    @classmethod
    def validate_store_path(cls, v):
        """Convert empty/whitespace strings to default."""
        if isinstance(v, str) and not v.strip():
            return "data/scans.db"
        return v

    @field_validator("OCR_TIMEOUT_S", "CATALOG_TIMEOUT_S", "VISION_TIMEOUT_S", "SCAN_CLAIM_TTL_S")
    @classmethod
    def positive_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("OCR_MAX_WORKERS")
    @classmethod
    def positive_workers(cls, v):
        if v < 1:
            raise ValueError("OCR_MAX_WORKERS must be at least 1")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Global settings instance
settings = Settings()


def ensure_data_dirs(config: Optional[Settings] = None) -> None:
    """Ensure the record store and blob directories exist."""
    config = config or settings
    Path(config.STORE_DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    Path(config.BLOB_DIR).mkdir(parents=True, exist_ok=True)


def find_tesseract(config: Optional[Settings] = None) -> Optional[str]:
    """Get Tesseract path, with fallback to common locations.

    Returns None when no binary can be found; recognition will then fail
    per scan instead of at startup.
    """
    config = config or settings
    if config.TESSERACT_PATH and Path(config.TESSERACT_PATH).exists():
        return config.TESSERACT_PATH

    tesseract_path = shutil.which("tesseract")
    if tesseract_path:
        return tesseract_path

    common_paths = [
        "/opt/homebrew/bin/tesseract",  # Apple Silicon Homebrew
        "/usr/local/bin/tesseract",     # Intel Homebrew
        "/usr/bin/tesseract",           # System package
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    return None
