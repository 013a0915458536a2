"""Unit tests for configuration management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ygo_scanner.utils.config import Settings, ensure_data_dirs, find_tesseract


class TestSettings:
    """Test Settings class configuration."""

    def test_settings_default_values(self):
        """Test that Settings has correct default values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "INFO"
        assert settings.STORE_DB_PATH == "data/scans.db"
        assert settings.BLOB_DIR == "data/blobs"
        assert settings.EMBED_SOURCE_IMAGES is False
        assert settings.SCAN_CLAIM_TTL_S == 300.0
        assert settings.CATALOG_BASE_URL == "https://db.ygoprodeck.com/api/v7"
        assert settings.OCR_LANGUAGE == "eng"
        assert settings.VISION_API_URL is None

    def test_settings_from_environment(self):
        """Test that Settings can be configured from environment variables."""
        with patch.dict(os.environ, {
            "LOG_LEVEL": "DEBUG",
            "STORE_DB_PATH": "custom/scans.db",
            "EMBED_SOURCE_IMAGES": "true",
            "OCR_TIMEOUT_S": "15",
            "vision_api_url": "https://vision.example.test/v1",
        }):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.STORE_DB_PATH == "custom/scans.db"
        assert settings.EMBED_SOURCE_IMAGES is True
        assert settings.OCR_TIMEOUT_S == 15.0
        assert settings.VISION_API_URL == "https://vision.example.test/v1"

    def test_blank_values_fall_back(self):
        """Test that blank strings become defaults or None."""
        with patch.dict(os.environ, {
            "LOG_LEVEL": "  ",
            "STORE_DB_PATH": "",
            "TESSERACT_PATH": "   ",
            "VISION_API_KEY": "",
        }):
            settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "INFO"
        assert settings.STORE_DB_PATH == "data/scans.db"
        assert settings.TESSERACT_PATH is None
        assert settings.VISION_API_KEY is None

    @pytest.mark.parametrize("name,value", [
        ("OCR_TIMEOUT_S", "0"),
        ("CATALOG_TIMEOUT_S", "-1"),
        ("SCAN_CLAIM_TTL_S", "0"),
        ("OCR_MAX_WORKERS", "0"),
    ])
    def test_invalid_values_rejected(self, name, value):
        """Test that non-positive timeouts and worker counts are rejected."""
        with patch.dict(os.environ, {name: value}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestEnsureDataDirs:
    def test_creates_directories(self, tmp_path):
        """Test that the store and blob directories are created."""
        settings = Settings(
            _env_file=None,
            STORE_DB_PATH=str(tmp_path / "db" / "scans.db"),
            BLOB_DIR=str(tmp_path / "blobs"),
        )
        ensure_data_dirs(settings)

        assert (tmp_path / "db").is_dir()
        assert (tmp_path / "blobs").is_dir()


class TestFindTesseract:
    """Test Tesseract binary discovery."""

    def test_configured_path_wins(self, tmp_path):
        """Test that an existing configured path is used as-is."""
        binary = tmp_path / "tesseract"
        binary.write_text("")
        settings = Settings(_env_file=None, TESSERACT_PATH=str(binary))

        assert find_tesseract(settings) == str(binary)

    def test_falls_back_to_path_lookup(self):
        """Test that a missing configured path falls back to PATH."""
        settings = Settings(_env_file=None, TESSERACT_PATH="/nonexistent/tesseract")
        with patch("ygo_scanner.utils.config.shutil.which", return_value="/usr/bin/tesseract"):
            assert find_tesseract(settings) == "/usr/bin/tesseract"

    def test_not_found(self):
        """Test that None is returned when no binary exists."""
        settings = Settings(_env_file=None)
        with patch("ygo_scanner.utils.config.shutil.which", return_value=None), \
             patch.object(Path, "exists", return_value=False):
            assert find_tesseract(settings) is None
