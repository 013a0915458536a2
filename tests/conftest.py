"""Pytest configuration and shared fixtures for ygo-scanner tests."""

import cv2
import numpy as np
import pytest

from fakes import FakeCatalog, make_entry
from ygo_scanner.store.blobs import LocalBlobStore
from ygo_scanner.store.records import RecordStore


@pytest.fixture
def record_store(tmp_path):
    """Record store backed by a temporary SQLite file."""
    return RecordStore(db_path=str(tmp_path / "scans.db"))


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(root=str(tmp_path / "blobs"))


@pytest.fixture
def sample_png():
    """A small encoded card-like image: dark frame, light text box."""
    image = np.full((160, 110, 3), 40, dtype=np.uint8)
    cv2.rectangle(image, (10, 100), (100, 150), (220, 220, 220), -1)
    cv2.putText(image, "DARK", (12, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def large_png():
    image = np.random.default_rng(0).integers(0, 255, size=(2400, 1800, 3), dtype=np.uint8)
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def dark_magician_catalog():
    return FakeCatalog(exact={"Dark Magician": [make_entry()]})


# Configure pytest options
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


INTEGRATION_MODULES = {"test_lifecycle", "test_enhance", "test_cli"}


def pytest_collection_modifyitems(config, items):
    """Add markers automatically."""
    for item in items:
        # Full scan lifecycle against a temporary store
        if item.module.__name__.rsplit(".", 1)[-1] in INTEGRATION_MODULES or "integration" in item.name.lower():
            item.add_marker(pytest.mark.integration)

        if any(indicator in item.name.lower() for indicator in ['performance', 'large_image']):
            item.add_marker(pytest.mark.slow)

        if not item.get_closest_marker('integration') and not item.get_closest_marker('slow'):
            item.add_marker(pytest.mark.unit)
