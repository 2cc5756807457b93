"""pytest configuration and shared fixtures"""
import pytest
from fastapi.testclient import TestClient

from mocks.media import FakeEncoderFactory, FakeMediaDevices
from screencast.capture.controller import CaptureController
from screencast.core.config import Settings
from screencast.main import create_app
from screencast.services.persistence import BlobPersistence, RecordPersistence
from screencast.services.storage import LocalStorage
from screencast.services.uploads import UploadService

BASE_URL = "https://cast.example.com"

FAKE_JPEG = b"\xff\xd8\xff\xe0fake-jpeg\xff\xd9"


# ============= Capture Fixtures =============

@pytest.fixture
def devices():
    return FakeMediaDevices()


@pytest.fixture
def encoders():
    return FakeEncoderFactory()


@pytest.fixture
def controller(devices, encoders):
    """Controller whose clock only advances through explicit tick() calls."""
    return CaptureController(devices, encoders, tick_interval=3600)


# ============= Storage / Persistence Fixtures =============

@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "objects"), "recordings", base_url=lambda: BASE_URL)


@pytest.fixture
def record_persistence(storage):
    persistence = RecordPersistence(storage, "sqlite://")
    yield persistence
    persistence.close()


@pytest.fixture
def blob_persistence(storage):
    return BlobPersistence(storage)


@pytest.fixture(params=["records", "blobs"])
def persistence(request, storage):
    """Runs a test once per persistence strategy."""
    if request.param == "records":
        backend = RecordPersistence(storage, "sqlite://")
    else:
        backend = BlobPersistence(storage)
    yield backend
    backend.close()


@pytest.fixture
def thumbnailer():
    calls = []

    def make(data):
        calls.append(data)
        return FAKE_JPEG

    make.calls = calls
    return make


@pytest.fixture
def upload_service(persistence, thumbnailer):
    return UploadService(persistence, base_url=lambda: BASE_URL, thumbnailer=thumbnailer)


# ============= HTTP Fixtures =============

@pytest.fixture
def settings_for_tests(tmp_path):
    return Settings(
        BASE_URL=BASE_URL,
        STORAGE_BACKEND="local",
        LOCAL_STORAGE_DIR=str(tmp_path / "objects"),
        PERSISTENCE="records",
        DATABASE_URL="sqlite://",
    )


@pytest.fixture
def client(settings_for_tests, persistence):
    app = create_app(settings_for_tests, persistence=persistence)
    with TestClient(app) as test_client:
        test_client.app_state = app.state
        yield test_client
