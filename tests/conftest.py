"""
Shared fixtures.

Test doubles live in tests/fakes.py so test modules can import them.
"""

import pytest

from tests.fakes import FIXED_MILLIS, FakeObjectStore, FakeProber
from video_upload.core.uploads.models import UploadRequest
from video_upload.core.uploads.pipeline import VideoUploadPipeline


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def temp_dir(tmp_path):
    """Temp directory for materialized uploads. Not created up front."""
    return tmp_path / "temp"


@pytest.fixture
def pipeline(store, prober, temp_dir) -> VideoUploadPipeline:
    return VideoUploadPipeline(
        storage=store,
        prober=prober,
        temp_dir=temp_dir,
        clock=lambda: FIXED_MILLIS,
    )


@pytest.fixture
def upload_request() -> UploadRequest:
    data = b"\x00\x00\x00\x18ftypmp42fake-video-bytes"
    return UploadRequest(
        user_id="42",
        data=data,
        original_name="my video (final)!!.mp4",
        mime_type="video/mp4",
        size=len(data),
    )
