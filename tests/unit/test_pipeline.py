"""
Unit tests for the upload pipeline.

The pipeline runs against in-memory fakes (see tests/fakes.py), so these
tests cover sequencing, failure mapping, and the temp-file lifecycle
without touching R2 or FFmpeg.

The key guarantees:
- Steps run in order: store, resolve URL, probe
- The temp file never outlives the request, whatever the probe does
- Failures before materialization never create a temp file
- A probe failure doesn't roll back storage
"""

import asyncio
import pathlib

import pytest

from tests.fakes import FIXED_MILLIS, FakeObjectStore, FakeProber
from video_upload.core.uploads.models import (
    MaterializeError,
    PipelineStage,
    ProbeDurationError,
    UnexpectedUploadError,
    UploadRequest,
    UploadStoreError,
    UrlResolutionError,
)
from video_upload.core.uploads.pipeline import VideoUploadPipeline, materialized_file
from video_upload.infrastructure.storage.client import MockStorageClient

pytestmark = pytest.mark.anyio

EXPECTED_KEY = "user_42/1700000000000_my_video_(final)__.mp4"


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestSuccessfulUpload:
    """Tests for a fully successful upload."""

    async def test_returns_descriptor(self, pipeline, upload_request):
        result = await pipeline.run(upload_request)

        assert result.original_name == "my video (final)!!.mp4"
        assert result.mime_type == "video/mp4"
        assert result.size == len(upload_request.data)
        assert result.stored_as == EXPECTED_KEY
        assert result.url == f"https://cdn.example.test/{EXPECTED_KEY}"
        assert result.duration_seconds == 12.5

    async def test_stores_bytes_without_overwrite(self, pipeline, store, upload_request):
        await pipeline.run(upload_request)

        assert store.objects[EXPECTED_KEY] == upload_request.data
        assert store.store_kwargs[0]["overwrite"] is False
        assert store.store_kwargs[0]["content_type"] == "video/mp4"
        assert store.store_kwargs[0]["cache_control"] == "3600"

    async def test_steps_run_in_order(self, pipeline, store, prober, upload_request):
        await pipeline.run(upload_request)

        assert store.calls == ["store", "resolve"]
        assert len(prober.paths) == 1

    async def test_prober_sees_uploaded_bytes_on_disk(self, pipeline, prober, temp_dir, upload_request):
        """The temp file is named after the key's filename part."""
        await pipeline.run(upload_request)

        assert prober.paths == [str(temp_dir / "1700000000000_my_video_(final)__.mp4")]
        assert prober.file_existed == [True]
        assert prober.contents == [upload_request.data]

    async def test_temp_file_removed_after_success(self, pipeline, prober, temp_dir, upload_request):
        await pipeline.run(upload_request)

        assert not pathlib.Path(prober.paths[0]).exists()
        assert list(temp_dir.iterdir()) == []

    async def test_existing_temp_dir_is_reused(self, pipeline, temp_dir, upload_request):
        temp_dir.mkdir()
        (temp_dir / "someone-elses-upload.mp4").write_bytes(b"other")

        await pipeline.run(upload_request)

        assert [p.name for p in temp_dir.iterdir()] == ["someone-elses-upload.mp4"]

    async def test_empty_filename_still_uploads(self, pipeline, store):
        request = UploadRequest(
            user_id="42", data=b"x", original_name="", mime_type="video/mp4", size=1,
        )

        result = await pipeline.run(request)

        assert result.stored_as == f"user_42/{FIXED_MILLIS}_"
        assert f"user_42/{FIXED_MILLIS}_" in store.objects

    async def test_long_filename_still_uploads(self, pipeline, store, prober, temp_dir):
        """A name near the filesystem limit can still be written as a temp file."""
        request = UploadRequest(
            user_id="42", data=b"x", original_name="a" * 250 + ".mp4",
            mime_type="video/mp4", size=1,
        )

        result = await pipeline.run(request)

        assert result.duration_seconds == 12.5
        assert prober.file_existed == [True]
        assert len(pathlib.Path(prober.paths[0]).name.encode("utf-8")) <= 255
        assert list(store.objects) == [result.stored_as]
        assert list(temp_dir.iterdir()) == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestStoreFailure:
    """Remote store errors stop the pipeline before any local I/O."""

    async def test_raises_store_error_with_details(self, prober, temp_dir, upload_request):
        store = FakeObjectStore(store_error=RuntimeError("bucket unavailable"))
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(UploadStoreError) as exc_info:
            await pipeline.run(upload_request)

        assert exc_info.value.details == "bucket unavailable"
        assert exc_info.value.stage == PipelineStage.STORED
        assert exc_info.value.to_payload() == {
            "error": "Video storage upload failed",
            "details": "bucket unavailable",
        }

    async def test_no_temp_file_and_no_probe(self, prober, temp_dir, upload_request):
        store = FakeObjectStore(store_error=RuntimeError("boom"))
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(UploadStoreError):
            await pipeline.run(upload_request)

        assert store.calls == ["store"]
        assert prober.paths == []
        assert not temp_dir.exists()

    async def test_same_name_same_millisecond_collides(self, prober, temp_dir, upload_request):
        """
        Two uploads of one name by one user in one millisecond share a key.
        The store's no-overwrite rule turns the second into a failure.
        """
        storage = MockStorageClient()
        pipeline = VideoUploadPipeline(storage, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        await pipeline.run(upload_request)
        with pytest.raises(UploadStoreError, match="already exists"):
            await pipeline.run(upload_request)

        assert storage.get_object(EXPECTED_KEY) == upload_request.data


class TestUrlResolutionFailure:
    """The object is stored but has no public URL."""

    async def test_raises_url_error(self, prober, temp_dir, upload_request):
        store = FakeObjectStore(public_base_url=None)
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(UrlResolutionError) as exc_info:
            await pipeline.run(upload_request)

        assert exc_info.value.to_payload() == {
            "error": "Failed to generate public URL",
            "details": "no public URL returned",
        }

    async def test_no_temp_file_and_object_left_in_place(self, prober, temp_dir, upload_request):
        store = FakeObjectStore(public_base_url=None)
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(UrlResolutionError):
            await pipeline.run(upload_request)

        assert prober.paths == []
        assert not temp_dir.exists()
        assert EXPECTED_KEY in store.objects
        assert store.deleted == []

    async def test_orphan_deleted_when_enabled(self, prober, temp_dir, upload_request):
        store = FakeObjectStore(public_base_url=None)
        pipeline = VideoUploadPipeline(
            store, prober, temp_dir,
            clock=lambda: FIXED_MILLIS,
            delete_on_url_failure=True,
        )

        with pytest.raises(UrlResolutionError):
            await pipeline.run(upload_request)

        assert store.calls == ["store", "resolve", "delete"]
        assert store.deleted == [EXPECTED_KEY]
        assert EXPECTED_KEY not in store.objects


class TestMaterializeFailure:
    """Local temp-file write errors."""

    async def test_unwritable_temp_dir_raises_materialize_error(self, store, prober, tmp_path, upload_request):
        blocker = tmp_path / "not-a-dir"
        blocker.write_bytes(b"")
        pipeline = VideoUploadPipeline(store, prober, blocker, clock=lambda: FIXED_MILLIS)

        with pytest.raises(MaterializeError) as exc_info:
            await pipeline.run(upload_request)

        assert exc_info.value.stage == PipelineStage.MATERIALIZED
        assert prober.paths == []


class TestProbeFailure:
    """Duration probing fails after the object is stored."""

    async def test_raises_probe_error(self, store, temp_dir, upload_request):
        prober = FakeProber(error=RuntimeError("moov atom not found"))
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(ProbeDurationError) as exc_info:
            await pipeline.run(upload_request)

        assert exc_info.value.to_payload() == {
            "error": "Failed to determine video duration",
            "details": "moov atom not found",
        }

    async def test_temp_file_removed_after_probe_failure(self, store, temp_dir, upload_request):
        prober = FakeProber(error=RuntimeError("bad file"))
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(ProbeDurationError):
            await pipeline.run(upload_request)

        assert prober.file_existed == [True]
        assert not pathlib.Path(prober.paths[0]).exists()

    async def test_storage_is_not_rolled_back(self, store, temp_dir, upload_request):
        """A duration failure leaves the stored object in place."""
        prober = FakeProber(error=RuntimeError("bad file"))
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(ProbeDurationError):
            await pipeline.run(upload_request)

        assert store.objects[EXPECTED_KEY] == upload_request.data
        assert store.deleted == []

    async def test_temp_file_removed_on_cancellation(self, store, temp_dir, upload_request):
        prober = FakeProber(error=asyncio.CancelledError())
        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=lambda: FIXED_MILLIS)

        with pytest.raises(asyncio.CancelledError):
            await pipeline.run(upload_request)

        assert not pathlib.Path(prober.paths[0]).exists()


class TestCleanup:
    """Cleanup is best-effort and never changes the outcome."""

    async def test_cleanup_failure_is_swallowed(self, pipeline, upload_request, monkeypatch, caplog):
        def failing_unlink(self, missing_ok=False):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(pathlib.Path, "unlink", failing_unlink)

        result = await pipeline.run(upload_request)

        assert result.duration_seconds == 12.5
        assert "Failed to remove temp file" in caplog.text

    async def test_materialized_file_removed_when_block_raises(self, tmp_path):
        with pytest.raises(ValueError):
            async with materialized_file(tmp_path, "clip.mp4", b"data") as path:
                assert path.read_bytes() == b"data"
                raise ValueError("inside block")

        assert not (tmp_path / "clip.mp4").exists()

    async def test_cleanup_runs_off_the_event_loop(self, tmp_path, monkeypatch):
        """Both the write and the removal go through a worker thread."""
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

        async with materialized_file(tmp_path, "clip.mp4", b"data"):
            pass

        assert offloaded == ["_write_file", "_remove_quietly"]
        assert not (tmp_path / "clip.mp4").exists()


class TestUnexpectedFailure:
    """Errors outside the known taxonomy are wrapped, not leaked."""

    async def test_wrapped_with_stage(self, store, prober, temp_dir, upload_request):
        def broken_clock():
            raise OverflowError("clock went backwards")

        pipeline = VideoUploadPipeline(store, prober, temp_dir, clock=broken_clock)

        with pytest.raises(UnexpectedUploadError) as exc_info:
            await pipeline.run(upload_request)

        assert exc_info.value.stage == PipelineStage.NORMALIZED
        assert exc_info.value.to_payload() == {
            "error": "An error occurred while uploading the video",
            "details": "clock went backwards",
        }
        assert store.calls == []


class TestUploadRequest:
    """Validation on the request model."""

    def test_requires_user_id(self):
        with pytest.raises(ValueError, match="user_id"):
            UploadRequest(user_id="", data=b"", original_name="a.mp4", mime_type="video/mp4", size=0)

    def test_rejects_negative_size(self):
        with pytest.raises(ValueError, match="negative"):
            UploadRequest(user_id="1", data=b"", original_name="a.mp4", mime_type="video/mp4", size=-1)
