"""
Upload orchestration.

One upload runs as a strictly linear pipeline:

    normalize -> store -> resolve URL -> materialize -> probe -> clean up

Each step awaits the previous one. The only local resource is the temp file
the duration prober needs, and it is owned by a context manager so it is
removed on every way out of the probe step: success, probe failure, or
cancellation of the request.

The pipeline doesn't know about HTTP, boto3, or ffprobe. Storage and probing
come in through the protocols below, so tests can hand it in-memory fakes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Protocol, Union

from .filenames import build_storage_key, current_millis, normalize_filename
from .models import (
    MaterializeError,
    PipelineStage,
    ProbeDurationError,
    UnexpectedUploadError,
    UploadError,
    UploadRequest,
    UploadResult,
    UploadStoreError,
    UrlResolutionError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class ObjectStore(Protocol):
    """
    What the pipeline needs from remote object storage.

    store_object must refuse to replace an existing object when
    overwrite is False. resolve_public_url must work right after a
    successful store and returns None when there is no public URL.
    """

    async def store_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: str = "3600",
        overwrite: bool = False,
    ) -> None:
        ...

    def resolve_public_url(self, key: str) -> Optional[str]:
        ...

    async def delete_object(self, key: str) -> None:
        ...


class DurationProber(Protocol):
    """Reads a video's duration from a local file path."""

    async def probe_duration(self, path: str) -> float:
        ...


# ---------------------------------------------------------------------------
# Temp file lifecycle
# ---------------------------------------------------------------------------

def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        # A stray temp file doesn't affect the caller; log and move on
        logger.warning(
            "Failed to remove temp file",
            extra={"path": str(path), "error": str(e)},
        )


@asynccontextmanager
async def materialized_file(
    temp_dir: Path,
    filename: str,
    data: bytes,
) -> AsyncIterator[Path]:
    """
    Write data to temp_dir/filename for the duration of the block.

    The directory is created if missing and shared between requests; the
    filename is expected to be unique per request. The file is removed when
    the block exits for any reason, including a failed write.
    """
    path = temp_dir / filename
    try:
        try:
            await asyncio.to_thread(_write_file, path, data)
        except OSError as e:
            raise MaterializeError(str(e), stage=PipelineStage.MATERIALIZED) from e

        logger.debug(
            "Materialized upload to temp file",
            extra={"path": str(path), "size_bytes": len(data)},
        )
        yield path
    finally:
        await asyncio.to_thread(_remove_quietly, path)
        logger.debug("Temp file cleaned up", extra={"path": str(path)})


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class VideoUploadPipeline:
    """
    Stores an uploaded video and works out its duration.

    Failures come out as UploadError subclasses tagged with the stage
    that failed. Two behaviors worth knowing about:

    - A probe failure is reported as an error, but the object stays in
      remote storage. Storage is never rolled back for a duration problem.
    - A URL-resolution failure also leaves the object behind unless
      delete_on_url_failure is set, in which case a best-effort delete
      is attempted.
    """

    def __init__(
        self,
        storage: ObjectStore,
        prober: DurationProber,
        temp_dir: Union[str, Path],
        clock: Callable[[], int] = current_millis,
        cache_control: str = "3600",
        delete_on_url_failure: bool = False,
    ) -> None:
        self._storage = storage
        self._prober = prober
        self._temp_dir = Path(temp_dir)
        self._clock = clock
        self._cache_control = cache_control
        self._delete_on_url_failure = delete_on_url_failure

    async def run(self, request: UploadRequest) -> UploadResult:
        stage = PipelineStage.RECEIVED
        try:
            filename = normalize_filename(request.original_name, now_ms=self._clock())
            key = build_storage_key(request.user_id, filename)
            stage = PipelineStage.NORMALIZED

            logger.info(
                "Uploading video to object storage",
                extra={
                    "user_id": request.user_id,
                    "storage_key": key,
                    "size_bytes": len(request.data),
                    "content_type": request.mime_type,
                },
            )
            await self._store(key, request)
            stage = PipelineStage.STORED

            url = await self._resolve_url(key)
            stage = PipelineStage.URL_RESOLVED

            async with materialized_file(self._temp_dir, filename, request.data) as path:
                stage = PipelineStage.MATERIALIZED
                duration = await self._probe(path)
                stage = PipelineStage.PROBED
            stage = PipelineStage.CLEANED_UP

        except UploadError as e:
            logger.error(
                "Video upload failed",
                extra={
                    "user_id": request.user_id,
                    "stage": e.stage.value,
                    "error": e.message,
                    "details": e.details,
                },
            )
            raise
        except Exception as e:
            logger.error(
                "Unexpected error during video upload",
                extra={"user_id": request.user_id, "stage": stage.next().value},
                exc_info=e,
            )
            raise UnexpectedUploadError(str(e), stage=stage.next()) from e

        logger.info(
            "Video upload complete",
            extra={
                "user_id": request.user_id,
                "storage_key": key,
                "duration": duration,
            },
        )

        return UploadResult(
            original_name=request.original_name,
            mime_type=request.mime_type,
            size=request.size,
            stored_as=key,
            url=url,
            duration_seconds=duration,
        )

    async def _store(self, key: str, request: UploadRequest) -> None:
        try:
            await self._storage.store_object(
                key,
                request.data,
                request.mime_type,
                cache_control=self._cache_control,
                overwrite=False,
            )
        except Exception as e:
            raise UploadStoreError(str(e), stage=PipelineStage.STORED) from e

    async def _resolve_url(self, key: str) -> str:
        try:
            url = self._storage.resolve_public_url(key)
        except Exception as e:
            await self._compensate(key)
            raise UrlResolutionError(str(e), stage=PipelineStage.URL_RESOLVED) from e

        if not url:
            await self._compensate(key)
            raise UrlResolutionError(
                "no public URL returned", stage=PipelineStage.URL_RESOLVED
            )

        logger.debug("Resolved public URL", extra={"storage_key": key, "url": url})
        return url

    async def _compensate(self, key: str) -> None:
        if not self._delete_on_url_failure:
            logger.warning(
                "Stored object left without a public URL",
                extra={"storage_key": key},
            )
            return

        try:
            await self._storage.delete_object(key)
            logger.info("Deleted orphaned object", extra={"storage_key": key})
        except Exception as e:
            logger.warning(
                "Failed to delete orphaned object",
                extra={"storage_key": key, "error": str(e)},
            )

    async def _probe(self, path: Path) -> float:
        try:
            return await self._prober.probe_duration(str(path))
        except Exception as e:
            raise ProbeDurationError(str(e), stage=PipelineStage.PROBED) from e
