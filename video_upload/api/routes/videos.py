"""
Video upload endpoint.

Flow for a single upload:
1. Client posts a multipart body with one `video` field
2. Video is stored in R2 under the caller's namespace
3. A public URL is resolved for the stored object
4. Duration is read with FFprobe from a short-lived local copy
5. Client receives the URL, size, mime type, and duration

Every pipeline failure comes back as `{"error": ..., "details": ...}`
with a 4xx/5xx status; no stack traces reach the client.
"""

import logging
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, File, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...core.uploads.models import (
    MissingFileError,
    UploadRequest,
    UploadResult,
    UploadTooLargeError,
)
from ..dependencies import CurrentUserId, SettingsDep, UploadPipelineDep

logger = logging.getLogger(__name__)

router = APIRouter()

SUCCESS_MESSAGE = "Video uploaded successfully"


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class UploadedFile(BaseModel):
    """Descriptor of the stored video. Serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    original_name: str = Field(description="Filename as sent by the client")
    mime_type: str = Field(description="Content type as sent by the client")
    size: int = Field(description="Size in bytes")
    stored_as: str = Field(description="Object storage key")
    url: str = Field(description="Public URL of the stored video")
    duration: float = Field(description="Playback duration in seconds")

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadedFile":
        return cls(
            original_name=result.original_name,
            mime_type=result.mime_type,
            size=result.size,
            stored_as=result.stored_as,
            url=result.url,
            duration=result.duration_seconds,
        )


class VideoUploadResponse(BaseModel):
    """Response after a successful upload."""
    message: str = Field(description="Status message")
    file: UploadedFile


class ErrorResponse(BaseModel):
    """Error payload for failed uploads."""
    error: str = Field(description="What went wrong")
    details: Optional[str] = Field(None, description="Underlying reason, when known")


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

async def read_video_upload(
    user_id: CurrentUserId,
    settings: SettingsDep,
    video: Annotated[
        Optional[Union[UploadFile, str]],
        File(description="Video file (MP4, MOV, etc.)"),
    ] = None,
) -> UploadRequest:
    """
    Turn the multipart `video` field into an UploadRequest.

    Runs before the pipeline is built, so a request without a usable file
    is rejected before any storage or FFprobe client is built.
    A `video` part without a filename arrives as a plain form value and
    counts as missing.
    """
    if video is None or isinstance(video, str) or not video.filename:
        logger.info("Upload request without video", extra={"user_id": user_id})
        raise MissingFileError()

    data = await video.read()

    if len(data) > settings.max_upload_size_bytes:
        logger.warning(
            "Video exceeds upload limit",
            extra={"user_id": user_id, "size_bytes": len(data)},
        )
        raise UploadTooLargeError(f"Maximum size: {settings.max_upload_size_mb}MB")

    return UploadRequest(
        user_id=user_id,
        data=data,
        original_name=video.filename,
        mime_type=video.content_type or "application/octet-stream",
        size=video.size if video.size is not None else len(data),
    )


VideoUploadDep = Annotated[UploadRequest, Depends(read_video_upload)]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/upload-video",
    response_model=VideoUploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload a video",
    description="Store a video in object storage and report its public URL and duration",
    responses={
        400: {"model": ErrorResponse, "description": "No video uploaded"},
        413: {"model": ErrorResponse, "description": "Video too large"},
        500: {"model": ErrorResponse, "description": "Storage, URL, or duration failure"},
    },
)
async def upload_video(
    upload: VideoUploadDep,
    pipeline: UploadPipelineDep,
):
    """
    Upload one video for the authenticated user.

    The object key is `user_<id>/<timestamp>_<sanitized name>`; it is
    returned as `storedAs`. If the duration can't be read the request
    fails, but the video remains in storage.

    Pipeline failures propagate as UploadError and are rendered by the
    app-level handler in main.py.
    """
    logger.info(
        "Video upload started",
        extra={
            "user_id": upload.user_id,
            "video_filename": upload.original_name,
            "content_type": upload.mime_type,
            "size_bytes": upload.size,
        }
    )

    result = await pipeline.run(upload)

    return VideoUploadResponse(
        message=SUCCESS_MESSAGE,
        file=UploadedFile.from_result(result),
    )
