"""
Domain models for video uploads.

These models describe one upload request as it moves through the pipeline,
the descriptor handed back to the caller, and the ways an upload can fail.
They have no dependencies on FastAPI, boto3, or ffprobe.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PipelineStage(Enum):
    """
    Stages of the upload pipeline, in the order they run.

    Failures are tagged with the stage the pipeline was trying to reach, so
    the caller-facing error and the logs agree on where things went wrong.
    """
    RECEIVED = "received"
    NORMALIZED = "normalized"
    STORED = "stored"
    URL_RESOLVED = "url_resolved"
    MATERIALIZED = "materialized"
    PROBED = "probed"
    CLEANED_UP = "cleaned_up"
    RESPONDED = "responded"

    def next(self) -> "PipelineStage":
        """The stage that follows this one; RESPONDED is last."""
        stages = list(PipelineStage)
        index = stages.index(self)
        return stages[min(index + 1, len(stages) - 1)]


@dataclass(frozen=True)
class UploadRequest:
    """
    A single video upload, fully read into memory.

    Everything except user_id comes from the caller and is untrusted.
    """
    user_id: str
    data: bytes
    original_name: str
    mime_type: str
    size: int

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        if self.size < 0:
            raise ValueError("size cannot be negative")


@dataclass(frozen=True)
class UploadResult:
    """Descriptor of a stored video, returned to the caller."""
    original_name: str
    mime_type: str
    size: int
    stored_as: str
    url: str
    duration_seconds: float


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class UploadError(Exception):
    """
    Base class for upload failures.

    `message` is the human-readable summary shown to the caller;
    `details` carries the underlying reason when there is one, and
    `stage` is the stage the pipeline was trying to reach.
    """
    status_code = 500
    message = "An error occurred while uploading the video"

    def __init__(
        self,
        details: Optional[str] = None,
        stage: PipelineStage = PipelineStage.RECEIVED,
    ) -> None:
        super().__init__(details or self.message)
        self.details = details
        self.stage = stage

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingFileError(UploadError):
    """No video was attached to the request."""
    status_code = 400
    message = "No video uploaded"


class UploadTooLargeError(UploadError):
    """The video exceeds the configured upload size."""
    status_code = 413
    message = "Video too large"


class UploadStoreError(UploadError):
    """The remote object store rejected the write."""
    message = "Video storage upload failed"


class UrlResolutionError(UploadError):
    """The object was stored but no public URL came back."""
    message = "Failed to generate public URL"


class MaterializeError(UploadError):
    """The buffer could not be written to a local temp file."""
    message = "Failed to prepare video for processing"


class ProbeDurationError(UploadError):
    """Duration extraction failed."""
    message = "Failed to determine video duration"


class UnexpectedUploadError(UploadError):
    """Anything else that went wrong while a stage was running."""
