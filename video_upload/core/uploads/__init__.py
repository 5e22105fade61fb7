"""
Video upload pipeline.

Contains filename normalization, domain models and errors, and the
orchestrator that sequences store, URL resolution, and duration probing.
"""

from .filenames import (
    build_storage_key,
    current_millis,
    normalize_filename,
)
from .models import (
    MaterializeError,
    MissingFileError,
    PipelineStage,
    ProbeDurationError,
    UnexpectedUploadError,
    UploadError,
    UploadRequest,
    UploadResult,
    UploadStoreError,
    UploadTooLargeError,
    UrlResolutionError,
)
from .pipeline import DurationProber, ObjectStore, VideoUploadPipeline, materialized_file

__all__ = [
    "build_storage_key",
    "current_millis",
    "normalize_filename",
    "MaterializeError",
    "MissingFileError",
    "PipelineStage",
    "ProbeDurationError",
    "UnexpectedUploadError",
    "UploadError",
    "UploadRequest",
    "UploadResult",
    "UploadStoreError",
    "UploadTooLargeError",
    "UrlResolutionError",
    "DurationProber",
    "ObjectStore",
    "VideoUploadPipeline",
    "materialized_file",
]
