"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests via app.dependency_overrides
- Configuration is centralized

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.uploads.pipeline import VideoUploadPipeline
from ..infrastructure.storage.client import StorageClient, StorageConfig, create_storage_client
from ..infrastructure.video.prober import DurationProber, create_duration_prober

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Clients are reused across requests. For the mock storage client this
# also means uploaded objects persist for the life of the process.
_storage_client: Optional[StorageClient] = None
_duration_prober: Optional[DurationProber] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


async def get_current_user_id(
    api_key: Annotated[str, Depends(verify_api_key)],
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Resolve the caller identity for an authenticated request.

    The API key proves the caller is a trusted client; X-User-Id says
    which user it is acting for. Uploads are namespaced by this id.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        logger.warning("Authenticated request without user id")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User identity required. Provide X-User-Id header.",
        )
    return user_id


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClient:
    """
    Provide storage client for video uploads.

    Returns either R2 client or mock client based on settings.
    """
    global _storage_client

    if _storage_client is None:
        if settings.r2_mock_mode:
            _storage_client = create_storage_client(mock_mode=True)
            logger.info("Created shared mock storage client")
        else:
            config = StorageConfig(
                access_key_id=settings.r2_access_key_id,
                secret_access_key=settings.r2_secret_access_key,
                bucket_name=settings.r2_bucket_name,
                endpoint_url=settings.r2_endpoint,
                public_base_url=settings.r2_public_base_url,
            )
            _storage_client = create_storage_client(config=config)
            logger.info("Created R2 storage client")

    return _storage_client


def get_duration_prober(
    settings: Annotated[Settings, Depends(get_settings)],
) -> DurationProber:
    """
    Provide duration prober.

    The FFprobe prober checks the binary on construction, so it is
    created once and shared.
    """
    global _duration_prober

    if _duration_prober is None:
        _duration_prober = create_duration_prober(
            mock_mode=settings.prober_mock_mode,
            ffprobe_path=settings.ffprobe_path,
            timeout_seconds=settings.ffprobe_timeout_seconds,
        )

    return _duration_prober


def reset_clients() -> None:
    """Drop shared clients so the next request rebuilds them from settings."""
    global _storage_client, _duration_prober
    _storage_client = None
    _duration_prober = None


def get_upload_pipeline(
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[StorageClient, Depends(get_storage_client)],
    prober: Annotated[DurationProber, Depends(get_duration_prober)],
) -> VideoUploadPipeline:
    """Provide the upload pipeline wired to the configured collaborators."""
    return VideoUploadPipeline(
        storage=storage,
        prober=prober,
        temp_dir=settings.temp_dir,
        cache_control=settings.cache_control,
        delete_on_url_failure=settings.delete_on_url_failure,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
UploadPipelineDep = Annotated[VideoUploadPipeline, Depends(get_upload_pipeline)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
