"""
Object storage client for uploaded videos.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
Using R2 because:
- No egress fees (important for video delivery)
- Public buckets give every object a stable URL
- Same S3 API means we could swap to actual S3 if needed

Mock mode stores objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import quote

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class ObjectExistsError(StorageError):
    """Raised when a no-overwrite write hits an existing key."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    public_base_url is the bucket's public domain (an r2.dev subdomain or
    a custom domain). Without it there is no public URL for an object.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    public_base_url: Optional[str] = None
    region: str = "auto"  # R2 uses 'auto' for region


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
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
        """Write data under key. Fails on an existing key unless overwrite."""
        ...

    def resolve_public_url(self, key: str) -> Optional[str]:
        """Public URL for key, or None if the bucket has no public URL."""
        ...

    async def delete_object(self, key: str) -> None:
        """Delete the object at key."""
        ...


def build_public_url(base_url: Optional[str], key: str) -> Optional[str]:
    """Join a public base URL and an object key, or None without a base."""
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/{quote(key)}"


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. boto3 is synchronous, so each
    call runs in a worker thread to keep the event loop free while a large
    video is in flight.
    """

    def __init__(self, config: StorageConfig, s3_client: Any = None) -> None:
        """
        Initialize R2 client with boto3.

        We import boto3 here (not at module level) because mock mode
        doesn't need it. s3_client lets tests pass a stubbed client.
        """
        self._config = config

        if s3_client is not None:
            self._s3_client = s3_client
        else:
            try:
                import boto3
                from botocore.config import Config
            except ImportError:
                raise ImportError(
                    "boto3 is required for R2 storage. Install with: pip install boto3"
                )

            # R2 requires v4 signatures and has specific endpoint patterns
            boto_config = Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
            )

            self._s3_client = boto3.client(
                's3',
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
                config=boto_config,
            )

        logger.info(
            "Initialized R2 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def store_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: str = "3600",
        overwrite: bool = False,
    ) -> None:
        """
        Upload an object to R2.

        With overwrite=False the write is conditional (If-None-Match: *),
        so R2 answers 412 instead of replacing an existing object.
        """
        from botocore.exceptions import ClientError

        params = {
            'Bucket': self._config.bucket_name,
            'Key': key,
            'Body': data,
            'ContentType': content_type,
            'CacheControl': f"max-age={cache_control}",
        }
        if not overwrite:
            params['IfNoneMatch'] = '*'

        try:
            await asyncio.to_thread(self._s3_client.put_object, **params)
        except ClientError as e:
            error = e.response.get('Error', {})
            status = e.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
            if error.get('Code') == 'PreconditionFailed' or status == 412:
                logger.error("Object already exists", extra={"storage_key": key})
                raise ObjectExistsError(f"Object already exists: {key}")

            logger.error(
                "Failed to upload object",
                extra={"storage_key": key, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}")
        except Exception as e:
            logger.error(
                "Failed to upload object",
                extra={"storage_key": key, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}")

        logger.info(
            "Uploaded object",
            extra={
                "storage_key": key,
                "size_bytes": len(data),
                "content_type": content_type,
            }
        )

    def resolve_public_url(self, key: str) -> Optional[str]:
        """
        Public URL for an object in a public bucket.

        No request is made, so this is valid right after a store.
        """
        return build_public_url(self._config.public_base_url, key)

    async def delete_object(self, key: str) -> None:
        """Delete a single object from R2."""
        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            logger.error(
                "Failed to delete object",
                extra={"storage_key": key, "error": str(e)}
            )
            raise StorageError(f"Delete failed: {e}")

        logger.info("Deleted object", extra={"storage_key": key})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageClient:
    """
    In-memory storage for local development.

    Objects live in a dictionary and "URLs" are mock URIs. Honors the
    no-overwrite rule so the API behaves the same as against R2.
    """

    def __init__(self, public_base_url: Optional[str] = "mock://storage") -> None:
        # {key: (bytes, content_type)}
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._public_base_url = public_base_url
        logger.info("Initialized mock storage client (in-memory)")

    async def store_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: str = "3600",
        overwrite: bool = False,
    ) -> None:
        """Store object in memory."""
        if not overwrite and key in self._objects:
            raise ObjectExistsError(f"Object already exists: {key}")

        self._objects[key] = (data, content_type)

        logger.debug(
            "Stored object in mock storage",
            extra={"storage_key": key, "size_bytes": len(data)}
        )

    def resolve_public_url(self, key: str) -> Optional[str]:
        return build_public_url(self._public_base_url, key)

    async def delete_object(self, key: str) -> None:
        """Delete object from memory."""
        if key not in self._objects:
            raise StorageError(f"Object not found: {key}")
        del self._objects[key]

    def get_object(self, key: str) -> bytes:
        """Stored bytes for key. Mock-only, used to inspect uploads."""
        if key not in self._objects:
            raise StorageError(f"Object not found: {key}")
        return self._objects[key][0]

    def has_object(self, key: str) -> bool:
        return key in self._objects


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
