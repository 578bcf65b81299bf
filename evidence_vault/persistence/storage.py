"""Durable storage backends for evidence archives.

This module provides abstract and concrete implementations for storing
registrant archives in different backends (local filesystem, S3-compatible
object storage, Azure Blob Storage). One store instance is shared by the
whole run; call ``close()`` once when the run ends.
"""

import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Union
from urllib.parse import urlparse, urlunparse

from ..errors import StorageConfigError

try:
    import aiobotocore.session
    from botocore.exceptions import ClientError as AsyncClientError
    HAS_AIOBOTOCORE = True
except ImportError:
    HAS_AIOBOTOCORE = False

try:
    from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
    from azure.storage.blob import ContentSettings
    from azure.storage.blob.aio import BlobServiceClient, ContainerClient
    HAS_AZURE_BLOB = True
except ImportError:
    HAS_AZURE_BLOB = False

logger = logging.getLogger(__name__)


ZIP_CONTENT_TYPE = "application/zip"


class ArtifactRef:
    """Reference to a stored archive with metadata."""

    def __init__(
        self,
        path: str,
        checksum: str,
        size_bytes: int,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        self.path = path
        self.checksum = checksum
        self.size_bytes = size_bytes
        self.content_type = content_type
        self.metadata = metadata or {}

    def __repr__(self) -> str:
        return f"ArtifactRef(path={self.path!r}, size_bytes={self.size_bytes})"


class ArtifactStore(ABC):
    """Abstract base class for durable storage backends."""

    backend = "abstract"

    @abstractmethod
    async def put(
        self,
        content: Union[bytes, BinaryIO, str, Path],
        path: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactRef:
        """Store content and return reference.

        Args:
            content: Content to store (bytes, file-like object, or file path)
            path: Storage key for the object
            content_type: MIME content type
            metadata: Additional metadata to store with the object

        Returns:
            ArtifactRef with storage details
        """

    @abstractmethod
    async def get_url(self, path: str, signed: bool = False, ttl_seconds: int = 3600) -> str:
        """Get URL to access a stored object.

        Args:
            path: Storage key of the object
            signed: Whether to generate a signed URL
            ttl_seconds: Time-to-live for signed URLs

        Returns:
            URL to access the object
        """

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete an object; returns False if it did not exist."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if an object exists."""

    @abstractmethod
    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        """Get object metadata, or None if not found."""

    async def close(self) -> None:
        """Release the shared client, if the backend holds one."""

    async def __aenter__(self) -> "ArtifactStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _calculate_checksum(self, content: bytes) -> str:
        """Calculate SHA-256 checksum of content."""
        return hashlib.sha256(content).hexdigest()

    def _read_content(self, content: Union[bytes, BinaryIO, str, Path]) -> bytes:
        """Read content from various input types."""
        if isinstance(content, bytes):
            return content
        elif isinstance(content, (str, Path)):
            with open(content, 'rb') as f:
                return f.read()
        elif hasattr(content, 'read'):
            return content.read()
        raise ValueError(f"Unsupported content type: {type(content)}")

    @staticmethod
    def _stamp_metadata(checksum: str, size_bytes: int, metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """Object metadata values must be strings on every backend."""
        stamped = {
            'checksum_sha256': checksum,
            'size_bytes': str(size_bytes),
            'uploaded_at': datetime.utcnow().isoformat(),
        }
        for key, value in (metadata or {}).items():
            stamped[f'custom_{key}'] = str(value)
        return stamped

    @staticmethod
    def _unstamp_metadata(stored: Dict[str, str]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        for key, value in stored.items():
            normalized = key.replace('-', '_')
            if normalized.startswith('custom_'):
                metadata[normalized[len('custom_'):]] = value
            else:
                metadata[normalized] = value
        return metadata


class LocalArtifactStore(ArtifactStore):
    """Local filesystem backend, used for dry runs and tests."""

    backend = "local"

    def __init__(self, base_path: Union[str, Path] = "./archive", prefix: str = ""):
        """Initialize local storage.

        Args:
            base_path: Base directory standing in for the bucket/container
            prefix: Key prefix for all objects
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix.strip('/') + '/' if prefix else ''

    def _file_path(self, path: str) -> Path:
        return self.base_path / (self.prefix + path.lstrip('/'))

    @staticmethod
    def _metadata_path(file_path: Path) -> Path:
        return file_path.with_name(file_path.name + '.meta')

    async def put(
        self,
        content: Union[bytes, BinaryIO, str, Path],
        path: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactRef:
        content_bytes = self._read_content(content)
        checksum = self._calculate_checksum(content_bytes)
        size_bytes = len(content_bytes)

        file_path = self._file_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = file_path.with_name(f".{file_path.name}.part")
        with open(tmp_path, 'wb') as f:
            f.write(content_bytes)
        os.replace(tmp_path, file_path)

        stored = self._stamp_metadata(checksum, size_bytes, metadata)
        if content_type:
            stored['content_type'] = content_type
        with open(self._metadata_path(file_path), 'w') as f:
            json.dump(stored, f, indent=2)

        return ArtifactRef(
            path=path,
            checksum=checksum,
            size_bytes=size_bytes,
            content_type=content_type,
            metadata=metadata
        )

    async def get_url(self, path: str, signed: bool = False, ttl_seconds: int = 3600) -> str:
        """Get file:// URL for local access."""
        file_path = self._file_path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Archive not found: {path}")
        return file_path.absolute().as_uri()

    async def delete(self, path: str) -> bool:
        file_path = self._file_path(path)
        metadata_path = self._metadata_path(file_path)

        deleted = False
        if file_path.exists():
            file_path.unlink()
            deleted = True
        if metadata_path.exists():
            metadata_path.unlink()
        return deleted

    async def exists(self, path: str) -> bool:
        return self._file_path(path).exists()

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        metadata_path = self._metadata_path(self._file_path(path))
        if not metadata_path.exists():
            return None
        try:
            with open(metadata_path, 'r') as f:
                return self._unstamp_metadata(json.load(f))
        except (json.JSONDecodeError, IOError):
            return None

    def __repr__(self) -> str:
        return f"LocalArtifactStore(base_path={str(self.base_path)!r})"


class S3ArtifactStore(ArtifactStore):
    """S3-compatible object storage backend with one shared async client."""

    backend = "s3"

    # Archives above this size go through multipart upload
    MULTIPART_THRESHOLD = 64 * 1024 * 1024
    # S3 requires parts of at least 5MB except the last one
    MULTIPART_CHUNK_SIZE = 16 * 1024 * 1024

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None
    ):
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix for all objects
            region: AWS region
            endpoint_url: Custom endpoint URL (for S3-compatible services)
            aws_access_key_id: AWS access key (optional, can use IAM)
            aws_secret_access_key: AWS secret key (optional, can use IAM)
        """
        if not HAS_AIOBOTOCORE:
            raise StorageConfigError("aiobotocore is required for the s3 storage backend")
        if not bucket:
            raise StorageConfigError("An S3 bucket name is required")

        self.bucket = bucket
        self.prefix = prefix.strip('/') + '/' if prefix else ''
        self.region = region

        self._config: Dict[str, Any] = {'region_name': region}
        if endpoint_url:
            self._config['endpoint_url'] = endpoint_url
        if aws_access_key_id and aws_secret_access_key:
            self._config['aws_access_key_id'] = aws_access_key_id
            self._config['aws_secret_access_key'] = aws_secret_access_key

        self._session = aiobotocore.session.AioSession()
        self._exit_stack: Optional[AsyncExitStack] = None
        self._client = None

    def _get_key(self, path: str) -> str:
        """Get full S3 key with prefix."""
        return self.prefix + path.lstrip('/')

    async def _get_client(self):
        """Open the shared client on first use."""
        if self._client is None:
            self._exit_stack = AsyncExitStack()
            self._client = await self._exit_stack.enter_async_context(
                self._session.create_client('s3', **self._config)
            )
        return self._client

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None

    async def put(
        self,
        content: Union[bytes, BinaryIO, str, Path],
        path: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactRef:
        """Store an object, using multipart upload for large archives."""
        content_bytes = self._read_content(content)
        checksum = self._calculate_checksum(content_bytes)
        size_bytes = len(content_bytes)

        s3_metadata = {
            key.replace('_', '-'): value
            for key, value in self._stamp_metadata(checksum, size_bytes, metadata).items()
        }
        key = self._get_key(path)

        try:
            s3_client = await self._get_client()
            if size_bytes > self.MULTIPART_THRESHOLD:
                await self._multipart_upload(s3_client, key, content_bytes, content_type, s3_metadata)
            else:
                put_args = {
                    'Bucket': self.bucket,
                    'Key': key,
                    'Body': content_bytes,
                    'Metadata': s3_metadata
                }
                if content_type:
                    put_args['ContentType'] = content_type
                await s3_client.put_object(**put_args)

        except AsyncClientError as e:
            raise RuntimeError(f"Failed to upload to S3: {e}") from e

        return ArtifactRef(
            path=path,
            checksum=checksum,
            size_bytes=size_bytes,
            content_type=content_type,
            metadata=metadata
        )

    async def _multipart_upload(
        self,
        s3_client,
        key: str,
        content_bytes: bytes,
        content_type: Optional[str],
        metadata: Dict[str, str]
    ) -> None:
        """Upload in parts; an unfinished upload is aborted."""
        create_args = {
            'Bucket': self.bucket,
            'Key': key,
            'Metadata': metadata
        }
        if content_type:
            create_args['ContentType'] = content_type

        response = await s3_client.create_multipart_upload(**create_args)
        upload_id = response['UploadId']

        try:
            parts = []
            part_number = 1
            offset = 0

            while offset < len(content_bytes):
                chunk = content_bytes[offset:offset + self.MULTIPART_CHUNK_SIZE]
                part_response = await s3_client.upload_part(
                    Bucket=self.bucket,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=chunk
                )
                parts.append({'ETag': part_response['ETag'], 'PartNumber': part_number})
                offset += len(chunk)
                part_number += 1

            await s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                await s3_client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            except AsyncClientError as abort_error:
                logger.warning(f"Could not abort multipart upload of {key}: {abort_error}")
            raise

    async def get_url(self, path: str, signed: bool = False, ttl_seconds: int = 3600) -> str:
        """Get S3 URL (signed or plain)."""
        key = self._get_key(path)

        if signed:
            s3_client = await self._get_client()
            return await s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=ttl_seconds
            )

        endpoint_url = self._config.get('endpoint_url')
        if endpoint_url:
            return f"{endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def delete(self, path: str) -> bool:
        key = self._get_key(path)
        if not await self.exists(path):
            return False
        try:
            s3_client = await self._get_client()
            await s3_client.delete_object(Bucket=self.bucket, Key=key)
        except AsyncClientError as e:
            raise RuntimeError(f"Failed to delete from S3: {e}") from e
        return True

    async def exists(self, path: str) -> bool:
        key = self._get_key(path)
        try:
            s3_client = await self._get_client()
            await s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except AsyncClientError as e:
            if e.response['Error']['Code'] in ['404', 'NoSuchKey']:
                return False
            raise RuntimeError(f"Failed to check S3 object existence: {e}") from e

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        key = self._get_key(path)
        try:
            s3_client = await self._get_client()
            response = await s3_client.head_object(Bucket=self.bucket, Key=key)
        except AsyncClientError as e:
            if e.response['Error']['Code'] in ['404', 'NoSuchKey']:
                return None
            raise RuntimeError(f"Failed to get S3 metadata: {e}") from e
        return self._unstamp_metadata(response.get('Metadata', {}))

    def __repr__(self) -> str:
        return f"S3ArtifactStore(bucket={self.bucket!r}, prefix={self.prefix!r})"


class AzureBlobArtifactStore(ArtifactStore):
    """Azure Blob Storage backend with one shared container client."""

    backend = "azure"

    def __init__(
        self,
        container: str = "",
        connection_string: Optional[str] = None,
        sas_url: Optional[str] = None,
        prefix: str = "",
        max_concurrency: int = 5,
    ):
        """Initialize Azure Blob storage.

        Args:
            container: Container name (required with a connection string)
            connection_string: Storage account connection string
            sas_url: Full container SAS URL, used when no connection string is given
            prefix: Blob name prefix for all objects
            max_concurrency: Parallel block uploads per archive
        """
        if not HAS_AZURE_BLOB:
            raise StorageConfigError(
                "azure-storage-blob[aio] is required for the azure storage backend"
            )

        self.container = container
        self.prefix = prefix.strip('/') + '/' if prefix else ''
        self.max_concurrency = max_concurrency
        self._service_client = None

        if connection_string:
            if not container:
                raise StorageConfigError("AZURE_BLOB_CONTAINER is not set")
            self._service_client = BlobServiceClient.from_connection_string(connection_string)
            self._container_client = self._service_client.get_container_client(container)
            self._can_create_container = True
        elif sas_url:
            self._container_client = ContainerClient.from_container_url(sas_url)
            self.container = self._container_client.container_name
            self._can_create_container = False
        else:
            raise StorageConfigError(
                "Provide either AZURE_STORAGE_CONNECTION_STRING or AZURE_BLOB_SAS_URL"
            )
        self._container_checked = False

    def _get_name(self, path: str) -> str:
        return self.prefix + path.lstrip('/')

    async def _ensure_container(self) -> None:
        """Create the container once per run when the credentials allow it."""
        if self._container_checked or not self._can_create_container:
            return
        try:
            await self._container_client.create_container()
            logger.info(f"Created blob container {self.container}")
        except ResourceExistsError:
            pass
        self._container_checked = True

    async def close(self) -> None:
        await self._container_client.close()
        if self._service_client is not None:
            await self._service_client.close()

    async def put(
        self,
        content: Union[bytes, BinaryIO, str, Path],
        path: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactRef:
        content_bytes = self._read_content(content)
        checksum = self._calculate_checksum(content_bytes)
        size_bytes = len(content_bytes)

        await self._ensure_container()
        await self._container_client.upload_blob(
            name=self._get_name(path),
            data=content_bytes,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type) if content_type else None,
            metadata=self._stamp_metadata(checksum, size_bytes, metadata),
            max_concurrency=self.max_concurrency,
        )

        return ArtifactRef(
            path=path,
            checksum=checksum,
            size_bytes=size_bytes,
            content_type=content_type,
            metadata=metadata
        )

    async def get_url(self, path: str, signed: bool = False, ttl_seconds: int = 3600) -> str:
        """Blob URL; the SAS query is kept only when a signed URL is requested."""
        url = self._container_client.get_blob_client(self._get_name(path)).url
        if signed:
            return url
        return urlunparse(urlparse(url)._replace(query=""))

    async def delete(self, path: str) -> bool:
        blob_client = self._container_client.get_blob_client(self._get_name(path))
        try:
            await blob_client.delete_blob()
        except ResourceNotFoundError:
            return False
        return True

    async def exists(self, path: str) -> bool:
        blob_client = self._container_client.get_blob_client(self._get_name(path))
        return await blob_client.exists()

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        blob_client = self._container_client.get_blob_client(self._get_name(path))
        try:
            properties = await blob_client.get_blob_properties()
        except ResourceNotFoundError:
            return None
        return self._unstamp_metadata(dict(properties.metadata or {}))

    def __repr__(self) -> str:
        return f"AzureBlobArtifactStore(container={self.container!r}, prefix={self.prefix!r})"


def create_artifact_store(backend: str = "local", **kwargs) -> ArtifactStore:
    """Factory function to create storage backends.

    Args:
        backend: Storage backend type ("local", "s3" or "azure")
        **kwargs: Backend-specific configuration

    Returns:
        Configured ArtifactStore instance
    """
    backend = backend.lower()
    if backend == "local":
        return LocalArtifactStore(**kwargs)
    elif backend == "s3":
        return S3ArtifactStore(**kwargs)
    elif backend == "azure":
        return AzureBlobArtifactStore(**kwargs)
    raise StorageConfigError(f"Unsupported storage backend: {backend}")


def create_artifact_store_from_config(storage_config) -> ArtifactStore:
    """Create a store from the ``storage`` configuration section."""
    backend = storage_config.backend.lower()

    if backend == "local":
        return LocalArtifactStore(base_path=storage_config.local_path, prefix=storage_config.prefix)

    if backend == "s3":
        return S3ArtifactStore(
            bucket=storage_config.bucket or storage_config.container or "",
            prefix=storage_config.prefix,
            region=storage_config.region,
            endpoint_url=storage_config.endpoint_url,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    if backend == "azure":
        return AzureBlobArtifactStore(
            container=storage_config.container or "",
            connection_string=storage_config.connection_string,
            sas_url=storage_config.sas_url,
            prefix=storage_config.prefix,
        )

    raise StorageConfigError(f"Unsupported storage backend: {backend}")
