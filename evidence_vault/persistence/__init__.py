"""Archive packing and durable storage for Evidence Vault."""

from .bundler import Bundler
from .mover import RemoteMover
from .storage import (
    ArtifactRef,
    ArtifactStore,
    AzureBlobArtifactStore,
    LocalArtifactStore,
    S3ArtifactStore,
    ZIP_CONTENT_TYPE,
    create_artifact_store,
    create_artifact_store_from_config,
)

__all__ = [
    "Bundler",
    "RemoteMover",
    "ArtifactRef",
    "ArtifactStore",
    "AzureBlobArtifactStore",
    "LocalArtifactStore",
    "S3ArtifactStore",
    "ZIP_CONTENT_TYPE",
    "create_artifact_store",
    "create_artifact_store_from_config",
]
