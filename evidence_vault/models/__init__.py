"""Data models for Evidence Vault."""

from .evidence import (
    ArtifactStatus,
    CaptureJob,
    Entity,
    EntityOutcome,
    EvidenceArtifact,
    EvidenceKind,
    RunSummary,
)

__all__ = [
    "ArtifactStatus",
    "CaptureJob",
    "Entity",
    "EntityOutcome",
    "EvidenceArtifact",
    "EvidenceKind",
    "RunSummary",
]
