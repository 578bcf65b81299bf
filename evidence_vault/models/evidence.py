"""Pydantic models for registrant evidence capture.

This module defines the entities processed by the pipeline, the evidence
artifacts captured for each of them, and the per-entity capture job and run
summary records used for reporting.
"""

from collections import Counter
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArtifactStatus(str, Enum):
    """Outcome of one evidence capture."""
    CAPTURED = "captured"
    DEGRADED = "degraded"
    MISSING = "missing"


class EvidenceKind(str, Enum):
    """The six fixed evidence types collected per registrant."""
    ATTENDANCE = "attendance"
    CONTACT = "contact"
    CONFIRMATION = "confirmation"
    INVOICE = "invoice"
    TICKET_EMAIL = "ticket_email"
    QR = "qr"

    @property
    def ordinal(self) -> int:
        """Fixed two-digit file ordinal for this evidence type."""
        return _KIND_ORDINALS[self]

    @property
    def label(self) -> str:
        """File label for this evidence type."""
        return _KIND_LABELS[self]

    def file_stem(self, entity_id: str) -> str:
        """Build the file name stem, e.g. ``12345__06_Invoice``."""
        return f"{entity_id}__{self.ordinal:02d}_{self.label}"

    @classmethod
    def capture_order(cls) -> List["EvidenceKind"]:
        """Evidence types in the order the orchestrator captures them."""
        return [
            cls.ATTENDANCE,
            cls.CONTACT,
            cls.CONFIRMATION,
            cls.INVOICE,
            cls.TICKET_EMAIL,
            cls.QR,
        ]


_KIND_ORDINALS = {
    EvidenceKind.ATTENDANCE: 1,
    EvidenceKind.CONTACT: 2,
    EvidenceKind.TICKET_EMAIL: 3,
    EvidenceKind.QR: 4,
    EvidenceKind.CONFIRMATION: 5,
    EvidenceKind.INVOICE: 6,
}

_KIND_LABELS = {
    EvidenceKind.ATTENDANCE: "Attendance_Status_Proof",
    EvidenceKind.CONTACT: "Contact_Details",
    EvidenceKind.TICKET_EMAIL: "Ticket_Email_Preview",
    EvidenceKind.QR: "QR_Code_Ticket_Email",
    EvidenceKind.CONFIRMATION: "Confirmation_Email",
    EvidenceKind.INVOICE: "Invoice",
}


class Entity(BaseModel):
    """One registrant to capture evidence for."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Numeric registrant identifier, unique per run")
    source_url: str = Field(description="Canonical registrant page address")
    collection_id: Optional[str] = Field(
        default=None,
        description="Event/collection identifier the registrant belongs to"
    )
    display_name: Optional[str] = Field(
        default=None,
        description="Best-effort label, used for logging only"
    )

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        """Registrant ids name directories and remote keys, so keep them numeric."""
        v = str(v).strip()
        if not v.isdigit():
            raise ValueError(f"Entity id must be numeric, got {v!r}")
        return v

    @field_validator('source_url')
    @classmethod
    def validate_source_url(cls, v):
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Entity source URL must be absolute: {v!r}")
        return v

    @property
    def archive_name(self) -> str:
        """Archive file name and remote key for this entity."""
        return f"{self.id}.zip"


class EvidenceArtifact(BaseModel):
    """One captured evidence file and how it was obtained."""

    model_config = ConfigDict(frozen=True)

    kind: EvidenceKind = Field(description="Evidence type")
    status: ArtifactStatus = Field(description="Captured, degraded or missing")
    file_path: Optional[Path] = Field(
        default=None,
        description="Raster file (absent when missing)"
    )
    document_path: Optional[Path] = Field(
        default=None,
        description="Optional paginated document sibling"
    )
    source_url: Optional[str] = Field(
        default=None,
        description="Address of the surface that was captured"
    )
    note: Optional[str] = Field(
        default=None,
        description="Why the artifact is degraded or missing"
    )

    @classmethod
    def missing(cls, kind: EvidenceKind, note: str) -> "EvidenceArtifact":
        """Create a missing-artifact record."""
        return cls(kind=kind, status=ArtifactStatus.MISSING, note=note)

    def as_degraded(self, note: str) -> "EvidenceArtifact":
        """Return a copy of this artifact marked degraded.

        Missing artifacts stay missing.
        """
        if self.status == ArtifactStatus.MISSING:
            return self
        return self.model_copy(update={
            'status': ArtifactStatus.DEGRADED,
            'note': self.note or note,
        })

    def with_kind(self, kind: EvidenceKind) -> "EvidenceArtifact":
        return self.model_copy(update={'kind': kind})

    @property
    def is_present(self) -> bool:
        return self.status != ArtifactStatus.MISSING


class CaptureJob(BaseModel):
    """Per-entity run context owned by one orchestration invocation."""

    entity: Entity
    output_dir: Path
    artifacts: List[EvidenceArtifact] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    page_label: Optional[str] = Field(
        default=None,
        description="Label extracted from the home surface, for logging"
    )
    aborted: bool = Field(default=False, description="Navigation failure ended the job early")
    abort_reason: Optional[str] = None
    uploaded: bool = Field(default=False, description="Bundle upload confirmed")
    remote_url: Optional[str] = None
    error: Optional[str] = None

    def record(self, artifact: EvidenceArtifact) -> None:
        """Append an artifact result; each evidence type is recorded once."""
        if self.artifact_for(artifact.kind) is not None:
            raise ValueError(f"Evidence {artifact.kind.value} already recorded for {self.entity.id}")
        self.artifacts.append(artifact)

    def artifact_for(self, kind: EvidenceKind) -> Optional[EvidenceArtifact]:
        for artifact in self.artifacts:
            if artifact.kind == kind:
                return artifact
        return None

    def evidence_files(self) -> List[Path]:
        """Files produced by present artifacts."""
        files = []
        for artifact in self.artifacts:
            if artifact.file_path is not None:
                files.append(artifact.file_path)
            if artifact.document_path is not None:
                files.append(artifact.document_path)
        return files

    def status_counts(self) -> Dict[str, int]:
        counts = Counter(artifact.status.value for artifact in self.artifacts)
        return {status.value: counts.get(status.value, 0) for status in ArtifactStatus}

    @property
    def has_evidence(self) -> bool:
        return any(artifact.is_present for artifact in self.artifacts)

    @property
    def succeeded(self) -> bool:
        """Overall success is defined by upload, not by artifact statuses."""
        return self.uploaded and not self.aborted

    def to_manifest(self) -> Dict[str, object]:
        """Serializable per-kind record written next to the evidence files."""
        return {
            'entity_id': self.entity.id,
            'source_url': self.entity.source_url,
            'collection_id': self.entity.collection_id,
            'page_label': self.page_label,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'aborted': self.aborted,
            'abort_reason': self.abort_reason,
            'evidence': [
                {
                    'kind': artifact.kind.value,
                    'status': artifact.status.value,
                    'file': artifact.file_path.name if artifact.file_path else None,
                    'document': artifact.document_path.name if artifact.document_path else None,
                    'source_url': artifact.source_url,
                    'note': artifact.note,
                }
                for artifact in self.artifacts
            ],
        }


class EntityOutcome(BaseModel):
    """Run-summary row for one entity."""

    entity_id: str
    source_url: str
    success: bool
    statuses: Dict[str, str] = Field(default_factory=dict)
    remote_url: Optional[str] = None
    local_dir: Optional[Path] = Field(
        default=None,
        description="Directory retained locally (set only when not uploaded)"
    )
    error: Optional[str] = None
    duration_ms: Optional[float] = None

    @classmethod
    def from_job(cls, job: CaptureJob) -> "EntityOutcome":
        duration = None
        if job.finished_at:
            duration = (job.finished_at - job.started_at).total_seconds() * 1000
        return cls(
            entity_id=job.entity.id,
            source_url=job.entity.source_url,
            success=job.succeeded,
            statuses={a.kind.value: a.status.value for a in job.artifacts},
            remote_url=job.remote_url,
            local_dir=None if job.uploaded else job.output_dir,
            error=job.error or job.abort_reason,
            duration_ms=duration,
        )


class RunSummary(BaseModel):
    """Totals for a pipeline run."""

    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    outcomes: List[EntityOutcome] = Field(default_factory=list)
    skipped: List[str] = Field(
        default_factory=list,
        description="Entity ids skipped before capture (duplicates)"
    )

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def status_totals(self) -> Dict[str, int]:
        counts = Counter()
        for outcome in self.outcomes:
            counts.update(outcome.statuses.values())
        return {status.value: counts.get(status.value, 0) for status in ArtifactStatus}
