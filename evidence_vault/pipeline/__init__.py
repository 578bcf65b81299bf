"""Run-level orchestration for Evidence Vault."""

from .runner import PipelineRunner, deduplicate, partition

__all__ = [
    "PipelineRunner",
    "deduplicate",
    "partition",
]
