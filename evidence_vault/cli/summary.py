"""Run summary output and formatting for the CLI.

Formats a RunSummary as human-readable text, JSON or YAML.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, TextIO

import yaml

from ..models.evidence import EntityOutcome, EvidenceKind, RunSummary


STATUS_MARKS = {
    'captured': '✓',
    'degraded': '~',
    'missing': '✗',
}


class SummaryFormatter:
    """Formats run summaries into various output formats."""

    def __init__(self, format_type: str = "text", verbose: bool = False):
        self.format_type = format_type.lower()
        self.verbose = verbose

    def format_summary(self, summary: RunSummary) -> str:
        """Format summary data into specified format."""
        if self.format_type == "json":
            return json.dumps(self.to_dict(summary), indent=2, default=str)
        elif self.format_type == "yaml":
            return yaml.safe_dump(self.to_dict(summary), default_flow_style=False, sort_keys=False)
        return self._format_text(summary)

    def to_dict(self, summary: RunSummary) -> Dict[str, Any]:
        return {
            "summary": {
                "start_time": summary.started_at.isoformat(),
                "end_time": summary.finished_at.isoformat() if summary.finished_at else None,
                "duration_seconds": round(summary.duration_seconds, 1),
                "total": summary.total,
                "archived": summary.succeeded,
                "failed": summary.failed,
                "skipped_duplicates": summary.skipped,
            },
            "artifacts": summary.status_totals(),
            "registrants": [self._outcome_dict(outcome) for outcome in summary.outcomes],
        }

    @staticmethod
    def _outcome_dict(outcome: EntityOutcome) -> Dict[str, Any]:
        return {
            "id": outcome.entity_id,
            "success": outcome.success,
            "statuses": outcome.statuses,
            "remote_url": outcome.remote_url,
            "local_dir": str(outcome.local_dir) if outcome.local_dir else None,
            "error": outcome.error,
        }

    def _format_text(self, summary: RunSummary) -> str:
        lines: List[str] = []

        lines.append("🗄️  EVIDENCE VAULT RUN SUMMARY")
        lines.append("=" * 50)
        lines.append(f"Start Time: {summary.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        lines.append(f"Duration: {summary.duration_seconds:.1f} seconds")
        lines.append("")

        lines.append("📦 REGISTRANTS")
        lines.append("-" * 20)
        lines.append(f"Total: {summary.total}")
        lines.append(f"✅ Archived: {summary.succeeded}")
        if summary.failed > 0:
            lines.append(f"❌ Failed: {summary.failed}")
        if summary.skipped:
            lines.append(f"Skipped duplicates: {', '.join(summary.skipped)}")
        lines.append("")

        totals = summary.status_totals()
        lines.append("📸 EVIDENCE")
        lines.append("-" * 20)
        lines.append(f"Captured: {totals['captured']}")
        lines.append(f"Degraded: {totals['degraded']}")
        lines.append(f"Missing: {totals['missing']}")
        lines.append("")

        failures = [outcome for outcome in summary.outcomes if not outcome.success]
        if failures:
            lines.append("⚠️  KEPT LOCALLY")
            lines.append("-" * 20)
            for outcome in failures:
                where = f" ({outcome.local_dir})" if outcome.local_dir else ""
                lines.append(f"• {outcome.entity_id}{where}: {outcome.error or 'not uploaded'}")
            lines.append("")

        if self.verbose and summary.outcomes:
            lines.append("🔎 DETAILS")
            lines.append("-" * 20)
            for outcome in summary.outcomes:
                lines.append(self._format_outcome_line(outcome))
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    @staticmethod
    def _format_outcome_line(outcome: EntityOutcome) -> str:
        marks = " ".join(
            f"{kind.ordinal:02d}{STATUS_MARKS.get(outcome.statuses.get(kind.value, ''), '?')}"
            for kind in sorted(EvidenceKind, key=lambda k: k.ordinal)
        )
        target = outcome.remote_url or (str(outcome.local_dir) if outcome.local_dir else "")
        return f"{outcome.entity_id}  {marks}  {target}"


def print_summary(
    summary: RunSummary,
    format_type: str = "text",
    verbose: bool = False,
    output_stream: TextIO = sys.stdout,
) -> str:
    """Format and print the summary; returns the printed text."""
    text = SummaryFormatter(format_type, verbose).format_summary(summary)
    print(text, file=output_stream, end="" if text.endswith("\n") else "\n")
    return text


def write_summary_file(summary: RunSummary, file_path: Path, format_type: str = "json") -> None:
    """Write summary to file."""
    text = SummaryFormatter(format_type, verbose=True).format_summary(summary)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(text, encoding='utf-8')
