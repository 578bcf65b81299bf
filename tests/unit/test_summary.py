"""Unit tests for run summary formatting."""

import io
import json
import pytest
import yaml
from datetime import datetime, timedelta
from pathlib import Path

from evidence_vault.cli.summary import SummaryFormatter, print_summary, write_summary_file
from evidence_vault.models.evidence import EntityOutcome, RunSummary


@pytest.fixture
def summary():
    started = datetime(2024, 5, 1, 9, 30, 0)
    return RunSummary(
        started_at=started,
        finished_at=started + timedelta(seconds=42.3),
        skipped=["1001"],
        outcomes=[
            EntityOutcome(
                entity_id="1001",
                source_url="https://e/1001",
                success=True,
                statuses={
                    'attendance': 'captured', 'contact': 'captured', 'confirmation': 'degraded',
                    'invoice': 'captured', 'ticket_email': 'captured', 'qr': 'captured',
                },
                remote_url="https://acct.blob.core.windows.net/evidence/1001.zip",
            ),
            EntityOutcome(
                entity_id="1002",
                source_url="https://e/1002",
                success=False,
                statuses={'attendance': 'missing'},
                local_dir=Path("out/1002"),
                error="Upload of 1002.zip failed: timeout",
            ),
        ],
    )


class TestSummaryFormatter:
    """Tests for SummaryFormatter."""

    def test_text(self, summary):
        text = SummaryFormatter("text").format_summary(summary)

        assert "EVIDENCE VAULT RUN SUMMARY" in text
        assert "Duration: 42.3 seconds" in text
        assert "Total: 2" in text
        assert "✅ Archived: 1" in text
        assert "❌ Failed: 1" in text
        assert "Skipped duplicates: 1001" in text
        assert "Degraded: 1" in text
        assert "Missing: 1" in text
        assert "• 1002 (out/1002): Upload of 1002.zip failed: timeout" in text
        assert "DETAILS" not in text

    def test_verbose_details(self, summary):
        text = SummaryFormatter("text", verbose=True).format_summary(summary)

        assert "DETAILS" in text
        # Ordinals in file order with status marks
        assert "1001  01✓ 02✓ 03✓ 04✓ 05~ 06✓  https://acct.blob.core.windows.net/evidence/1001.zip" in text
        assert "1002  01✗ 02? 03? 04? 05? 06?  out/1002" in text

    def test_json(self, summary):
        data = json.loads(SummaryFormatter("json").format_summary(summary))

        assert data['summary']['total'] == 2
        assert data['summary']['archived'] == 1
        assert data['summary']['skipped_duplicates'] == ["1001"]
        assert data['artifacts'] == {'captured': 5, 'degraded': 1, 'missing': 1}
        assert data['registrants'][1]['local_dir'] == "out/1002"

    def test_yaml(self, summary):
        data = yaml.safe_load(SummaryFormatter("YAML").format_summary(summary))
        assert data['registrants'][0]['id'] == "1001"


class TestSummaryOutput:

    def test_print_summary(self, summary):
        stream = io.StringIO()

        text = print_summary(summary, "text", output_stream=stream)

        assert stream.getvalue() == text

    def test_write_summary_file(self, summary, tmp_path):
        path = tmp_path / "reports" / "summary.json"

        write_summary_file(summary, path, "json")

        assert json.loads(path.read_text())['summary']['failed'] == 1
