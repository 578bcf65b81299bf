"""Unit tests for CLI configuration loading."""

import json
import pytest
import yaml
from pathlib import Path

from pydantic import ValidationError

from evidence_vault.cli.config import (
    ConfigurationLoader,
    EvidenceConfiguration,
    load_configuration,
    print_configuration,
    validate_configuration,
)
from evidence_vault.models.evidence import EvidenceKind


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove every environment variable the loader reads."""
    for name in ConfigurationLoader().env_mapping():
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def valid_config(tmp_path):
    registrants = tmp_path / "registrants.csv"
    registrants.write_text("id,eventId\n1001,255274\n")
    auth = tmp_path / "auth.json"
    auth.write_text("{}")
    return EvidenceConfiguration(
        input={'registrants_file': registrants},
        browser={'storage_state': auth},
        output={'output_dir': tmp_path / "out"},
        storage={'backend': 'local', 'local_path': tmp_path / "archive"},
    )


class TestDefaults:

    def test_defaults(self, tmp_path):
        config = load_configuration(search_paths=[tmp_path])

        assert config.browser.viewport == "1600x1200"
        assert config.browser.storage_state == Path("auth.json")
        assert config.output.output_dir == Path("out")
        assert config.storage.backend == "azure"
        assert config.execution.sessions == 1
        assert config.capture.delay_ms == 300
        assert config.capture.keywords_for(EvidenceKind.INVOICE) == ["invoice"]
        assert config.loaded_from == ["defaults"]

    def test_browser_config_conversion(self):
        browser = EvidenceConfiguration(browser={'viewport': "1280x720", 'headful': True}).browser

        config = browser.to_browser_config()

        assert config.viewport == {'width': 1280, 'height': 720}
        assert config.headless is False

    @pytest.mark.parametrize("section, values", [
        ("browser", {'viewport': "big"}),
        ("browser", {'engine': "netscape"}),
        ("output", {'format': "xml"}),
        ("storage", {'backend': "ftp"}),
        ("execution", {'sessions': 0}),
        ("capture", {'keywords': {'confirmation': [], 'invoice': ["invoice"]}}),
    ])
    def test_invalid_values(self, section, values):
        with pytest.raises(ValidationError):
            EvidenceConfiguration(**{section: values})


class TestPrecedence:
    """Tests for configuration source precedence."""

    def test_config_file(self, tmp_path):
        config_file = tmp_path / "custom.yaml"
        config_file.write_text(yaml.safe_dump({
            'capture': {'pdf': True, 'delay_ms': 50},
            'storage': {'backend': 's3', 'bucket': 'evidence'},
        }))

        config = load_configuration(config_file=config_file, search_paths=[tmp_path])

        assert config.capture.pdf is True
        assert config.capture.delay_ms == 50
        assert config.storage.bucket == "evidence"
        assert config.config_file_path == config_file
        assert f"config file: {config_file}" in config.loaded_from

    def test_auto_discovered_file(self, tmp_path):
        (tmp_path / "evidence.json").write_text(json.dumps({'execution': {'sessions': 3}}))

        config = load_configuration(search_paths=[tmp_path])

        assert config.execution.sessions == 3
        assert config.loaded_from[1].startswith("auto-discovered")

    def test_environment_over_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "custom.yaml"
        config_file.write_text(yaml.safe_dump({'capture': {'delay_ms': 50, 'pdf': False}}))
        monkeypatch.setenv("EVIDENCE_DELAY_MS", "700")
        monkeypatch.setenv("EVIDENCE_PDF", "yes")
        monkeypatch.setenv("EVIDENCE_OUTPUT_DIR", "/tmp/evidence")
        monkeypatch.setenv("EVIDENCE_COLLECTION_PARAM", "event")

        config = load_configuration(config_file=config_file)

        assert config.capture.delay_ms == 700
        assert config.capture.pdf is True
        assert config.output.output_dir == Path("/tmp/evidence")
        assert config.capture.collection_param == "event"
        assert "environment variables" in config.loaded_from

    def test_azure_environment_names(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "DefaultEndpointsProtocol=https;AccountName=x")
        monkeypatch.setenv("AZURE_BLOB_CONTAINER", "registrant-evidence")

        config = load_configuration(search_paths=[tmp_path])

        assert config.storage.connection_string.startswith("DefaultEndpointsProtocol")
        assert config.storage.container == "registrant-evidence"

    def test_cli_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EVIDENCE_SESSIONS", "2")

        config = load_configuration(
            search_paths=[tmp_path],
            cli_overrides={'execution': {'sessions': 4}},
        )

        assert config.execution.sessions == 4
        assert config.loaded_from[-1] == "CLI flags"

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_configuration(config_file=tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("capture: [unclosed")

        with pytest.raises(ValueError):
            load_configuration(config_file=config_file)

    def test_unsupported_format(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("[capture]")

        with pytest.raises(ValueError):
            load_configuration(config_file=config_file)


class TestPrintConfiguration:

    def test_secrets_masked(self):
        config = EvidenceConfiguration(storage={'connection_string': "AccountKey=secret", 'sas_url': None})

        text = print_configuration(config, "json")

        data = json.loads(text)
        assert data['storage']['connection_string'] == "***"
        assert data['storage']['sas_url'] is None
        assert "secret" not in text

    def test_yaml_output(self):
        data = yaml.safe_load(print_configuration(EvidenceConfiguration()))
        assert data['browser']['viewport'] == "1600x1200"


class TestValidateConfiguration:
    """Tests for pre-run validation."""

    def test_valid(self, valid_config):
        assert validate_configuration(valid_config) == []
        assert valid_config.output.output_dir.is_dir()

    def test_missing_input(self, valid_config):
        valid_config.input.registrants_file = None
        assert validate_configuration(valid_config) == ["No registrant file given (--in)"]
        assert validate_configuration(valid_config, require_input=False) == []

    def test_missing_login_state(self, valid_config, tmp_path):
        valid_config.browser.storage_state = tmp_path / "nope.json"

        errors = validate_configuration(valid_config)

        assert len(errors) == 1
        assert "save-session" in errors[0]

    def test_azure_credentials_required(self, valid_config):
        valid_config.storage.backend = "azure"

        errors = validate_configuration(valid_config)

        assert errors == ["Provide either AZURE_STORAGE_CONNECTION_STRING or AZURE_BLOB_SAS_URL"]

    def test_azure_container_required(self, valid_config):
        valid_config.storage.backend = "azure"
        valid_config.storage.connection_string = "AccountName=x"

        assert validate_configuration(valid_config) == ["AZURE_BLOB_CONTAINER is not set"]

    def test_azure_sas_url_needs_no_container(self, valid_config):
        valid_config.storage.backend = "azure"
        valid_config.storage.sas_url = "https://acct.blob.core.windows.net/evidence?sv=1&sig=x"

        assert validate_configuration(valid_config) == []

    def test_s3_bucket_required(self, valid_config):
        valid_config.storage.backend = "s3"

        errors = validate_configuration(valid_config)

        assert len(errors) == 1
        assert "bucket" in errors[0]
