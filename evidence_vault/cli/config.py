"""Configuration system for the Evidence Vault CLI with proper precedence handling.

Supports multiple configuration sources with precedence:
CLI flags > environment variables > config file > auto-discovered file > defaults
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ..capture.browser_factory import BrowserConfig, BrowserEngineType, parse_viewport
from ..capture.config import CaptureSettings


DEFAULT_REGISTRANT_VIEW_URL = "https://www.swoogo.com/loggedin/registrant/view"
DEFAULT_LOGIN_URL = "https://www.swoogo.com/loggedin"

STORAGE_BACKENDS = ("local", "s3", "azure")
OUTPUT_FORMATS = ("text", "json", "yaml")
SECRET_FIELDS = ("connection_string", "sas_url")


class InputConfig(BaseModel):
    """Input configuration options."""
    registrants_file: Optional[Path] = Field(default=None, description="Registrant CSV file")
    collection_id: Optional[str] = Field(
        default=None,
        description="Event id applied to every row, overriding the CSV column"
    )
    registrant_view_url: str = Field(
        default=DEFAULT_REGISTRANT_VIEW_URL,
        description="Registrant page address built from event and registrant ids"
    )


class BrowserSection(BaseModel):
    """Browser configuration options."""
    engine: str = Field(default=BrowserEngineType.CHROMIUM, description="Browser engine")
    headful: bool = Field(default=False, description="Run browser with GUI")
    viewport: str = Field(default="1600x1200", description="Viewport as WIDTHxHEIGHT")
    storage_state: Optional[Path] = Field(default=Path("auth.json"), description="Saved login state")
    login_url: str = Field(default=DEFAULT_LOGIN_URL, description="Page opened by save-session")
    slow_mo: int = Field(default=0, ge=0, description="Slow down operations by milliseconds")
    locale: Optional[str] = Field(default=None, description="Browser locale")
    ignore_https_errors: bool = Field(default=False)

    @field_validator('engine')
    @classmethod
    def validate_engine(cls, v):
        engines = (BrowserEngineType.CHROMIUM, BrowserEngineType.FIREFOX, BrowserEngineType.WEBKIT)
        if v not in engines:
            raise ValueError(f"engine must be one of: {', '.join(engines)}")
        return v

    @field_validator('viewport')
    @classmethod
    def validate_viewport(cls, v):
        parse_viewport(v)
        return v

    def to_browser_config(self) -> BrowserConfig:
        return BrowserConfig(
            engine=self.engine,
            headless=not self.headful,
            slow_mo=self.slow_mo,
            viewport=parse_viewport(self.viewport),
            storage_state=self.storage_state,
            locale=self.locale,
            ignore_https_errors=self.ignore_https_errors,
        )


class OutputConfig(BaseModel):
    """Output configuration options."""
    output_dir: Path = Field(default=Path("out"), description="Per-registrant evidence directories")
    archive_dir: Optional[Path] = Field(default=None, description="Where archives are staged")
    format: str = Field(default="text", description="Summary format")
    summary_file: Optional[Path] = Field(default=None, description="Also write the summary here")
    verbose: bool = Field(default=False, description="Verbose output")
    quiet: bool = Field(default=False, description="Quiet mode")

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v not in OUTPUT_FORMATS:
            raise ValueError(f"format must be one of: {', '.join(OUTPUT_FORMATS)}")
        return v


class StorageConfig(BaseModel):
    """Durable storage configuration options."""
    backend: str = Field(default="azure", description="Storage backend")
    container: Optional[str] = Field(default=None, description="Azure blob container")
    connection_string: Optional[str] = Field(default=None, description="Azure connection string")
    sas_url: Optional[str] = Field(default=None, description="Azure container SAS URL")
    bucket: Optional[str] = Field(default=None, description="S3 bucket")
    region: str = Field(default="us-east-1", description="S3 region")
    endpoint_url: Optional[str] = Field(default=None, description="S3-compatible endpoint")
    prefix: str = Field(default="", description="Key prefix; archives sit at the root by default")
    local_path: Path = Field(default=Path("archive"), description="Directory for the local backend")
    signed_urls: bool = Field(default=False, description="Report signed archive URLs")

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError(f"backend must be one of: {', '.join(STORAGE_BACKENDS)}")
        return v


class ExecutionConfig(BaseModel):
    """Execution configuration options."""
    sessions: int = Field(default=1, ge=1, le=8, description="Concurrent browser sessions")


class EvidenceConfiguration(BaseModel):
    """Complete CLI configuration with all sections."""

    input: InputConfig = Field(default_factory=InputConfig)
    browser: BrowserSection = Field(default_factory=BrowserSection)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    output: OutputConfig = Field(default_factory=OutputConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    # Metadata
    config_file_path: Optional[Path] = Field(default=None, description="Source config file")
    loaded_from: List[str] = Field(default_factory=list, description="Configuration sources")


class ConfigurationLoader:
    """Loads and merges configuration from multiple sources with proper precedence."""

    ENV_PREFIX = "EVIDENCE_"

    # Searched in order
    DEFAULT_CONFIG_FILES = [
        "evidence.yaml",
        "evidence.yml",
        ".evidence.yaml",
        ".evidence.yml",
        "evidence.json",
    ]

    BOOL_FIELDS = ('.headful', '.pdf', '.write_manifest', '.verbose', '.quiet', '.signed_urls')
    INT_FIELDS = ('.sessions', '.delay_ms', '.navigation_timeout_ms', '.gate_timeout_ms', '.slow_mo')
    PATH_FIELDS = ('.registrants_file', '.storage_state', '.output_dir', '.archive_dir', '.local_path')

    def __init__(self):
        self.loaded_sources: List[str] = []

    def env_mapping(self) -> Dict[str, str]:
        p = self.ENV_PREFIX
        return {
            f"{p}INPUT": "input.registrants_file",
            f"{p}COLLECTION_ID": "input.collection_id",
            f"{p}REGISTRANT_VIEW_URL": "input.registrant_view_url",
            f"{p}AUTH": "browser.storage_state",
            f"{p}HEADFUL": "browser.headful",
            f"{p}VIEWPORT": "browser.viewport",
            f"{p}ENGINE": "browser.engine",
            f"{p}PDF": "capture.pdf",
            f"{p}DELAY_MS": "capture.delay_ms",
            f"{p}NAVIGATION_TIMEOUT_MS": "capture.navigation_timeout_ms",
            f"{p}EMAIL_CATEGORY": "capture.email_category",
            f"{p}COLLECTION_PARAM": "capture.collection_param",
            f"{p}OUTPUT_DIR": "output.output_dir",
            f"{p}ARCHIVE_DIR": "output.archive_dir",
            f"{p}OUTPUT_FORMAT": "output.format",
            f"{p}VERBOSE": "output.verbose",
            f"{p}QUIET": "output.quiet",
            f"{p}STORAGE_BACKEND": "storage.backend",
            f"{p}STORAGE_PREFIX": "storage.prefix",
            f"{p}STORAGE_PATH": "storage.local_path",
            f"{p}S3_BUCKET": "storage.bucket",
            f"{p}S3_REGION": "storage.region",
            f"{p}S3_ENDPOINT_URL": "storage.endpoint_url",
            f"{p}SESSIONS": "execution.sessions",
            # Names used by existing deployments
            "AZURE_STORAGE_CONNECTION_STRING": "storage.connection_string",
            "AZURE_BLOB_CONTAINER": "storage.container",
            "AZURE_BLOB_SAS_URL": "storage.sas_url",
        }

    def load_configuration(
        self,
        config_file: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        search_paths: Optional[List[Path]] = None
    ) -> EvidenceConfiguration:
        """Load configuration with proper precedence.

        Args:
            config_file: Explicitly specified config file
            cli_overrides: CLI flag overrides (nested dict)
            search_paths: Paths to search for config files

        Returns:
            Merged configuration
        """
        self.loaded_sources = ["defaults"]
        config_data: Dict[str, Any] = {}

        if not config_file:
            discovered = self._discover_config_file(search_paths or [Path.cwd()])
            if discovered:
                source = discovered.pop("_source_file")
                config_data = self._merge_config(config_data, discovered)
                self.loaded_sources.append(f"auto-discovered: {source}")

        if config_file:
            if not config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_file}")
            config_data = self._merge_config(config_data, self._load_config_file(config_file))
            self.loaded_sources.append(f"config file: {config_file}")

        env_config = self._load_environment_variables()
        if env_config:
            config_data = self._merge_config(config_data, env_config)
            self.loaded_sources.append("environment variables")

        if cli_overrides:
            config_data = self._merge_config(config_data, cli_overrides)
            self.loaded_sources.append("CLI flags")

        config_data["loaded_from"] = self.loaded_sources
        if config_file:
            config_data["config_file_path"] = config_file

        return EvidenceConfiguration(**config_data)

    def _discover_config_file(self, search_paths: List[Path]) -> Optional[Dict[str, Any]]:
        for search_path in search_paths:
            for config_filename in self.DEFAULT_CONFIG_FILES:
                config_path = search_path / config_filename
                if config_path.is_file():
                    config_data = self._load_config_file(config_path)
                    config_data["_source_file"] = str(config_path)
                    return config_data
        return None

    def _load_config_file(self, config_path: Path) -> Dict[str, Any]:
        try:
            content = config_path.read_text(encoding='utf-8')
        except OSError as e:
            raise ValueError(f"Error loading config file {config_path}: {e}")

        suffix = config_path.suffix.lower()
        try:
            if suffix in ['.yaml', '.yml']:
                return yaml.safe_load(content) or {}
            elif suffix == '.json':
                return json.loads(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_path}: {e}")
        raise ValueError(f"Unsupported config file format: {config_path.suffix}")

    def _load_environment_variables(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        for env_var, config_path in self.env_mapping().items():
            env_value = os.getenv(env_var)
            if env_value is not None and env_value != "":
                self._set_nested_value(config, config_path, self._convert_env_value(env_value, config_path))
        return config

    def _convert_env_value(self, value: str, config_path: str) -> Any:
        """Convert environment variable string to appropriate type."""
        if config_path.endswith(self.BOOL_FIELDS):
            return value.lower() in ('true', '1', 'yes', 'on')
        if config_path.endswith(self.INT_FIELDS):
            return int(value)
        if config_path.endswith(self.PATH_FIELDS):
            return Path(value)
        return value

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration dictionaries, with override taking precedence."""
        if not override:
            return base

        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result


def load_configuration(
    config_file: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    search_paths: Optional[List[Path]] = None
) -> EvidenceConfiguration:
    """Convenience function to load configuration."""
    return ConfigurationLoader().load_configuration(config_file, cli_overrides, search_paths)


def print_configuration(config: EvidenceConfiguration, format: str = "yaml") -> str:
    """Render configuration for debugging, with secrets masked.

    Args:
        config: Configuration to print
        format: Output format (yaml, json)

    Returns:
        Formatted configuration string
    """
    config_dict = config.model_dump(
        mode="json",
        exclude={'loaded_from', 'config_file_path'},
        exclude_none=False
    )
    for field in SECRET_FIELDS:
        if config_dict['storage'].get(field):
            config_dict['storage'][field] = "***"

    if format.lower() == "json":
        return json.dumps(config_dict, indent=2, default=str)
    return yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True)


def validate_configuration(config: EvidenceConfiguration, require_input: bool = True) -> List[str]:
    """Validate configuration and return list of validation errors.

    Args:
        config: Configuration to validate
        require_input: Whether a registrant file must be present

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if require_input:
        if not config.input.registrants_file:
            errors.append("No registrant file given (--in)")
        elif not config.input.registrants_file.exists():
            errors.append(f"Registrant file not found: {config.input.registrants_file}")

    if config.browser.storage_state and not config.browser.storage_state.exists():
        errors.append(
            f"Login state not found: {config.browser.storage_state} "
            "(run 'evidence-vault save-session' first)"
        )

    storage = config.storage
    if storage.backend == "azure":
        if not storage.connection_string and not storage.sas_url:
            errors.append("Provide either AZURE_STORAGE_CONNECTION_STRING or AZURE_BLOB_SAS_URL")
        elif storage.connection_string and not storage.container:
            errors.append("AZURE_BLOB_CONTAINER is not set")
    elif storage.backend == "s3" and not (storage.bucket or storage.container):
        errors.append("An S3 bucket is required (storage.bucket or EVIDENCE_S3_BUCKET)")

    try:
        config.output.output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        errors.append(f"Cannot create output directory {config.output.output_dir}: {e}")

    return errors
