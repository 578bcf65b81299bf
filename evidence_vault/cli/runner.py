"""CLI runner wiring configuration, browser, storage and pipeline together."""

import logging
import sys
from enum import IntEnum
from typing import List, Optional

from .config import EvidenceConfiguration
from .input.registrant_loader import load_registrants
from .summary import print_summary, write_summary_file
from ..capture.browser_factory import BrowserFactory
from ..errors import StorageConfigError
from ..models.evidence import Entity, EntityOutcome, RunSummary
from ..persistence.storage import create_artifact_store_from_config
from ..pipeline.runner import PipelineRunner

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """CLI exit codes.

    Individual registrant failures do not change the exit code; they are
    reported in the summary and their folders are kept locally.
    """
    SUCCESS = 0           # Run completed
    CONFIG_ERROR = 3      # Configuration error or no usable registrants
    RUNTIME_ERROR = 4     # Setup or runtime error outside per-registrant isolation


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for CLI runs."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    # Third-party clients are chatty at debug level
    for noisy in ("asyncio", "botocore", "aiobotocore", "azure"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


class CLIRunner:
    """Runs one evidence capture pass from a loaded configuration."""

    def __init__(self, config: EvidenceConfiguration):
        self.config = config
        self.summary: Optional[RunSummary] = None

    def load_entities(self) -> List[Entity]:
        return load_registrants(
            self.config.input.registrants_file,
            collection_id=self.config.input.collection_id,
            registrant_view_url=self.config.input.registrant_view_url,
            collection_param=self.config.capture.collection_param,
        )

    def _on_outcome(self, outcome: EntityOutcome) -> None:
        if outcome.success:
            logger.info(f"✔ {outcome.entity_id} archived: {outcome.remote_url}")
        else:
            logger.warning(f"✖ {outcome.entity_id} kept locally: {outcome.error or 'not uploaded'}")

    async def run(self) -> ExitCode:
        """Run the pipeline and print the summary.

        Returns:
            Exit code for the process
        """
        try:
            entities = self.load_entities()
        except (OSError, ValueError) as e:
            logger.error(f"Could not read registrants: {e}")
            return ExitCode.CONFIG_ERROR

        if not entities:
            logger.error("No usable rows found")
            return ExitCode.CONFIG_ERROR

        try:
            store = create_artifact_store_from_config(self.config.storage)
        except StorageConfigError as e:
            logger.error(f"Storage is not configured: {e}")
            return ExitCode.CONFIG_ERROR

        try:
            async with BrowserFactory(self.config.browser.to_browser_config()) as factory:
                pipeline = PipelineRunner(
                    browser_factory=factory,
                    store=store,
                    output_root=self.config.output.output_dir,
                    settings=self.config.capture,
                    archive_dir=self.config.output.archive_dir,
                    sessions=self.config.execution.sessions,
                    signed_urls=self.config.storage.signed_urls,
                )
                pipeline.add_callback(self._on_outcome)
                self.summary = await pipeline.run(entities)
        finally:
            await store.close()

        output = self.config.output
        if not output.quiet or output.format != "text":
            print_summary(self.summary, output.format, verbose=output.verbose)
        if output.summary_file:
            file_format = "yaml" if output.summary_file.suffix.lower() in (".yaml", ".yml") else "json"
            write_summary_file(self.summary, output.summary_file, file_format)

        return ExitCode.SUCCESS
