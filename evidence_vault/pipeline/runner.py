"""Pipeline runner driving capture, packing and upload for every entity.

Entities are processed strictly one after another on one page by default.
With more than one session, the list is split into round-robin partitions
that run concurrently, each in its own isolated browser context. A failure
of one entity never stops the run.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..capture.browser_factory import BrowserFactory
from ..capture.config import CaptureSettings
from ..capture.orchestrator import EvidenceOrchestrator
from ..errors import EvidenceError, PackagingError, UploadError
from ..models.evidence import CaptureJob, Entity, EntityOutcome, RunSummary
from ..persistence.bundler import Bundler
from ..persistence.mover import RemoteMover
from ..persistence.storage import ArtifactStore

logger = logging.getLogger(__name__)


ARCHIVE_DIR_NAME = "_archives"


def partition(entities: List[Entity], sessions: int) -> List[List[Entity]]:
    """Split entities into at most ``sessions`` disjoint round-robin partitions."""
    sessions = max(1, sessions)
    return [part for part in (entities[i::sessions] for i in range(sessions)) if part]


def deduplicate(entities: Iterable[Entity]) -> Tuple[List[Entity], List[str]]:
    """Keep the first entity per id, preserving input order.

    Returns:
        Tuple of (unique entities, skipped duplicate ids)
    """
    seen = set()
    unique: List[Entity] = []
    skipped: List[str] = []
    for entity in entities:
        if entity.id in seen:
            skipped.append(entity.id)
            continue
        seen.add(entity.id)
        unique.append(entity)
    return unique, skipped


class PipelineRunner:
    """Runs every entity through capture, packing and upload."""

    def __init__(
        self,
        browser_factory: BrowserFactory,
        store: ArtifactStore,
        output_root: Union[str, Path],
        settings: Optional[CaptureSettings] = None,
        archive_dir: Optional[Union[str, Path]] = None,
        sessions: int = 1,
        signed_urls: bool = False,
    ):
        """Initialize runner.

        Args:
            browser_factory: Started browser factory providing authenticated pages
            store: Shared durable store
            output_root: Directory receiving one folder per entity
            settings: Capture settings
            archive_dir: Where archives are written before upload
            sessions: Number of concurrent browser sessions
            signed_urls: Report signed archive URLs
        """
        self.browser_factory = browser_factory
        self.output_root = Path(output_root)
        self.settings = settings or CaptureSettings()
        self.sessions = max(1, sessions)
        self.bundler = Bundler(archive_dir or self.output_root / ARCHIVE_DIR_NAME)
        self.mover = RemoteMover(store, signed_urls=signed_urls)
        self._callbacks: List[Callable[[EntityOutcome], None]] = []

    def add_callback(self, callback: Callable[[EntityOutcome], None]) -> None:
        """Add callback to be called with each finished entity outcome."""
        self._callbacks.append(callback)

    def create_orchestrator(self, page) -> EvidenceOrchestrator:
        return EvidenceOrchestrator(page, self.output_root, settings=self.settings)

    async def run(self, entities: Iterable[Entity]) -> RunSummary:
        """Process all entities.

        Args:
            entities: Entities in input order

        Returns:
            RunSummary with one outcome per processed entity, in input order

        Raises:
            EvidenceError: If no entity was supplied
        """
        summary = RunSummary()
        unique, summary.skipped = deduplicate(entities)
        for entity_id in summary.skipped:
            logger.warning(f"Skipping duplicate registrant id {entity_id}")

        if not unique:
            raise EvidenceError("No registrants to process")

        self.output_root.mkdir(parents=True, exist_ok=True)
        partitions = partition(unique, self.sessions)
        logger.info(f"Processing {len(unique)} registrants in {len(partitions)} session(s)")

        outcomes: Dict[str, EntityOutcome] = {}
        await asyncio.gather(*(
            self._run_session(index, part, outcomes)
            for index, part in enumerate(partitions, start=1)
        ))

        summary.outcomes = [outcomes[entity.id] for entity in unique if entity.id in outcomes]
        summary.finished_at = datetime.utcnow()
        logger.info(
            f"Run finished: {summary.succeeded}/{summary.total} archived "
            f"in {summary.duration_seconds:.1f}s"
        )
        return summary

    async def _run_session(self, index: int, entities: List[Entity], outcomes: Dict[str, EntityOutcome]) -> None:
        """Process one partition sequentially on its own page."""
        logger.debug(f"Session {index}: {len(entities)} registrants")
        async with self.browser_factory.page() as page:
            orchestrator = self.create_orchestrator(page)
            for entity in entities:
                outcome = await self.process_entity(orchestrator, entity)
                outcomes[entity.id] = outcome
                self._call_callbacks(outcome)

    async def process_entity(self, orchestrator: EvidenceOrchestrator, entity: Entity) -> EntityOutcome:
        """Capture, pack and upload one entity; never raises for entity failures."""
        try:
            job = await orchestrator.run(entity)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"  {entity.id} capture failed: {e}")
            job = CaptureJob(
                entity=entity,
                output_dir=orchestrator.entity_dir(entity),
                error=str(e),
                finished_at=datetime.utcnow(),
            )
            return EntityOutcome.from_job(job)

        # Packing and upload finish even if the run is cancelled meanwhile
        archive_task = asyncio.ensure_future(self.archive(job))
        try:
            await asyncio.shield(archive_task)
        except asyncio.CancelledError:
            logger.warning(f"  finishing upload of {entity.id} before stopping")
            await archive_task
            raise

        return EntityOutcome.from_job(job)

    async def archive(self, job: CaptureJob) -> CaptureJob:
        """Pack the job directory and move it to durable storage."""
        if not job.evidence_files():
            job.error = job.error or "no evidence captured"
            logger.warning(f"  {job.entity.id}: nothing captured, keeping {job.output_dir}")
            return job

        try:
            archive_path = await self.bundler.pack(job.output_dir, job.entity.archive_name)
            job.remote_url = await self.mover.move(archive_path, job.entity.archive_name, job.output_dir)
            job.uploaded = True
        except (PackagingError, UploadError) as e:
            job.error = str(e)
            logger.error(f"  {job.entity.id}: {e}; local folder kept at {job.output_dir}")
        return job

    def _call_callbacks(self, outcome: EntityOutcome) -> None:
        for callback in self._callbacks:
            try:
                callback(outcome)
            except Exception as e:
                logger.error(f"Error in pipeline callback: {e}")
