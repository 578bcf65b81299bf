"""Per-entity evidence capture state machine.

The orchestrator walks a fixed sequence of states for one registrant. Every
evidence state records exactly one artifact (captured, degraded or missing),
so a run always ends with six records. Only a navigation failure ends the
sequence early; the remaining states are then recorded as missing.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import aiofiles
from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .config import CaptureSettings
from .resolver import EmailPreviewAddress, ResolutionPath, ResourceResolver
from .stable_state import StableStateGate
from .strategies import (
    CaptureStrategy,
    EmbeddedFrameStrategy,
    FullPageStrategy,
    RegionCropStrategy,
)
from ..errors import NavigationError
from ..models.evidence import CaptureJob, Entity, EvidenceArtifact, EvidenceKind

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    """States of the per-entity capture sequence."""
    START = "start"
    NAVIGATE_HOME = "navigate_home"
    CAPTURE_ATTENDANCE = "capture_attendance"
    CAPTURE_CONTACT = "capture_contact"
    RESOLVE_CONFIRMATION = "resolve_confirmation"
    RESOLVE_INVOICE = "resolve_invoice"
    CAPTURE_TICKET_EMAIL = "capture_ticket_email"
    CAPTURE_QR = "capture_qr"
    DONE = "done"


TRANSITIONS: Dict[CaptureState, CaptureState] = {
    CaptureState.START: CaptureState.NAVIGATE_HOME,
    CaptureState.NAVIGATE_HOME: CaptureState.CAPTURE_ATTENDANCE,
    CaptureState.CAPTURE_ATTENDANCE: CaptureState.CAPTURE_CONTACT,
    CaptureState.CAPTURE_CONTACT: CaptureState.RESOLVE_CONFIRMATION,
    CaptureState.RESOLVE_CONFIRMATION: CaptureState.RESOLVE_INVOICE,
    CaptureState.RESOLVE_INVOICE: CaptureState.CAPTURE_TICKET_EMAIL,
    CaptureState.CAPTURE_TICKET_EMAIL: CaptureState.CAPTURE_QR,
    CaptureState.CAPTURE_QR: CaptureState.DONE,
}

STATE_KINDS: Dict[CaptureState, EvidenceKind] = {
    CaptureState.CAPTURE_ATTENDANCE: EvidenceKind.ATTENDANCE,
    CaptureState.CAPTURE_CONTACT: EvidenceKind.CONTACT,
    CaptureState.RESOLVE_CONFIRMATION: EvidenceKind.CONFIRMATION,
    CaptureState.RESOLVE_INVOICE: EvidenceKind.INVOICE,
    CaptureState.CAPTURE_TICKET_EMAIL: EvidenceKind.TICKET_EMAIL,
    CaptureState.CAPTURE_QR: EvidenceKind.QR,
}

MANIFEST_SUFFIX = "__manifest.json"


@dataclass
class HomeSurface:
    """What was learned on the registrant's home page."""
    url: Optional[str] = None
    links_resolved: bool = False
    confirmation_href: Optional[str] = None
    invoice_href: Optional[str] = None
    email_address: Optional[EmailPreviewAddress] = None


StateHandler = Callable[[CaptureJob, HomeSurface], Awaitable[Optional[EvidenceArtifact]]]


class EvidenceOrchestrator:
    """Captures the six evidence artifacts of one entity on a shared page."""

    def __init__(
        self,
        page: Page,
        output_root: Path,
        settings: Optional[CaptureSettings] = None,
        gate: Optional[StableStateGate] = None,
        resolver: Optional[ResourceResolver] = None,
    ):
        """Initialize orchestrator.

        Args:
            page: Authenticated page reused for every entity of the session
            output_root: Directory under which one folder per entity is created
            settings: Capture settings
            gate: Readiness gate; built from settings when omitted
            resolver: Secondary surface resolver; built from settings when omitted
        """
        self.page = page
        self.output_root = Path(output_root)
        self.settings = settings or CaptureSettings()

        self.gate = gate or StableStateGate(
            loading_indicator_selector=self.settings.loading_indicator_selector,
            timeout_ms=self.settings.gate_timeout_ms,
            settle_ms=self.settings.settle_ms,
        )
        self.resolver = resolver or ResourceResolver(
            actions_button_pattern=self.settings.actions_button_pattern,
            selector_timeout_ms=self.settings.selector_timeout_ms,
            navigation_timeout_ms=self.settings.navigation_timeout_ms,
            menu_open_wait_ms=self.settings.menu_open_wait_ms,
        )

        self.full_page = FullPageStrategy(self.settings)
        self.embedded_frame = EmbeddedFrameStrategy(
            self.settings,
            frame_pattern=self.settings.email_preview_frame_pattern,
            fallback=FullPageStrategy(self.settings, pdf=False),
        )
        self.region_crop = RegionCropStrategy(self.settings)

        self._handlers: Dict[CaptureState, StateHandler] = {
            CaptureState.START: self._start,
            CaptureState.NAVIGATE_HOME: self._navigate_home,
            CaptureState.CAPTURE_ATTENDANCE: self._capture_attendance,
            CaptureState.CAPTURE_CONTACT: self._capture_contact,
            CaptureState.RESOLVE_CONFIRMATION: self._resolve_confirmation,
            CaptureState.RESOLVE_INVOICE: self._resolve_invoice,
            CaptureState.CAPTURE_TICKET_EMAIL: self._capture_ticket_email,
            CaptureState.CAPTURE_QR: self._capture_qr,
        }

    def entity_dir(self, entity: Entity) -> Path:
        return self.output_root / entity.id

    async def run(self, entity: Entity) -> CaptureJob:
        """Run the capture sequence for one entity.

        Args:
            entity: Registrant to capture

        Returns:
            CaptureJob with one artifact per evidence type
        """
        job = CaptureJob(entity=entity, output_dir=self.entity_dir(entity))
        self._prepare_directory(job.output_dir)
        home = HomeSurface()

        logger.info(f"▶ {entity.id}: {entity.source_url}")

        state = CaptureState.START
        while state != CaptureState.DONE:
            try:
                await self._run_state(state, job, home)
            except NavigationError as e:
                self._abort(job, state, e)
                break
            state = TRANSITIONS[state]

        job.finished_at = datetime.utcnow()

        if self.settings.write_manifest:
            await self._write_manifest(job)

        counts = job.status_counts()
        logger.info(
            f"  {entity.id} done: {counts['captured']} captured, "
            f"{counts['degraded']} degraded, {counts['missing']} missing"
        )
        return job

    async def _run_state(self, state: CaptureState, job: CaptureJob, home: HomeSurface) -> None:
        """Run one state handler and record the artifact of evidence states."""
        handler = self._handlers[state]
        kind = STATE_KINDS.get(state)

        if kind is None:
            await handler(job, home)
            return

        try:
            artifact = await handler(job, home)
        except NavigationError:
            raise
        except Exception as e:
            logger.warning(f"  {kind.label} capture failed: {e}")
            artifact = EvidenceArtifact.missing(kind, f"capture failed: {e}")

        job.record(artifact.with_kind(kind))

    def _abort(self, job: CaptureJob, state: CaptureState, error: NavigationError) -> None:
        """Record every evidence type not yet captured as missing."""
        logger.error(f"  {job.entity.id} aborted in {state.value}: {error}")
        job.aborted = True
        job.abort_reason = str(error)
        for kind in EvidenceKind.capture_order():
            if job.artifact_for(kind) is None:
                job.record(EvidenceArtifact.missing(kind, f"not attempted: {error}"))

    @staticmethod
    def _prepare_directory(directory: Path) -> None:
        """Create an empty entity directory, clearing leftovers of a failed run."""
        if directory.exists():
            logger.info(f"  clearing previous capture in {directory}")
            shutil.rmtree(directory)
        directory.mkdir(parents=True)

    def _output_base(self, job: CaptureJob, kind: EvidenceKind) -> Path:
        return job.output_dir / kind.file_stem(job.entity.id)

    async def _navigate(self, url: str, page: Optional[Page] = None) -> None:
        """Navigate, gate and pause.

        Raises:
            NavigationError: If the navigation fails or times out
        """
        page = page or self.page
        try:
            response = await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, f"timed out after {self.settings.navigation_timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

        if response is not None and response.status >= 400:
            logger.warning(f"  HTTP {response.status} for {url}")

        await self.gate.wait_until_stable(page)
        if self.settings.delay_ms:
            await page.wait_for_timeout(self.settings.delay_ms)

    async def _extract_label(self) -> Optional[str]:
        """First non-empty heading-like text on the page, whitespace collapsed."""
        for selector in self.settings.label_selectors:
            try:
                element = self.page.locator(selector).first
                if await element.count() == 0:
                    continue
                text = await element.text_content() or ""
            except PlaywrightError:
                continue
            label = " ".join(text.split())
            if label:
                return label
        return None

    async def _resolve_home_links(self, job: CaptureJob, home: HomeSurface) -> None:
        """Resolve secondary surface addresses once, while on the home page."""
        if home.links_resolved:
            return
        home.links_resolved = True

        for kind in (EvidenceKind.CONFIRMATION, EvidenceKind.INVOICE):
            try:
                href = await self.resolver.resolve_href(self.page, self.settings.keywords_for(kind))
            except PlaywrightError as e:
                logger.warning(f"  could not scan links for {kind.value}: {e}")
                href = None
            if kind == EvidenceKind.CONFIRMATION:
                home.confirmation_href = href
            else:
                home.invoice_href = href

        home.email_address = await self.resolver.resolve_email_preview(
            self.page,
            job.entity,
            send_email_path=self.settings.send_email_path,
            send_email_base_url=self.settings.send_email_base_url,
            email_category=self.settings.email_category,
            collection_param=self.settings.collection_param,
        )

    async def _return_home(self, home: HomeSurface) -> None:
        if home.url and self.page.url != home.url:
            await self._navigate(home.url)

    # State handlers

    async def _start(self, job: CaptureJob, home: HomeSurface) -> None:
        logger.debug(f"  output directory: {job.output_dir}")

    async def _navigate_home(self, job: CaptureJob, home: HomeSurface) -> None:
        await self._navigate(job.entity.source_url)
        home.url = self.page.url
        job.page_label = await self._extract_label()
        if job.page_label:
            logger.info(f"  {job.page_label}")

    async def _capture_attendance(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        return await self.full_page.capture(
            self.page, self._output_base(job, EvidenceKind.ATTENDANCE), EvidenceKind.ATTENDANCE
        )

    async def _capture_contact(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        return await self.full_page.capture(
            self.page, self._output_base(job, EvidenceKind.CONTACT), EvidenceKind.CONTACT
        )

    async def _resolve_confirmation(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        await self._resolve_home_links(job, home)
        return await self._capture_secondary(
            job, home, EvidenceKind.CONFIRMATION, home.confirmation_href, self.region_crop
        )

    async def _resolve_invoice(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        await self._resolve_home_links(job, home)
        return await self._capture_secondary(
            job, home, EvidenceKind.INVOICE, home.invoice_href, self.full_page
        )

    async def _capture_secondary(
        self,
        job: CaptureJob,
        home: HomeSurface,
        kind: EvidenceKind,
        href: Optional[str],
        strategy: CaptureStrategy,
    ) -> EvidenceArtifact:
        """Capture a surface reached from the actions menu.

        A resolved link is followed directly. Otherwise the menu item is
        clicked on the home page and the result is marked degraded.
        """
        output_base = self._output_base(job, kind)

        if href:
            await self._navigate(href)
            return await strategy.capture(self.page, output_base, kind)

        logger.warning(f"  could not resolve {kind.value} link; trying the actions menu")
        await self._return_home(home)
        resolution = await self.resolver.resolve(self.page, self.settings.keywords_for(kind))

        if resolution.path == ResolutionPath.HREF:
            await self._navigate(resolution.href)
            return await strategy.capture(self.page, output_base, kind)

        if resolution.path == ResolutionPath.MENU:
            surface = resolution.surface
            try:
                await self.gate.wait_until_stable(surface.page)
                artifact = await strategy.capture(surface.page, output_base, kind)
            finally:
                await surface.close()
            return artifact.as_degraded("reached by clicking the actions menu")

        logger.warning(f"  {kind.label} not found")
        return EvidenceArtifact.missing(kind, f"no {kind.value} link or menu item")

    async def _capture_ticket_email(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        await self._resolve_home_links(job, home)
        address = home.email_address
        if address is None:
            return EvidenceArtifact.missing(EvidenceKind.TICKET_EMAIL, "no email preview address")

        await self._navigate(address.url)
        return await self.embedded_frame.capture(
            self.page,
            self._output_base(job, EvidenceKind.TICKET_EMAIL),
            EvidenceKind.TICKET_EMAIL,
        )

    async def _capture_qr(self, job: CaptureJob, home: HomeSurface) -> EvidenceArtifact:
        await self._resolve_home_links(job, home)
        address = home.email_address
        if address is None:
            return EvidenceArtifact.missing(EvidenceKind.QR, "no email preview address")

        if self.page.url != address.url:
            await self._navigate(address.url)

        artifact = await self.full_page.capture(
            self.page, self._output_base(job, EvidenceKind.QR), EvidenceKind.QR
        )
        if not address.from_page:
            artifact = artifact.as_degraded("email preview address built from ids")
        return artifact

    async def _write_manifest(self, job: CaptureJob) -> Path:
        path = job.output_dir / f"{job.entity.id}{MANIFEST_SUFFIX}"
        try:
            async with aiofiles.open(path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(job.to_manifest(), indent=2))
        except OSError as e:
            logger.warning(f"  manifest not written for {job.entity.id}: {e}")
        return path
