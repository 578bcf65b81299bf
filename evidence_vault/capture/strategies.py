"""Capture strategies producing evidence files from a ready page.

Three strategies share the ``capture(target, output_base, kind)`` contract:

- FullPageStrategy: whole scrollable document with side navigation hidden
  and scroll containers expanded, optionally with a PDF export.
- EmbeddedFrameStrategy: only the document inside a specific iframe.
- RegionCropStrategy: the most specific email-body-like region.

Each strategy runs its own fallback chain; whenever a lower-priority step
produced the file, the artifact is marked degraded.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    Error as PlaywrightError,
    Frame,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .config import CaptureSettings
from .dom_overrides import expanded_scroll_containers, hidden_side_navigation
from .fallback import FallbackChain
from ..models.evidence import ArtifactStatus, EvidenceArtifact, EvidenceKind

logger = logging.getLogger(__name__)


EXPAND_FRAME_DOCUMENT_JS = """
() => {
    const html = document.documentElement;
    const body = document.body;
    html.style.overflow = 'visible';
    if (body) body.style.overflow = 'visible';
    const height = Math.max(
        html.scrollHeight, html.offsetHeight,
        body ? body.scrollHeight : 0, body ? body.offsetHeight : 0
    );
    html.style.height = height + 'px';
    if (body) body.style.height = height + 'px';
    return height;
}
"""

SET_FRAME_HEIGHT_JS = """
(el, height) => {
    el.removeAttribute('height');
    el.style.height = height + 'px';
    el.style.maxHeight = 'none';
}
"""


def output_path(output_base: Path, suffix: str) -> Path:
    """Append a suffix to an extension-less output base."""
    return output_base.parent / f"{output_base.name}{suffix}"


def write_atomic(path: Path, data: bytes) -> Path:
    """Write bytes through a temporary sibling so no partial file is left."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f".{path.name}.part"
    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


class CaptureStrategy(ABC):
    """Base class for capture strategies."""

    name = "capture"

    def __init__(self, settings: Optional[CaptureSettings] = None):
        self.settings = settings or CaptureSettings()

    @abstractmethod
    async def capture(self, target: Page, output_base: Path, kind: EvidenceKind) -> EvidenceArtifact:
        """Capture the target into ``<output_base>.png``.

        Args:
            target: Page showing the surface to capture
            output_base: Output path without extension
            kind: Evidence type being captured

        Returns:
            EvidenceArtifact describing the written file
        """

    async def _prepare(self, target: Page) -> None:
        """Let the document finish parsing and paint before a screenshot."""
        try:
            await target.wait_for_load_state(
                "domcontentloaded", timeout=self.settings.navigation_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Document not loaded before capture: {target.url}")
        if self.settings.render_settle_ms:
            await target.wait_for_timeout(self.settings.render_settle_ms)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class FullPageStrategy(CaptureStrategy):
    """Screenshot of the entire scrollable document."""

    name = "full_page"

    def __init__(self, settings: Optional[CaptureSettings] = None, pdf: Optional[bool] = None):
        super().__init__(settings)
        self.pdf = self.settings.pdf if pdf is None else pdf

    async def capture(self, target: Page, output_base: Path, kind: EvidenceKind) -> EvidenceArtifact:
        await self._prepare(target)
        png_path = output_path(output_base, ".png")

        chain: FallbackChain[EvidenceArtifact] = FallbackChain(f"full-page:{kind.value}")
        chain.add("styled", lambda: self._styled_capture(target, output_base, png_path, kind))
        chain.add("plain", lambda: self._plain_capture(target, png_path, kind))

        result = await chain.run()
        if result.value is None:
            raise PlaywrightError(f"Full-page capture failed: {'; '.join(result.errors)}")

        artifact = result.value
        if not result.matched_first():
            artifact = artifact.as_degraded(
                f"page overrides unavailable ({'; '.join(result.errors)})"
            )
        logger.info(f"  captured {png_path.name}")
        return artifact

    async def _styled_capture(
        self,
        target: Page,
        output_base: Path,
        png_path: Path,
        kind: EvidenceKind,
    ) -> EvidenceArtifact:
        async with hidden_side_navigation(target, self.settings.side_nav_selectors):
            async with expanded_scroll_containers(target):
                data = await target.screenshot(full_page=True)
            write_atomic(png_path, data)
            pdf_path = await self._export_pdf(target, output_base) if self.pdf else None

        return EvidenceArtifact(
            kind=kind,
            status=ArtifactStatus.CAPTURED,
            file_path=png_path,
            document_path=pdf_path,
            source_url=target.url,
        )

    async def _plain_capture(self, target: Page, png_path: Path, kind: EvidenceKind) -> EvidenceArtifact:
        data = await target.screenshot(full_page=True)
        write_atomic(png_path, data)
        return EvidenceArtifact(
            kind=kind,
            status=ArtifactStatus.CAPTURED,
            file_path=png_path,
            source_url=target.url,
        )

    async def _export_pdf(self, target: Page, output_base: Path) -> Optional[Path]:
        """Export the current view as PDF; only headless Chromium supports it."""
        pdf_path = output_path(output_base, ".pdf")
        try:
            data = await target.pdf(print_background=True)
        except PlaywrightError as e:
            logger.warning(f"PDF export skipped for {pdf_path.name}: {e}")
            return None
        return write_atomic(pdf_path, data)


class EmbeddedFrameStrategy(CaptureStrategy):
    """Screenshot of the document inside one embedded frame."""

    name = "embedded_frame"

    def __init__(
        self,
        settings: Optional[CaptureSettings] = None,
        frame_pattern: Optional[str] = None,
        fallback: Optional[FullPageStrategy] = None,
    ):
        """Initialize strategy.

        Args:
            settings: Capture settings
            frame_pattern: Substring of the frame address; None means the first iframe
            fallback: Strategy used when the frame cannot be isolated
        """
        super().__init__(settings)
        self.frame_pattern = frame_pattern
        self.fallback = fallback or FullPageStrategy(self.settings, pdf=False)

    @property
    def frame_selector(self) -> str:
        if self.frame_pattern:
            return f'iframe[src*="{self.frame_pattern}"]'
        return 'iframe'

    async def capture(self, target: Page, output_base: Path, kind: EvidenceKind) -> EvidenceArtifact:
        png_path = output_path(output_base, ".png")

        chain: FallbackChain[Frame] = FallbackChain(f"frame:{self.frame_pattern or '*'}")
        chain.add("iframe-src", lambda: self._frame_by_selector(target))
        chain.add("frame-url", lambda: self._frame_by_url(target))
        located = await chain.run()

        if located.value is not None:
            try:
                await self._isolate(located.value, png_path)
                logger.info(f"  captured {png_path.name} (frame only)")
                return EvidenceArtifact(
                    kind=kind,
                    status=ArtifactStatus.CAPTURED,
                    file_path=png_path,
                    source_url=target.url,
                )
            except PlaywrightError as e:
                note = f"frame could not be isolated: {e}"
        else:
            note = f"frame {self.frame_selector} not found"

        logger.warning(f"  {note}; capturing outer page instead")
        artifact = await self.fallback.capture(target, output_base, kind)
        return artifact.as_degraded(note)

    async def _frame_by_selector(self, target: Page) -> Optional[Frame]:
        try:
            handle = await target.wait_for_selector(
                self.frame_selector,
                state="attached",
                timeout=self.settings.frame_timeout_ms,
            )
        except PlaywrightTimeoutError:
            return None
        if handle is None:
            return None
        return await handle.content_frame()

    async def _frame_by_url(self, target: Page) -> Optional[Frame]:
        if not self.frame_pattern:
            return None
        for frame in target.frames:
            if frame is target.main_frame:
                continue
            if self.frame_pattern in (frame.url or ""):
                return frame
        return None

    async def _isolate(self, frame: Frame, png_path: Path) -> Path:
        """Expand the frame to its content height and shoot its root element."""
        try:
            await frame.wait_for_load_state("domcontentloaded", timeout=self.settings.frame_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning(f"Frame document still loading: {frame.url}")

        height = await frame.evaluate(EXPAND_FRAME_DOCUMENT_JS)
        element = await frame.frame_element()
        await element.evaluate(SET_FRAME_HEIGHT_JS, height)

        if self.settings.lazy_image_wait_ms:
            await frame.wait_for_timeout(self.settings.lazy_image_wait_ms)

        data = await frame.locator("html").screenshot(timeout=self.settings.frame_timeout_ms)
        return write_atomic(png_path, data)


class RegionCropStrategy(CaptureStrategy):
    """Screenshot of the most specific email-body-like region."""

    name = "region_crop"

    def __init__(
        self,
        settings: Optional[CaptureSettings] = None,
        frame_strategy: Optional[EmbeddedFrameStrategy] = None,
        fallback: Optional[FullPageStrategy] = None,
    ):
        super().__init__(settings)
        self.fallback = fallback or FullPageStrategy(self.settings, pdf=False)
        self.frame_strategy = frame_strategy or EmbeddedFrameStrategy(
            self.settings, frame_pattern=None, fallback=self.fallback
        )

    async def capture(self, target: Page, output_base: Path, kind: EvidenceKind) -> EvidenceArtifact:
        await self._prepare(target)
        png_path = output_path(output_base, ".png")

        chain: FallbackChain[EvidenceArtifact] = FallbackChain(f"region:{kind.value}")
        chain.add("email-region", lambda: self._crop_region(target, png_path, kind))
        chain.add("embedded-frame", lambda: self._delegate_to_frame(target, output_base, kind))
        chain.add("full-page", lambda: self._full_page(target, output_base, kind))

        result = await chain.run()
        if result.value is None:
            raise PlaywrightError(f"Region capture failed: {'; '.join(result.errors)}")
        return result.value

    async def _crop_region(self, target: Page, png_path: Path, kind: EvidenceKind) -> Optional[EvidenceArtifact]:
        for selector in self.settings.email_region_selectors:
            region = await self._first_visible(target, selector)
            if region is None:
                continue
            data = await region.screenshot(timeout=self.settings.selector_timeout_ms)
            write_atomic(png_path, data)
            logger.info(f"  captured {png_path.name} (region {selector})")
            return EvidenceArtifact(
                kind=kind,
                status=ArtifactStatus.CAPTURED,
                file_path=png_path,
                source_url=target.url,
            )
        return None

    @staticmethod
    async def _first_visible(target: Page, selector: str):
        """First match of ``selector`` in DOM order that is visible, if any."""
        for candidate in await target.locator(selector).all():
            if await candidate.is_visible():
                return candidate
        return None

    async def _delegate_to_frame(self, target: Page, output_base: Path, kind: EvidenceKind) -> Optional[EvidenceArtifact]:
        if await target.locator("iframe").count() == 0:
            return None
        return await self.frame_strategy.capture(target, output_base, kind)

    async def _full_page(self, target: Page, output_base: Path, kind: EvidenceKind) -> EvidenceArtifact:
        logger.warning("  could not isolate email body; saving full page instead")
        artifact = await self.fallback.capture(target, output_base, kind)
        return artifact.as_degraded("email region not found")
