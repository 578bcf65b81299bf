"""Unit tests for capture strategies."""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from evidence_vault.capture.strategies import (
    EmbeddedFrameStrategy,
    FullPageStrategy,
    RegionCropStrategy,
    SET_FRAME_HEIGHT_JS,
    output_path,
    write_atomic,
)
from evidence_vault.models.evidence import ArtifactStatus, EvidenceArtifact, EvidenceKind


@pytest.fixture
def output_base(tmp_path):
    return tmp_path / "1001" / "1001__01_Attendance_Status_Proof"


def make_frame(locator_factory, url="https://www.swoogo.com/frontend/preview/email?id=1", height=2400):
    frame = MagicMock()
    frame.url = url
    frame.wait_for_load_state = AsyncMock()
    frame.wait_for_timeout = AsyncMock()
    frame.evaluate = AsyncMock(return_value=height)
    frame.element = MagicMock()
    frame.element.evaluate = AsyncMock()
    frame.frame_element = AsyncMock(return_value=frame.element)
    frame.locator = MagicMock(return_value=locator_factory(count=1, screenshot=b"frame png"))
    return frame


class TestHelpers:

    def test_output_path(self, tmp_path):
        assert output_path(tmp_path / "1__06_Invoice", ".pdf") == tmp_path / "1__06_Invoice.pdf"

    def test_write_atomic_leaves_no_temp_file(self, tmp_path):
        target = tmp_path / "nested" / "shot.png"

        write_atomic(target, b"data")

        assert target.read_bytes() == b"data"
        assert sorted(p.name for p in target.parent.iterdir()) == ["shot.png"]


class TestFullPageStrategy:
    """Tests for FullPageStrategy."""

    @pytest.mark.asyncio
    async def test_styled_capture(self, fast_settings, mock_page, output_base):
        strategy = FullPageStrategy(fast_settings)

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.ATTENDANCE)

        assert artifact.status == ArtifactStatus.CAPTURED
        assert artifact.file_path == output_base.parent / f"{output_base.name}.png"
        assert artifact.file_path.read_bytes() == b"\x89PNG page"
        assert artifact.document_path is None
        assert artifact.source_url == mock_page.url
        mock_page.screenshot.assert_awaited_once_with(full_page=True)
        # Side navigation inject/remove plus scroll expand/restore
        assert mock_page.evaluate.await_count == 4
        mock_page.pdf.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pdf_export(self, fast_settings, mock_page, output_base):
        strategy = FullPageStrategy(fast_settings, pdf=True)

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.INVOICE)

        assert artifact.document_path == output_base.parent / f"{output_base.name}.pdf"
        assert artifact.document_path.read_bytes() == b"%PDF-1.4"
        mock_page.pdf.assert_awaited_once_with(print_background=True)

    @pytest.mark.asyncio
    async def test_pdf_failure_keeps_screenshot(self, fast_settings, mock_page, output_base):
        mock_page.pdf = AsyncMock(side_effect=PlaywrightError("PDF generation is only supported for headless chromium"))
        strategy = FullPageStrategy(fast_settings, pdf=True)

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.INVOICE)

        assert artifact.status == ArtifactStatus.CAPTURED
        assert artifact.document_path is None
        assert artifact.file_path.exists()

    @pytest.mark.asyncio
    async def test_plain_fallback_is_degraded(self, fast_settings, mock_page, output_base):
        mock_page.evaluate = AsyncMock(side_effect=PlaywrightError("execution context destroyed"))
        strategy = FullPageStrategy(fast_settings)

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.CONTACT)

        assert artifact.status == ArtifactStatus.DEGRADED
        assert "execution context destroyed" in artifact.note
        assert artifact.file_path.exists()

    @pytest.mark.asyncio
    async def test_all_steps_fail(self, fast_settings, mock_page, output_base):
        mock_page.screenshot = AsyncMock(side_effect=PlaywrightError("target closed"))
        strategy = FullPageStrategy(fast_settings)

        with pytest.raises(PlaywrightError):
            await strategy.capture(mock_page, output_base, EvidenceKind.CONTACT)

        assert not output_base.parent.exists() or not any(output_base.parent.iterdir())

    @pytest.mark.asyncio
    async def test_render_settle_wait(self, fast_settings, mock_page, output_base):
        settings = fast_settings.model_copy(update={'render_settle_ms': 250})

        await FullPageStrategy(settings).capture(mock_page, output_base, EvidenceKind.ATTENDANCE)

        mock_page.wait_for_timeout.assert_awaited_with(250)


class TestEmbeddedFrameStrategy:
    """Tests for EmbeddedFrameStrategy."""

    @pytest.mark.asyncio
    async def test_frame_isolated(self, fast_settings, mock_page, locator_factory, output_base):
        frame = make_frame(locator_factory)
        handle = MagicMock()
        handle.content_frame = AsyncMock(return_value=frame)
        mock_page.wait_for_selector = AsyncMock(return_value=handle)
        strategy = EmbeddedFrameStrategy(fast_settings, frame_pattern="/frontend/preview/email")

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.TICKET_EMAIL)

        assert artifact.status == ArtifactStatus.CAPTURED
        assert artifact.file_path.read_bytes() == b"frame png"
        assert mock_page.wait_for_selector.call_args.args[0] == 'iframe[src*="/frontend/preview/email"]'
        frame.element.evaluate.assert_awaited_once_with(SET_FRAME_HEIGHT_JS, 2400)
        frame.locator.assert_called_with("html")
        mock_page.screenshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_frame_found_by_url(self, fast_settings, mock_page, locator_factory, output_base):
        frame = make_frame(locator_factory)
        mock_page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeoutError("no iframe"))
        mock_page.main_frame = MagicMock(url=mock_page.url)
        mock_page.frames = [mock_page.main_frame, frame]
        strategy = EmbeddedFrameStrategy(fast_settings, frame_pattern="/frontend/preview/email")

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.TICKET_EMAIL)

        assert artifact.status == ArtifactStatus.CAPTURED
        assert artifact.file_path.read_bytes() == b"frame png"

    @pytest.mark.asyncio
    async def test_missing_frame_falls_back_to_full_page(self, fast_settings, mock_page, output_base):
        mock_page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeoutError("no iframe"))
        mock_page.main_frame = MagicMock()
        mock_page.frames = [mock_page.main_frame]
        strategy = EmbeddedFrameStrategy(fast_settings, frame_pattern="/frontend/preview/email")

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.TICKET_EMAIL)

        assert artifact.status == ArtifactStatus.DEGRADED
        assert "not found" in artifact.note
        assert artifact.file_path.read_bytes() == b"\x89PNG page"

    @pytest.mark.asyncio
    async def test_isolation_failure_falls_back(self, fast_settings, mock_page, locator_factory, output_base):
        frame = make_frame(locator_factory)
        frame.evaluate = AsyncMock(side_effect=PlaywrightError("frame detached"))
        handle = MagicMock()
        handle.content_frame = AsyncMock(return_value=frame)
        mock_page.wait_for_selector = AsyncMock(return_value=handle)
        strategy = EmbeddedFrameStrategy(fast_settings, frame_pattern="/frontend/preview/email")

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.TICKET_EMAIL)

        assert artifact.status == ArtifactStatus.DEGRADED
        assert "frame detached" in artifact.note

    def test_any_iframe_selector(self, fast_settings):
        assert EmbeddedFrameStrategy(fast_settings).frame_selector == "iframe"


class TestRegionCropStrategy:
    """Tests for RegionCropStrategy."""

    def _locators(self, page, locator_factory, region=None, iframes=0):
        empty = locator_factory(count=0)
        iframe = locator_factory(count=iframes)

        def locate(selector):
            if selector == "iframe":
                return iframe
            if region is not None and selector == region[0]:
                return region[1]
            return empty

        page.locator = MagicMock(side_effect=locate)

    @pytest.mark.asyncio
    async def test_region_captured(self, fast_settings, mock_page, locator_factory, output_base):
        region = locator_factory(count=1, visible=True, screenshot=b"region png")
        self._locators(mock_page, locator_factory, region=(".email-body", region))

        artifact = await RegionCropStrategy(fast_settings).capture(
            mock_page, output_base, EvidenceKind.CONFIRMATION
        )

        assert artifact.status == ArtifactStatus.CAPTURED
        assert artifact.file_path.read_bytes() == b"region png"

    @pytest.mark.asyncio
    async def test_hidden_region_skipped(self, fast_settings, mock_page, locator_factory, output_base):
        hidden = locator_factory(count=1, visible=False)
        self._locators(mock_page, locator_factory, region=(".email-body", hidden))

        artifact = await RegionCropStrategy(fast_settings).capture(
            mock_page, output_base, EvidenceKind.CONFIRMATION
        )

        hidden.screenshot.assert_not_awaited()
        assert artifact.status == ArtifactStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_first_visible_match_captured(self, fast_settings, mock_page, locator_factory, output_base):
        hidden = locator_factory(count=1, visible=False)
        visible = locator_factory(count=1, visible=True, screenshot=b"second region")
        matches = locator_factory(count=2)
        matches.all = AsyncMock(return_value=[hidden, visible])
        self._locators(mock_page, locator_factory, region=(".email-body", matches))

        artifact = await RegionCropStrategy(fast_settings).capture(
            mock_page, output_base, EvidenceKind.CONFIRMATION
        )

        assert artifact.status == ArtifactStatus.CAPTURED
        hidden.screenshot.assert_not_awaited()
        visible.screenshot.assert_awaited_once()
        assert artifact.file_path.read_bytes() == b"second region"

    @pytest.mark.asyncio
    async def test_delegates_to_frame(self, fast_settings, mock_page, locator_factory, output_base):
        self._locators(mock_page, locator_factory, iframes=1)
        frame_strategy = MagicMock()
        frame_strategy.capture = AsyncMock(return_value=EvidenceArtifact(
            kind=EvidenceKind.CONFIRMATION,
            status=ArtifactStatus.CAPTURED,
            file_path=Path("frame.png"),
        ))
        strategy = RegionCropStrategy(fast_settings, frame_strategy=frame_strategy)

        artifact = await strategy.capture(mock_page, output_base, EvidenceKind.CONFIRMATION)

        assert artifact.file_path == Path("frame.png")
        frame_strategy.capture.assert_awaited_once_with(mock_page, output_base, EvidenceKind.CONFIRMATION)

    @pytest.mark.asyncio
    async def test_full_page_last_resort(self, fast_settings, mock_page, locator_factory, output_base):
        self._locators(mock_page, locator_factory)

        artifact = await RegionCropStrategy(fast_settings).capture(
            mock_page, output_base, EvidenceKind.CONFIRMATION
        )

        assert artifact.status == ArtifactStatus.DEGRADED
        assert artifact.note == "email region not found"
        assert artifact.file_path.read_bytes() == b"\x89PNG page"
