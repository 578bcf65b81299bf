"""Shared test fixtures and configuration for Evidence Vault tests."""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from evidence_vault.capture.config import CaptureSettings
from evidence_vault.models.evidence import Entity


REGISTRANT_URL = "https://www.swoogo.com/loggedin/registrant/view?eventId=255274&id={id}"


def make_locator(count=0, visible=False, attribute=None, text=None, screenshot=b"png"):
    """Locator double: sync navigation methods, async queries."""
    locator = MagicMock()
    locator.first = locator
    locator.count = AsyncMock(return_value=count)
    locator.all = AsyncMock(return_value=[locator] * count)
    locator.is_visible = AsyncMock(return_value=visible)
    locator.get_attribute = AsyncMock(return_value=attribute)
    locator.text_content = AsyncMock(return_value=text)
    locator.screenshot = AsyncMock(return_value=screenshot)
    locator.click = AsyncMock()
    return locator


def make_page(url="https://www.swoogo.com/loggedin/registrant/view?eventId=255274&id=1001"):
    """Page double with the async Playwright methods the pipeline uses."""
    page = MagicMock()
    page.url = url
    page.goto = AsyncMock(return_value=MagicMock(status=200))
    page.evaluate = AsyncMock(return_value=0)
    page.screenshot = AsyncMock(return_value=b"\x89PNG page")
    page.pdf = AsyncMock(return_value=b"%PDF-1.4")
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.wait_for_selector = AsyncMock(return_value=None)
    page.wait_for_event = AsyncMock()
    page.close = AsyncMock()
    page.frames = []
    page.locator = MagicMock(return_value=make_locator())
    page.get_by_role = MagicMock(return_value=make_locator())
    return page


@pytest.fixture
def sample_entity():
    """Sample registrant for testing."""
    return Entity(
        id="1001",
        source_url=REGISTRANT_URL.format(id="1001"),
        collection_id="255274",
        display_name="Ada Lovelace",
    )


@pytest.fixture
def sample_entities():
    """List of sample registrants for testing."""
    return [
        Entity(id=str(1000 + i), source_url=REGISTRANT_URL.format(id=1000 + i), collection_id="255274")
        for i in range(5)
    ]


@pytest.fixture
def fast_settings():
    """Capture settings without waits."""
    return CaptureSettings(
        delay_ms=0,
        settle_ms=0,
        render_settle_ms=0,
        lazy_image_wait_ms=0,
        menu_open_wait_ms=0,
    )


@pytest.fixture
def mock_page():
    """Mock Playwright page."""
    return make_page()


@pytest.fixture
def page_factory():
    return make_page


@pytest.fixture
def locator_factory():
    return make_locator


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
