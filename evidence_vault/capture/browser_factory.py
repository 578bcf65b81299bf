"""Browser factory for the authenticated capture session.

This module provides the BrowserFactory class that launches the browser,
creates contexts carrying the saved login state, and cleans everything up.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

logger = logging.getLogger(__name__)


DEFAULT_VIEWPORT = {'width': 1600, 'height': 1200}


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


def parse_viewport(value: str) -> Dict[str, int]:
    """Parse a ``WIDTHxHEIGHT`` string into a viewport dict.

    Raises:
        ValueError: If the value is not two positive integers
    """
    parts = value.lower().replace(" ", "").split("x")
    if len(parts) != 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
        raise ValueError(f"Viewport must look like 1600x1200, got {value!r}")
    return {'width': int(parts[0]), 'height': int(parts[1])}


class BrowserConfig:
    """Configuration for browser launch and context setup."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        slow_mo: int = 0,
        viewport: Optional[Dict[str, int]] = None,
        storage_state: Optional[Path] = None,
        user_agent: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        ignore_https_errors: bool = False,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
        device_scale_factor: Optional[float] = None,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            slow_mo: Slow down operations by specified milliseconds
            viewport: Viewport size dict with 'width' and 'height'
            storage_state: Saved login state (cookies and local storage) JSON file
            user_agent: Custom User-Agent string
            extra_headers: Additional HTTP headers for all requests
            ignore_https_errors: Ignore SSL/TLS certificate errors
            locale: Locale for the browser context
            timezone: Timezone ID (e.g., 'America/New_York')
            device_scale_factor: Pixel density of screenshots
        """
        self.engine = engine
        self.headless = headless
        self.slow_mo = slow_mo
        self.viewport = viewport or dict(DEFAULT_VIEWPORT)
        self.storage_state = Path(storage_state) if storage_state else None
        self.user_agent = user_agent
        self.extra_headers = extra_headers or {}
        self.ignore_https_errors = ignore_https_errors
        self.locale = locale
        self.timezone = timezone
        self.device_scale_factor = device_scale_factor
        self.extra_options = kwargs

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
        }
        options.update(self.extra_options)
        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options: Dict[str, Any] = {'viewport': self.viewport}

        if self.storage_state:
            options['storage_state'] = str(self.storage_state)

        if self.user_agent:
            options['user_agent'] = self.user_agent

        if self.extra_headers:
            options['extra_http_headers'] = self.extra_headers

        if self.ignore_https_errors:
            options['ignore_https_errors'] = True

        if self.locale:
            options['locale'] = self.locale

        if self.timezone:
            options['timezone_id'] = self.timezone

        if self.device_scale_factor:
            options['device_scale_factor'] = self.device_scale_factor

        return options


class BrowserFactory:
    """Owns the Playwright driver and browser shared by all capture sessions."""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._context_count = 0

    async def start(self) -> None:
        """Start Playwright and launch the browser."""
        if self.playwright is not None:
            logger.warning("Browser factory already started")
            return

        if self.config.storage_state and not self.config.storage_state.exists():
            raise FileNotFoundError(
                f"Login state not found: {self.config.storage_state}. "
                "Run 'evidence-vault save-session' first."
            )

        logger.info(f"Starting browser factory with engine: {self.config.engine}")

        try:
            self.playwright = await async_playwright().start()

            if self.config.engine == BrowserEngineType.FIREFOX:
                browser_type = self.playwright.firefox
            elif self.config.engine == BrowserEngineType.WEBKIT:
                browser_type = self.playwright.webkit
            else:
                browser_type = self.playwright.chromium

            self.browser = await browser_type.launch(**self.config.to_browser_options())
            logger.info(f"Browser launched (headless={self.config.headless})")

        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop browser and cleanup resources."""
        logger.info("Stopping browser factory")

        try:
            if self.browser:
                await self.browser.close()
                self.browser = None

            if self.playwright:
                await self.playwright.stop()
                self.playwright = None

            self._context_count = 0

        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")

    async def create_context(self, **context_overrides) -> BrowserContext:
        """Create a new browser context with the saved login state.

        Raises:
            RuntimeError: If browser factory not started
        """
        if not self.browser:
            raise RuntimeError("Browser factory not started. Call start() first.")

        context_options = self.config.to_context_options()
        context_options.update(context_overrides)

        context = await self.browser.new_context(**context_options)
        self._context_count += 1
        logger.debug(f"Created browser context #{self._context_count}")
        return context

    @asynccontextmanager
    async def context(self, **context_overrides) -> AsyncGenerator[BrowserContext, None]:
        """Context manager for browser context lifecycle."""
        context = await self.create_context(**context_overrides)
        try:
            yield context
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.warning(f"Error closing browser context: {e}")
            self._context_count -= 1

    @asynccontextmanager
    async def page(self, **context_overrides) -> AsyncGenerator[Page, None]:
        """Context manager for one page in its own context."""
        async with self.context(**context_overrides) as context:
            page = await context.new_page()
            try:
                yield page
            finally:
                await page.close()

    async def __aenter__(self) -> "BrowserFactory":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self.browser is not None

    @property
    def context_count(self) -> int:
        """Get current number of active contexts."""
        return self._context_count

    def __repr__(self) -> str:
        return (
            f"BrowserFactory(engine={self.config.engine}, "
            f"headless={self.config.headless}, "
            f"running={self.is_running}, "
            f"contexts={self.context_count})"
        )


async def save_login_state(
    login_url: str,
    output_path: Path,
    config: Optional[BrowserConfig] = None,
) -> Path:
    """Open a headed browser for a manual login and save the session state.

    The state is written when the user closes the page.

    Args:
        login_url: Page to open for logging in
        output_path: Where to write the storage state JSON
        config: Browser configuration; storage_state and headless are ignored

    Returns:
        Path of the written state file
    """
    base = config or BrowserConfig()
    session_config = BrowserConfig(
        engine=base.engine,
        headless=False,
        slow_mo=base.slow_mo,
        viewport=base.viewport,
        locale=base.locale,
        timezone=base.timezone,
    )

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    async with BrowserFactory(session_config) as factory:
        async with factory.context() as context:
            page = await context.new_page()
            await page.goto(login_url)
            logger.info("Log in, then close the browser window to save the session")
            await page.wait_for_event("close", timeout=0)
            await context.storage_state(path=str(output_path))

    logger.info(f"Saved login state to {output_path}")
    return output_path
