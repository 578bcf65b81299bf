"""Stable render state gate.

Waits for the application's loading overlay to clear and for network
activity to settle. This is a best-effort readiness signal: a timeout is
logged and reported to the caller, never raised, so capture can proceed on a
page that is still rendering.
"""

import logging
import time
from typing import Optional

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

logger = logging.getLogger(__name__)


LOADING_INDICATOR_CLEARED_JS = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return true;
    const style = window.getComputedStyle(el);
    return style.display === 'none' || style.visibility === 'hidden';
}
"""


class StableStateGate:
    """Blocks until a page reaches a stable render state or times out."""

    def __init__(
        self,
        loading_indicator_selector: str = "#spinner-overlay",
        timeout_ms: int = 30000,
        settle_ms: int = 300,
    ):
        """Initialize the gate.

        Args:
            loading_indicator_selector: Element whose absence or hidden state
                marks the end of application-level loading
            timeout_ms: Default overall timeout for one wait
            settle_ms: Quiet window to wait after the network goes idle
        """
        self.loading_indicator_selector = loading_indicator_selector
        self.timeout_ms = timeout_ms
        self.settle_ms = settle_ms

    async def wait_until_stable(self, page: Page, timeout_ms: Optional[int] = None) -> bool:
        """Wait for the loading indicator to clear and the network to settle.

        Args:
            page: Page to wait on
            timeout_ms: Overrides the default timeout for this wait

        Returns:
            True if the page reached a stable state, False on timeout
        """
        budget_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + budget_ms / 1000.0
        stable = True

        if budget_ms <= 0:
            return False

        try:
            await page.wait_for_function(
                LOADING_INDICATOR_CLEARED_JS,
                arg=self.loading_indicator_selector,
                timeout=budget_ms,
            )
        except PlaywrightTimeoutError:
            logger.warning(
                f"Loading indicator {self.loading_indicator_selector} still visible "
                f"after {budget_ms}ms on {page.url}"
            )
            stable = False
        except PlaywrightError as e:
            logger.warning(f"Loading indicator check failed on {page.url}: {e}")
            stable = False

        remaining_ms = self._remaining_ms(deadline)
        if remaining_ms > 0:
            try:
                await page.wait_for_load_state("networkidle", timeout=remaining_ms)
            except PlaywrightTimeoutError:
                logger.warning(f"Network did not settle within {budget_ms}ms on {page.url}")
                stable = False
            except PlaywrightError as e:
                logger.warning(f"Network idle wait failed on {page.url}: {e}")
                stable = False
        else:
            stable = False

        if self.settle_ms:
            try:
                await page.wait_for_timeout(self.settle_ms)
            except PlaywrightError as e:
                logger.warning(f"Settle wait failed on {page.url}: {e}")
                stable = False

        if stable:
            logger.debug(f"Stable render state reached: {page.url}")
        return stable

    @staticmethod
    def _remaining_ms(deadline: float) -> int:
        return max(0, int((deadline - time.monotonic()) * 1000))
