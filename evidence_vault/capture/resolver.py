"""Resolution of secondary evidence surfaces.

The registrant page exposes its confirmation and invoice documents only
through an "Actions" dropdown. The resolver opens that dropdown, looks for
a rendered link whose address contains one of the requested keywords and,
when no link is rendered, clicks the matching menu item and hands back the
surface that opened (a popup or the same page after navigation).
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
from urllib.parse import quote, urljoin

from playwright.async_api import (
    Error as PlaywrightError,
    Locator,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .fallback import FallbackChain, StepAttempt
from ..models.evidence import Entity

logger = logging.getLogger(__name__)


FIND_ANCHOR_JS = """
(needles) => {
    for (const a of document.querySelectorAll('a[href]')) {
        const href = (a.getAttribute('href') || '').toLowerCase();
        if (needles.some((n) => href.includes(n))) {
            return a.href;
        }
    }
    return null;
}
"""


def keyword_pattern(keywords: Sequence[str]) -> "re.Pattern[str]":
    """Case-insensitive regex matching any of the keywords."""
    return re.compile("|".join(re.escape(k) for k in keywords), re.IGNORECASE)


class ResolutionPath(str, Enum):
    """How a secondary surface was reached."""
    HREF = "href"
    MENU = "menu"
    NONE = "none"


@dataclass
class MenuSurface:
    """Surface opened by clicking a menu item."""
    page: Page
    is_popup: bool

    async def close(self) -> None:
        """Close the surface if it is a popup; same-page surfaces stay open."""
        if not self.is_popup:
            return
        try:
            await self.page.close()
        except PlaywrightError as e:
            logger.debug(f"Popup already closed: {e}")


@dataclass
class Resolution:
    """Outcome of resolving a secondary surface."""
    path: ResolutionPath = ResolutionPath.NONE
    href: Optional[str] = None
    surface: Optional[MenuSurface] = None
    attempts: List[StepAttempt] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.path != ResolutionPath.NONE


class EmailAddressSource(str, Enum):
    """Where the email preview address came from."""
    LINK = "link"
    FORM = "form"
    CONSTRUCTED = "constructed"


@dataclass
class EmailPreviewAddress:
    url: str
    source: EmailAddressSource

    @property
    def from_page(self) -> bool:
        """True when the address was discovered on the page rather than built."""
        return self.source != EmailAddressSource.CONSTRUCTED


class ResourceResolver:
    """Resolves navigation targets for secondary evidence surfaces."""

    def __init__(
        self,
        actions_button_pattern: str = "actions",
        selector_timeout_ms: int = 5000,
        navigation_timeout_ms: int = 30000,
        menu_open_wait_ms: int = 150,
    ):
        """Initialize resolver.

        Args:
            actions_button_pattern: Accessible name of the action-disclosure button
            selector_timeout_ms: How long to wait for a popup after a menu click
            navigation_timeout_ms: Load wait for surfaces opened from the menu
            menu_open_wait_ms: Pause after opening the menu so links render
        """
        self.actions_button_pattern = re.compile(actions_button_pattern, re.IGNORECASE)
        self.selector_timeout_ms = selector_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.menu_open_wait_ms = menu_open_wait_ms

    def _actions_button(self, page: Page) -> Locator:
        return page.get_by_role("button", name=self.actions_button_pattern).first

    async def open_actions_menu(self, page: Page) -> bool:
        """Open the action-disclosure control if it is present.

        Idempotent: an already expanded menu is left as is.

        Returns:
            True if the control exists and the menu is open
        """
        button = self._actions_button(page)
        try:
            if not await button.is_visible():
                return False
            if await button.get_attribute("aria-expanded") == "true":
                return True
            # Toggles without aria-expanded: rendered items mean it is open
            if await page.get_by_role("menuitem").first.is_visible():
                return True
            await button.click(delay=20)
        except PlaywrightError as e:
            logger.debug(f"Actions menu could not be opened: {e}")
            return False

        if self.menu_open_wait_ms:
            await page.wait_for_timeout(self.menu_open_wait_ms)
        return True

    async def resolve_href(self, page: Page, keywords: Sequence[str]) -> Optional[str]:
        """Find the first rendered link whose address contains any keyword.

        Args:
            page: Page showing the registrant
            keywords: Substrings to look for (case-insensitive)

        Returns:
            Absolute URL of the first matching anchor in DOM order, or None
        """
        needles = [k.lower() for k in keywords if k]
        if not needles:
            return None

        await self.open_actions_menu(page)

        href = await page.evaluate(FIND_ANCHOR_JS, needles)
        if not href:
            logger.debug(f"No link matching {needles} on {page.url}")
            return None

        absolute = urljoin(page.url, href)
        logger.debug(f"Resolved {needles} -> {absolute}")
        return absolute

    async def open_via_menu(self, page: Page, keywords: Sequence[str]) -> Optional[MenuSurface]:
        """Click the menu item labelled with one of the keywords.

        Returns:
            The popup or same-page surface that resulted, or None when the
            menu or a matching item does not exist
        """
        if not keywords or not await self.open_actions_menu(page):
            return None

        item = page.get_by_role("menuitem", name=keyword_pattern(keywords)).first
        if await item.count() == 0:
            logger.debug(f"No menu item matching {list(keywords)} on {page.url}")
            return None

        return await self._click_and_follow(page, item)

    async def _click_and_follow(self, page: Page, item: Locator) -> MenuSurface:
        """Click a menu item and return the popup it opens, or the same page."""
        popup_waiter = asyncio.ensure_future(
            page.wait_for_event("popup", timeout=self.selector_timeout_ms)
        )
        try:
            await item.click(delay=30, timeout=self.selector_timeout_ms)
        except BaseException:
            popup_waiter.cancel()
            raise

        try:
            popup = await popup_waiter
        except PlaywrightTimeoutError:
            popup = None

        target = popup or page
        try:
            await target.wait_for_load_state("domcontentloaded", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning(f"Menu target did not finish loading: {target.url}")

        logger.info(f"Opened menu surface ({'popup' if popup else 'same page'}): {target.url}")
        return MenuSurface(page=target, is_popup=popup is not None)

    async def resolve(self, page: Page, keywords: Sequence[str]) -> Resolution:
        """Resolve a surface by link first, then by menu click.

        Returns:
            Resolution describing the path that matched, if any
        """
        async def by_href() -> Optional[Resolution]:
            href = await self.resolve_href(page, keywords)
            return Resolution(path=ResolutionPath.HREF, href=href) if href else None

        async def by_menu() -> Optional[Resolution]:
            surface = await self.open_via_menu(page, keywords)
            return Resolution(path=ResolutionPath.MENU, surface=surface) if surface else None

        chain: FallbackChain[Resolution] = FallbackChain(f"resolve:{'|'.join(keywords)}")
        chain.add("anchor-href", by_href).add("menu-item", by_menu)

        result = await chain.run()
        resolution = result.value or Resolution()
        resolution.attempts = result.attempts
        return resolution

    async def resolve_email_preview(
        self,
        page: Page,
        entity: Entity,
        send_email_path: str,
        send_email_base_url: str,
        email_category: Optional[str],
        collection_param: str = "eventId",
    ) -> Optional[EmailPreviewAddress]:
        """Find the "send email" preview address for a registrant.

        Tries a rendered link, then a form action, then builds the address
        from the registrant and collection ids.
        """
        async def from_link() -> Optional[EmailPreviewAddress]:
            link = page.locator(f'a[href*="{send_email_path}"]').first
            if await link.count() == 0:
                return None
            href = await link.get_attribute("href")
            return EmailPreviewAddress(urljoin(page.url, href), EmailAddressSource.LINK) if href else None

        async def from_form() -> Optional[EmailPreviewAddress]:
            form = page.locator(f'form[action*="{send_email_path}"]').first
            if await form.count() == 0:
                return None
            action = await form.get_attribute("action")
            return EmailPreviewAddress(urljoin(page.url, action), EmailAddressSource.FORM) if action else None

        async def constructed() -> Optional[EmailPreviewAddress]:
            url = build_email_preview_url(
                send_email_base_url, entity, email_category, collection_param
            )
            return EmailPreviewAddress(url, EmailAddressSource.CONSTRUCTED) if url else None

        chain: FallbackChain[EmailPreviewAddress] = FallbackChain("email-preview")
        chain.add("link", from_link)
        chain.add("form-action", from_form)
        chain.add("constructed", constructed)

        result = await chain.run()
        if result.value is None:
            logger.warning(f"No email preview address for registrant {entity.id}")
        return result.value


def build_email_preview_url(
    base_url: str,
    entity: Entity,
    email_category: Optional[str],
    collection_param: str = "eventId",
) -> Optional[str]:
    """Build the preview address from ids; None when an id is unknown."""
    if not entity.collection_id or not email_category:
        return None
    return (
        f"{base_url}?{collection_param}={quote(entity.collection_id)}"
        f"&id={quote(entity.id)}"
        f"&{quote('RegistrantEmailForm[type]')}={quote(email_category)}"
    )
