"""Scoped DOM overrides applied around full-page screenshots.

Each override is an async context manager: the page is modified on entry
and restored on every exit path, including errors. Restoration restores the
exact inline styles that were present before, not browser defaults.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List

from playwright.async_api import Error as PlaywrightError, Page

logger = logging.getLogger(__name__)


SIDE_NAV_STYLE_ID = "__evidence_hide_side_nav__"
EXPAND_MARKER_ATTR = "data-evidence-pre-expand"

INJECT_STYLE_JS = """
({id, css}) => {
    let el = document.getElementById(id);
    if (!el) {
        el = document.createElement('style');
        el.id = id;
        (document.head || document.documentElement).appendChild(el);
    }
    el.textContent = css;
}
"""

REMOVE_STYLE_JS = """
(id) => {
    const el = document.getElementById(id);
    if (el) el.remove();
}
"""

EXPAND_SCROLLABLE_JS = """
(attr) => {
    const save = (el) => {
        if (el.hasAttribute(attr)) return;
        el.setAttribute(attr, JSON.stringify({
            h: el.style.height, mh: el.style.maxHeight,
            o: el.style.overflow, oy: el.style.overflowY
        }));
    };
    const isScrollable = (el) => {
        const s = getComputedStyle(el);
        return (s.overflowY === 'auto' || s.overflowY === 'scroll') && el.scrollHeight > el.clientHeight;
    };
    const html = document.documentElement;
    const body = document.body;
    const targets = Array.from(document.querySelectorAll('*')).filter(isScrollable);
    save(html);
    html.style.overflow = 'visible';
    if (body) {
        save(body);
        body.style.overflow = 'visible';
    }
    for (const el of targets) {
        save(el);
        el.style.height = el.scrollHeight + 'px';
        el.style.maxHeight = 'none';
        el.style.overflow = 'visible';
        el.style.overflowY = 'visible';
    }
    return targets.length;
}
"""

RESTORE_SCROLLABLE_JS = """
(attr) => {
    const els = document.querySelectorAll('[' + attr + ']');
    for (const el of els) {
        const prev = JSON.parse(el.getAttribute(attr) || '{}');
        el.style.height = prev.h || '';
        el.style.maxHeight = prev.mh || '';
        el.style.overflow = prev.o || '';
        el.style.overflowY = prev.oy || '';
        el.removeAttribute(attr);
    }
    return els.length;
}
"""


def build_side_nav_css(selectors: List[str]) -> str:
    """Build the stylesheet that hides side navigation regions."""
    hidden = ",\n".join(selectors)
    return (
        f"{hidden} {{\n"
        "  display: none !important;\n"
        "  visibility: hidden !important;\n"
        "  width: 0 !important;\n"
        "  min-width: 0 !important;\n"
        "}\n"
        ".main, [role=\"main\"], [data-testid*=\"content\" i] { margin-left: 0 !important; }\n"
    )


@asynccontextmanager
async def hidden_side_navigation(page: Page, selectors: List[str]) -> AsyncGenerator[None, None]:
    """Hide side navigation regions for the duration of the block."""
    if not selectors:
        yield
        return

    await page.evaluate(INJECT_STYLE_JS, {'id': SIDE_NAV_STYLE_ID, 'css': build_side_nav_css(selectors)})
    try:
        yield
    finally:
        try:
            await page.evaluate(REMOVE_STYLE_JS, SIDE_NAV_STYLE_ID)
        except PlaywrightError as e:
            # Page navigated or closed; nothing left to restore
            logger.debug(f"Side navigation style not removed: {e}")


@asynccontextmanager
async def expanded_scroll_containers(page: Page) -> AsyncGenerator[int, None]:
    """Expand internally scrollable containers to their full content height.

    Yields:
        Number of containers that were expanded
    """
    expanded = await page.evaluate(EXPAND_SCROLLABLE_JS, EXPAND_MARKER_ATTR)
    logger.debug(f"Expanded {expanded} scrollable containers")
    try:
        yield expanded
    finally:
        try:
            await page.evaluate(RESTORE_SCROLLABLE_JS, EXPAND_MARKER_ATTR)
        except PlaywrightError as e:
            logger.debug(f"Scrollable containers not restored: {e}")
