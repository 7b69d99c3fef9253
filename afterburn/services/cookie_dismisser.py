"""Detection and dismissal of cookie consent banners."""

import logging
from typing import List, Optional, Tuple

from playwright.async_api import Page

logger = logging.getLogger(__name__)


class CookieBannerSelector:
    """Accept button (and optional modal) of one consent platform."""

    def __init__(self, name: str, accept_button: str, modal: Optional[str] = None):
        self.name = name
        self.accept_button = accept_button
        self.modal = modal


# Ordered by prevalence
COOKIE_SELECTORS: List[CookieBannerSelector] = [
    CookieBannerSelector(
        "OneTrust",
        "#onetrust-accept-btn-handler",
        modal="#onetrust-banner-sdk",
    ),
    CookieBannerSelector(
        "Cookiebot",
        "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
        modal="#CybotCookiebotDialog",
    ),
    CookieBannerSelector(
        "CookieYes",
        ".cky-btn-accept",
        modal=".cky-consent-container",
    ),
    CookieBannerSelector(
        "Generic",
        ", ".join([
            'button:has-text("Accept all")',
            'button:has-text("Accept cookies")',
            'button:has-text("Allow all")',
            'button:has-text("I agree")',
            '[id*="accept"]',
            '[class*="accept"]',
        ]),
    ),
]


async def dismiss_cookie_banner(page: Page) -> Tuple[bool, Optional[str]]:
    """
    Click the first visible accept button of a known consent platform.

    Returns:
        (dismissed, platform name or None)
    """
    for selector in COOKIE_SELECTORS:
        try:
            button = page.locator(selector.accept_button).first
            if not await button.is_visible(timeout=2000):
                continue

            await button.click(timeout=2000)

            if selector.modal:
                try:
                    await page.locator(selector.modal).wait_for(state="hidden", timeout=5000)
                except Exception as e:
                    logger.debug(f"{selector.name} banner still visible after accept: {e}")

            # Animations
            await page.wait_for_timeout(500)

            logger.info(f"Dismissed {selector.name} cookie banner on {page.url}")
            return True, selector.name
        except Exception as e:
            logger.debug(f"Cookie selector {selector.name} did not apply: {e}")
            continue

    return False, None
