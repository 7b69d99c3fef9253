"""Browser manager for the single Chromium instance a stage owns."""

import asyncio
import logging
import platform
import subprocess
import sys
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from afterburn.services.cookie_dismisser import dismiss_cookie_banner
from afterburn.utils.config import Settings, settings as default_settings
from afterburn.utils.guards import AfterburnError

logger = logging.getLogger(__name__)

HEAVY_RESOURCE_PATTERNS = [
    "**/*.{png,jpg,jpeg,gif,webp,woff,woff2,ttf,mp4,mp3}",
    "**/analytics**",
    "**/gtag**",
]

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-site-isolation-trials",
]


class BrowserLaunchError(AfterburnError):
    """Chromium could not be started."""
    pass


class BrowserManager:
    """
    Owns one Playwright browser and context.

    Discovery and execution each create their own manager; the engine makes
    sure only one of them is launched at a time.
    """

    def __init__(self, config: Optional[Settings] = None, headless: Optional[bool] = None):
        self.config = config or default_settings
        self.headless = self.config.HEADLESS if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def is_launched(self) -> bool:
        return self._browser is not None and self._context is not None

    async def launch(self) -> None:
        """Start Playwright, launch Chromium and create the context."""
        if self.is_launched:
            return

        if self._playwright is None:
            self._playwright = await async_playwright().start()
            logger.info("Playwright initialized")

        try:
            self._browser = await self._launch_chromium()
        except BrowserLaunchError:
            await self._stop_playwright()
            raise

        self._context = await self._browser.new_context(
            user_agent=self.config.USER_AGENT,
            viewport={
                "width": self.config.VIEWPORT_WIDTH,
                "height": self.config.VIEWPORT_HEIGHT,
            },
            locale=self.config.LOCALE,
            timezone_id=self.config.TIMEZONE_ID,
            ignore_https_errors=True,
        )
        logger.info(f"Launched browser (headless={self.headless})")

    async def _launch_chromium(self) -> Browser:
        try:
            return await self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
            )
        except Exception as e:
            error_msg = str(e)
            if "Executable doesn't exist" not in error_msg:
                raise BrowserLaunchError(f"Failed to launch Chromium: {error_msg[:500]}") from e

            if not self.config.AUTO_INSTALL_BROWSERS or not self._install_browsers():
                raise BrowserLaunchError(
                    "Chromium is not installed. "
                    "Run: python -m playwright install --with-deps chromium"
                ) from e

        try:
            return await self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
            )
        except Exception as e:
            raise BrowserLaunchError(f"Failed to launch Chromium: {str(e)[:500]}") from e

    def _install_browsers(self) -> bool:
        """
        Install Chromium through the Playwright CLI.

        Returns:
            bool: True if installation succeeded
        """
        logger.warning("Playwright browsers not found, installing automatically...")
        logger.info(f"Detected OS: {platform.system()}")

        # --with-deps installs system dependencies on Linux
        cmd = [sys.executable, "-m", "playwright", "install", "--with-deps", "chromium"]
        logger.info(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=300
            )
        except subprocess.TimeoutExpired:
            logger.error("Playwright installation timed out after 5 minutes")
            return False
        except OSError as install_error:
            logger.error(f"Failed to install Playwright browsers: {install_error}")
            return False

        if result.returncode != 0:
            logger.error(f"Playwright installation failed: {result.stderr}")
            return False

        logger.info("Playwright browsers installed successfully")
        return True

    def get_context(self) -> BrowserContext:
        """Return the live context."""
        if self._context is None:
            raise BrowserLaunchError("Browser not launched. Call launch() first.")
        return self._context

    async def block_heavy_resources(self) -> None:
        """Abort images, fonts, media and analytics requests for this context."""
        context = self.get_context()
        for pattern in HEAVY_RESOURCE_PATTERNS:
            await context.route(pattern, lambda route: route.abort())
        logger.debug("Heavy resource blocking enabled")

    async def new_page(self, url: Optional[str] = None) -> Page:
        """
        Open a page and optionally navigate to ``url``.

        After navigation a cookie banner is dismissed if one is present and
        the page is given up to 5s to reach network idle.
        """
        page = await self.get_context().new_page()
        if not url:
            return page

        try:
            await page.goto(url, wait_until="domcontentloaded")
            await dismiss_cookie_banner(page)
        except Exception:
            try:
                await page.close()
            except Exception as close_error:
                logger.debug(f"Could not close page after failed navigation to {url}: {close_error}")
            raise

        try:
            await page.wait_for_load_state("networkidle", timeout=5000)
        except Exception:
            # Long-polling pages never go idle
            logger.debug(f"Network idle not reached for {url}")

        return page

    async def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call twice."""
        browser = self._browser
        self._browser = None
        self._context = None

        if browser is not None:
            try:
                await browser.close()
                logger.info("Browser closed")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")

        await self._stop_playwright()

    async def force_close(self, timeout: float = 5.0) -> None:
        """Close within ``timeout`` seconds, otherwise tear down the driver."""
        try:
            await asyncio.wait_for(self.close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Browser did not close in time; stopping Playwright driver")
            self._browser = None
            self._context = None
            await self._stop_playwright()

    async def _stop_playwright(self) -> None:
        playwright = self._playwright
        self._playwright = None
        if playwright is not None:
            try:
                await playwright.stop()
                logger.info("Playwright stopped")
            except Exception as e:
                logger.warning(f"Error stopping Playwright: {e}")
