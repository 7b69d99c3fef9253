"""Screenshots and failure evidence."""

import hashlib
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from playwright.async_api import Page

from afterburn.models.discovery import ScreenshotRef
from afterburn.models.execution import ErrorCollection, ErrorEvidence
from afterburn.utils.config import settings
from afterburn.utils.logging import redact_sensitive_url

logger = logging.getLogger(__name__)

RECENT_ERROR_COUNT = 5


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "-", name).strip("-")[:60] or "screenshot"


class ScreenshotManager:
    """Writes full-page PNGs, one file per distinct image content."""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = Path(output_dir or settings.SCREENSHOT_DIR)
        self._by_hash: Dict[str, ScreenshotRef] = {}

    async def capture(self, page: Page, name: str) -> ScreenshotRef:
        png = await page.screenshot(type="png", full_page=True)
        digest = hashlib.sha256(png).hexdigest()[:12]

        existing = self._by_hash.get(digest)
        if existing is not None:
            return existing

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{_safe_name(name)}-{digest}.png"
        path.write_bytes(png)

        ref = ScreenshotRef(id=digest, name=name, path=str(path), size_bytes=len(png))
        self._by_hash[digest] = ref
        logger.debug(f"Screenshot saved: {path}")
        return ref

    def get_all(self) -> List[ScreenshotRef]:
        return list(self._by_hash.values())


async def capture_error_evidence(
    page: Page,
    collection: ErrorCollection,
    screenshots: ScreenshotManager,
    step_index: int,
) -> ErrorEvidence:
    """Screenshot plus the most recent console and network errors."""
    page_url = redact_sensitive_url(page.url) or ""
    try:
        screenshot = await screenshots.capture(page, f"error-step-{step_index}")
    except Exception as e:
        logger.warning(f"Evidence screenshot failed for step {step_index}: {e}")
        screenshot = None

    return ErrorEvidence(
        step_index=step_index,
        screenshot=screenshot,
        console_errors=[error.message for error in collection.console_errors[-RECENT_ERROR_COUNT:]],
        network_failures=list(collection.network_failures[-RECENT_ERROR_COUNT:]),
        page_url=page_url,
    )
