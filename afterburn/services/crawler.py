"""Breadth-first crawler over same-hostname pages."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Set

from playwright.async_api import Page

from afterburn.models.discovery import (
    CrawlResult,
    LinkInfo,
    PageData,
    PartialPageData,
    merge_page_data,
)
from afterburn.models.events import Stage
from afterburn.services.browser_manager import BrowserManager
from afterburn.services.events import EventChannel
from afterburn.utils.config import settings
from afterburn.utils.guards import validate_max_pages
from afterburn.utils.urls import (
    get_hostname,
    matches_exclude_pattern,
    normalize_url,
    resolve_url,
)

logger = logging.getLogger(__name__)

PageProcessor = Callable[[Page, str], Awaitable[PartialPageData]]

LARGE_SITE_WARNING = 50

EXTRACT_LINKS_JS = """
anchors => anchors.map(a => ({
    href: a.href,
    text: (a.textContent || '').trim()
}))
"""


class SiteCrawler:
    """
    Crawls every page on the seed's hostname.

    URLs are normalized before they enter the queue, so cosmetic variants of
    a page are visited once. Pages load in batches of ``max_concurrency``;
    the page limit is checked between batches, so the last batch may
    overshoot it by up to ``max_concurrency - 1`` pages.
    """

    def __init__(
        self,
        browser_manager: BrowserManager,
        max_concurrency: Optional[int] = None,
        max_pages: Optional[int] = None,
        exclude_patterns: Optional[List[str]] = None,
        page_processor: Optional[PageProcessor] = None,
        events: Optional[EventChannel] = None,
        settle_ms: Optional[int] = None,
    ):
        self.browser_manager = browser_manager
        self.max_concurrency = max(1, max_concurrency or settings.CRAWL_CONCURRENCY)
        self.max_pages = validate_max_pages(
            settings.MAX_PAGES if max_pages is None else max_pages
        )
        self.exclude_patterns = list(exclude_patterns or [])
        self.page_processor = page_processor
        self.events = events
        self.settle_ms = settings.CRAWL_SETTLE_MS if settle_ms is None else settle_ms

        self.hostname: Optional[str] = None
        self.visited: Set[str] = set()
        self.queue: List[str] = []
        self.pages: List[PageData] = []

    async def crawl(self, seed_url: str, extra_seeds: Optional[List[str]] = None) -> CrawlResult:
        """
        Crawl from ``seed_url``.

        Args:
            seed_url: Starting URL; its hostname bounds the crawl
            extra_seeds: More URLs to start from (e.g. SPA routes), resolved
                against the seed and kept only when on the same hostname

        Returns:
            CrawlResult with every page visited
        """
        start_time = time.monotonic()

        self.hostname = get_hostname(seed_url)
        self._enqueue(normalize_url(seed_url))

        for extra in extra_seeds or []:
            resolved = resolve_url(extra, seed_url)
            if resolved and get_hostname(resolved) == self.hostname:
                self._enqueue(normalize_url(resolved))

        warned_large = False
        while self.queue:
            if len(self.pages) >= self.max_pages:
                logger.warning(
                    f"Page limit of {self.max_pages} reached; "
                    f"{len(self.queue)} queued URLs not crawled"
                )
                break

            if len(self.pages) >= LARGE_SITE_WARNING and not warned_large:
                warned_large = True
                logger.warning(f"Discovered {LARGE_SITE_WARNING}+ pages. Crawl continuing...")

            batch = self.queue[:self.max_concurrency]
            del self.queue[:self.max_concurrency]

            results = await asyncio.gather(
                *(self._crawl_page(url) for url in batch),
                return_exceptions=True,
            )

            for url, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(f"Error crawling {url}: {result}")

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Crawl finished: {len(self.pages)} pages in {duration_ms}ms")

        return CrawlResult(
            pages=list(self.pages),
            total_pages_discovered=len(self.pages),
            crawl_duration_ms=duration_ms,
        )

    def _enqueue(self, normalized: str) -> None:
        if normalized not in self.visited and normalized not in self.queue:
            self.queue.append(normalized)

    def should_exclude(self, url: str) -> bool:
        return matches_exclude_pattern(url, self.exclude_patterns)

    async def _crawl_page(self, url: str) -> None:
        if url in self.visited or self.should_exclude(url):
            return

        self.visited.add(url)

        page = None
        try:
            page = await self.browser_manager.new_page(url)

            if self.settle_ms:
                await page.wait_for_timeout(self.settle_ms)

            title = await page.title()
            links = await self.extract_links(page)

            page_data = PageData(url=url, title=title, links=links)

            if self.page_processor is not None:
                extra = await self.page_processor(page, url)
                page_data = merge_page_data(page_data, extra)

            self.pages.append(page_data)
            logger.info(f"Crawled page {len(self.pages)}: {url}")

            if self.events is not None:
                self.events.emit(
                    Stage.CRAWL,
                    f"Crawled {url}",
                    {"url": url, "count": len(self.pages)},
                )

            for link in page_data.links:
                if link.is_internal:
                    self._enqueue(normalize_url(link.href))
        finally:
            if page is not None:
                await page.close()

    async def extract_links(self, page: Page) -> List[LinkInfo]:
        """All anchors on the page, classified as internal by hostname."""
        raw_links = await page.eval_on_selector_all("a[href]", EXTRACT_LINKS_JS)

        links = []
        for raw in raw_links:
            href = raw.get("href") or ""
            links.append(LinkInfo(
                href=href,
                text=raw.get("text") or "",
                is_internal=get_hostname(href) == self.hostname if href else False,
            ))
        return links
