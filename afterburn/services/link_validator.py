"""Broken-link checks for internal links, with SSRF protection."""

import asyncio
import logging
from typing import Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from playwright.async_api import Page

from afterburn.models.discovery import BrokenLink, LinkInfo
from afterburn.utils.config import settings
from afterburn.utils.guards import GuardError, HostnameSafetyCache, HostResolver
from afterburn.utils.urls import resolve_url

logger = logging.getLogger(__name__)

MAX_LINKS_PER_PAGE = 50
MAX_TOTAL_LINKS = 500
CHECK_CONCURRENCY = 10
MAX_REDIRECTS = 10

REDIRECT_STATUSES = (301, 302, 303, 307, 308)

SKIPPED_PREFIXES = ("mailto:", "tel:", "javascript:", "data:", "#")


class LinkValidationState:
    """
    State shared by every validate_links call of one crawl.

    Tracks the global link cap and the per-run SSRF verdict cache.
    Create a new instance per scan.
    """

    def __init__(self, resolver: Optional[HostResolver] = None, max_total: int = MAX_TOTAL_LINKS):
        self.checked_count = 0
        self.max_total = max_total
        self.hostname_cache = HostnameSafetyCache(resolver)

    @property
    def remaining(self) -> int:
        return max(0, self.max_total - self.checked_count)


def _dedupe_key(href: str) -> Optional[str]:
    """origin + path without trailing slash + query."""
    try:
        parts = urlsplit(href)
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    path = parts.path[:-1] if parts.path.endswith("/") else parts.path
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def select_links_to_check(links: List[LinkInfo]) -> List[LinkInfo]:
    """Internal http(s) links, deduplicated, in discovery order."""
    unique: Dict[str, LinkInfo] = {}
    for link in links:
        if not link.is_internal:
            continue
        if link.href.strip().lower().startswith(SKIPPED_PREFIXES):
            continue
        key = _dedupe_key(link.href)
        if key is None or key in unique:
            continue
        unique[key] = link.model_copy(update={"href": key})
    return list(unique.values())


def _unreachable(link: LinkInfo, source_url: str, reason: str) -> BrokenLink:
    return BrokenLink(url=link.href, source_url=source_url, status_code=0, status_text=reason)


async def _check_link(
    page: Page,
    link: LinkInfo,
    source_url: str,
    state: LinkValidationState,
    timeout_ms: int,
) -> Optional[BrokenLink]:
    """
    Request ``link`` and follow redirects one hop at a time.

    Every hop's host is checked before it is requested, so a redirect into
    private address space is rejected without being contacted.
    """
    url = link.href
    try:
        for hop in range(MAX_REDIRECTS + 1):
            try:
                await state.hostname_cache.assert_public(urlsplit(url).hostname or "")
            except GuardError as e:
                if hop:
                    logger.warning(f"Redirect of {link.href} blocked: {e}")
                return _unreachable(link, source_url, str(e) or "SSRF protection: destination failed validation")

            # page.request shares cookies with the browser context
            response = await page.request.get(url, timeout=timeout_ms, max_redirects=0)

            location = response.headers.get("location") if response.status in REDIRECT_STATUSES else None
            if not location:
                break
            url = resolve_url(location, url) or ""
        else:
            return _unreachable(link, source_url, f"Too many redirects (more than {MAX_REDIRECTS})")

        if response.status >= 400:
            return BrokenLink(
                url=link.href,
                source_url=source_url,
                status_code=response.status,
                status_text=response.status_text,
            )
        return None
    except Exception as e:
        return _unreachable(link, source_url, str(e)[:500] or "Network error")


async def validate_links(
    links: List[LinkInfo],
    page: Page,
    state: Optional[LinkValidationState] = None,
    timeout_ms: Optional[int] = None,
) -> List[BrokenLink]:
    """
    Check the internal links found on ``page``.

    At most 50 links per page and 500 per scan (via ``state``) are checked,
    10 at a time. Status >= 400, network errors and SSRF rejections
    (status 0) are reported as broken. Never raises for a single link.
    """
    state = state or LinkValidationState()
    timeout_ms = timeout_ms or settings.LINK_CHECK_TIMEOUT_MS
    source_url = page.url

    candidates = select_links_to_check(links)

    capped = candidates[:MAX_LINKS_PER_PAGE]
    if len(candidates) > MAX_LINKS_PER_PAGE:
        logger.warning(
            f"Capping link validation to {MAX_LINKS_PER_PAGE} links per page "
            f"({len(candidates)} found on {source_url})"
        )

    to_check = capped[:state.remaining]
    if len(to_check) < len(capped):
        logger.warning(
            f"Global link cap reached ({state.max_total} total). "
            f"Skipping {len(capped) - len(to_check)} links."
        )
    state.checked_count += len(to_check)

    broken: List[BrokenLink] = []
    for i in range(0, len(to_check), CHECK_CONCURRENCY):
        batch = to_check[i:i + CHECK_CONCURRENCY]
        results = await asyncio.gather(
            *(_check_link(page, link, source_url, state, timeout_ms) for link in batch),
            return_exceptions=True,
        )
        for link, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(f"Link check crashed for {link.href}: {result}")
            elif result is not None:
                broken.append(result)

    if broken:
        logger.info(f"{len(broken)} broken links on {source_url}")
    return broken
