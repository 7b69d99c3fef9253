"""
Discovery pipeline: SPA detection, crawl with per-page element mapping and
link validation, sitemap, workflow plans.
"""

import logging
import uuid
from typing import List, Optional, Protocol, Tuple

from playwright.async_api import Page

from afterburn.models.discovery import (
    BrokenLink,
    DiscoveryResult,
    FrameworkName,
    PageData,
    PartialPageData,
    SitemapNode,
    SPAFramework,
    WorkflowPlan,
    merge_page_data,
)
from afterburn.models.events import Stage
from afterburn.models.scan import ScanOptions
from afterburn.services.browser_manager import BrowserManager
from afterburn.services.cancellation import CancellationToken
from afterburn.services.crawler import SiteCrawler
from afterburn.services.element_mapper import ElementMapper
from afterburn.services.events import EventChannel
from afterburn.services.evidence_capture import ScreenshotManager
from afterburn.services.heuristic_planner import get_heuristic_planner
from afterburn.services.link_validator import LinkValidationState, validate_links
from afterburn.services.sitemap_builder import build_sitemap, print_sitemap_tree
from afterburn.services.spa_detector import detect_framework, discover_routes
from afterburn.utils.config import settings
from afterburn.utils.guards import HostResolver, validate_url

logger = logging.getLogger(__name__)


class Planner(Protocol):
    """Anything that can turn a sitemap into workflow plans. May raise."""

    async def generate_plans(self, sitemap: SitemapNode, hints: List[str]) -> List[WorkflowPlan]:
        ...


async def resolve_workflow_plans(
    planner: Optional[Planner],
    sitemap: SitemapNode,
    hints: List[str],
) -> Tuple[List[WorkflowPlan], bool]:
    """
    Ask ``planner`` for plans, falling back to the heuristic planner when
    there is no planner or it raises.

    Returns:
        (plans, used_heuristic_fallback)
    """
    heuristic = get_heuristic_planner()

    if planner is None:
        logger.info("No planner configured; using heuristic workflow plans")
        return heuristic.synthesize(sitemap), True

    try:
        plans = await planner.generate_plans(sitemap, hints)
        return list(plans), False
    except Exception as e:
        logger.warning(f"Planner failed, falling back to heuristic plans: {e}")
        return heuristic.synthesize(sitemap), True


def replace_revealed_forms(data: PageData, revealed: PartialPageData) -> PageData:
    """Drop forms that ``revealed`` carries again, so the revealed copy wins the merge."""
    revealed_selectors = {form.selector for form in revealed.forms or []}
    if not revealed_selectors:
        return data
    kept = [form for form in data.forms if form.selector not in revealed_selectors]
    return data.model_copy(update={"forms": kept})


class PageInventory:
    """
    Page processor handed to the crawler.

    Maps visible and hidden elements, takes a screenshot and checks the
    page's internal links, collecting broken links for the whole crawl.
    """

    def __init__(
        self,
        mapper: ElementMapper,
        screenshots: Optional[ScreenshotManager],
        link_state: LinkValidationState,
        spa_framework: SPAFramework,
        session_id: str = "",
    ):
        self.mapper = mapper
        self.screenshots = screenshots
        self.link_state = link_state
        self.spa_framework = spa_framework
        self.session_id = session_id
        self.broken_links: List[BrokenLink] = []
        self.processed = 0

    async def __call__(self, page: Page, url: str) -> PartialPageData:
        self.processed += 1
        try:
            combined = merge_page_data(PageData(url=url), await self.mapper.discover_visible(page, url))

            try:
                hidden = await self.mapper.discover_hidden(page, url)
                combined = merge_page_data(replace_revealed_forms(combined, hidden), hidden)
            except Exception as e:
                logger.debug(f"[{self.session_id}] Hidden element discovery failed on {url}: {e}")

            screenshot = None
            if self.screenshots is not None:
                try:
                    screenshot = await self.screenshots.capture(page, f"page-{self.processed}")
                except Exception as e:
                    logger.warning(f"[{self.session_id}] Screenshot failed for {url}: {e}")

            self.broken_links.extend(await validate_links(combined.links, page, self.link_state))

            return PartialPageData(
                forms=combined.forms,
                buttons=combined.buttons,
                links=combined.links,
                menus=combined.menus,
                other_interactive=combined.other_interactive,
                spa_framework=self.spa_framework,
                screenshot=screenshot,
            )
        except Exception as e:
            logger.warning(f"[{self.session_id}] Failed to process page {url}: {e}")
            return PartialPageData(forms=[], buttons=[], menus=[], other_interactive=[])


async def _detect_spa(browser_manager: BrowserManager, target_url: str, session_id: str) -> Tuple[SPAFramework, List[str]]:
    page = await browser_manager.new_page(target_url)
    try:
        framework = await detect_framework(page)
        if framework.framework == FrameworkName.NONE:
            logger.info(f"[{session_id}] No SPA framework detected")
            return framework, []

        version = f" v{framework.version}" if framework.version else ""
        logger.info(f"[{session_id}] Detected {framework.framework.value} app{version}")

        routes = await discover_routes(page, settings.SPA_DISCOVERY_TIMEOUT_SECONDS)
        if routes:
            logger.info(f"[{session_id}] Found {len(routes)} client-side routes")
        return framework, routes
    finally:
        await page.close()


async def run_discovery(
    options: ScanOptions,
    planner: Optional[Planner] = None,
    browser_manager: Optional[BrowserManager] = None,
    events: Optional[EventChannel] = None,
    screenshots: Optional[ScreenshotManager] = None,
    resolver: Optional[HostResolver] = None,
    mapper: Optional[ElementMapper] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> DiscoveryResult:
    """
    Crawl the target site and produce a sitemap plus workflow plans.

    The browser is closed before this returns, so execution can launch its
    own.
    """
    target_url = validate_url(options.target_url)
    session_id = options.session_id or str(uuid.uuid4())
    browser_manager = browser_manager or BrowserManager()
    events = events or EventChannel(session_id)
    link_state = LinkValidationState(resolver)

    logger.info(f"[{session_id}] Launching browser for discovery of {target_url}")
    await browser_manager.launch()
    try:
        if settings.BLOCK_HEAVY_RESOURCES:
            await browser_manager.block_heavy_resources()

        try:
            spa_framework, spa_routes = await _detect_spa(browser_manager, target_url, session_id)
        except Exception as e:
            logger.warning(f"[{session_id}] SPA detection failed: {e}")
            spa_framework, spa_routes = SPAFramework(), []

        inventory = PageInventory(
            mapper or ElementMapper(),
            screenshots if screenshots is not None else ScreenshotManager(),
            link_state,
            spa_framework,
            session_id,
        )
        crawler = SiteCrawler(
            browser_manager,
            max_pages=options.max_pages,
            exclude_patterns=options.exclude_patterns or settings.EXCLUDE_PATTERNS,
            page_processor=inventory,
            events=events,
        )

        events.emit(Stage.CRAWL, f"Starting site crawl of {target_url}")
        crawl_result = await crawler.crawl(target_url, spa_routes)
    finally:
        await browser_manager.close()

    crawl_result = crawl_result.model_copy(update={
        "broken_links": inventory.broken_links,
        "total_links_checked": link_state.checked_count,
        "spa_detected": spa_framework,
    })
    logger.info(
        f"[{session_id}] Crawl complete: {crawl_result.total_pages_discovered} pages, "
        f"{len(crawl_result.broken_links)} broken links"
    )

    sitemap = build_sitemap(crawl_result.pages, target_url)
    logger.info(f"[{session_id}] Site map:\n{print_sitemap_tree(sitemap)}")

    if cancel_token is not None:
        cancel_token.raise_if_cancelled("plan")

    events.emit(Stage.PLAN, "Generating workflow plans")
    plans, used_fallback = await resolve_workflow_plans(planner, sitemap, options.user_hints)
    for number, plan in enumerate(plans, 1):
        logger.info(f"[{session_id}]   {number}. {plan.workflow_name} ({plan.priority.value}) - {len(plan.steps)} steps")

    return DiscoveryResult(
        session_id=session_id,
        target_url=target_url,
        sitemap=sitemap,
        crawl_result=crawl_result,
        workflow_plans=plans,
        user_hints=options.user_hints,
        used_heuristic_fallback=used_fallback,
        spa_framework=spa_framework,
    )
