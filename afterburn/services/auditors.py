"""
Page auditors run after each workflow.

Auditors are plain async callables taking a page. Any auditor failure
yields a zero-valued report for that URL instead of an exception.
"""

import logging
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

from afterburn.models.execution import (
    AccessibilityReport,
    MetaAuditReport,
    PageAudit,
    PerformanceMetrics,
)

logger = logging.getLogger(__name__)

AccessibilityAuditor = Callable[[Page], Awaitable[AccessibilityReport]]
PerformanceAuditor = Callable[[Page], Awaitable[PerformanceMetrics]]
MetaAuditor = Callable[[Page], Awaitable[MetaAuditReport]]

PERFORMANCE_JS = """
() => new Promise(resolve => {
    let lcp = 0;
    let observer = null;
    try {
        observer = new PerformanceObserver(list => {
            const entries = list.getEntries();
            const last = entries[entries.length - 1];
            if (last) lcp = last.renderTime || last.loadTime || 0;
        });
        observer.observe({ type: 'largest-contentful-paint', buffered: true });
    } catch (e) {}
    setTimeout(() => {
        if (observer) observer.disconnect();
        const nav = performance.getEntriesByType('navigation')[0];
        const fcp = performance.getEntriesByName('first-contentful-paint')[0];
        resolve({
            ttfb: nav ? nav.responseStart : 0,
            fcp: fcp ? fcp.startTime : 0,
            lcp: lcp,
            domContentLoaded: nav ? nav.domContentLoadedEventEnd : 0,
            load: nav ? nav.loadEventEnd : 0
        });
    }, 1000);
})
"""

META_JS = """
() => {
    const head = document.head || document.createElement('head');
    const description = head.querySelector('meta[name="description"]');
    const headings = Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6'));
    let skippedHeading = false;
    for (let i = 1; i < headings.length; i++) {
        if (parseInt(headings[i].tagName[1]) > parseInt(headings[i - 1].tagName[1]) + 1) {
            skippedHeading = true;
            break;
        }
    }
    return {
        title: (document.title || '').trim(),
        description: description ? (description.getAttribute('content') || '') : '',
        hasLang: !!document.documentElement.getAttribute('lang'),
        hasViewport: !!head.querySelector('meta[name="viewport"]'),
        h1Count: document.querySelectorAll('h1').length,
        skippedHeading: skippedHeading,
        imagesWithoutAlt: document.querySelectorAll('img:not([alt])').length,
        unsafeBlankLinks: Array.from(document.querySelectorAll('a[target="_blank"]'))
            .filter(a => !/noopener|noreferrer/.test(a.getAttribute('rel') || '')).length
    };
}
"""


async def audit_performance(page: Page) -> PerformanceMetrics:
    """Navigation timing, FCP and LCP from the Performance API."""
    await page.wait_for_load_state("load", timeout=10000)
    metrics = await page.evaluate(PERFORMANCE_JS)
    return PerformanceMetrics(
        url=page.url,
        ttfb_ms=metrics.get("ttfb") or 0,
        fcp_ms=metrics.get("fcp") or 0,
        lcp_ms=metrics.get("lcp") or 0,
        dom_content_loaded_ms=metrics.get("domContentLoaded") or 0,
        load_ms=metrics.get("load") or 0,
    )


async def audit_meta(page: Page) -> MetaAuditReport:
    """DOM heuristics for title, description, lang, viewport and heading structure."""
    checks = await page.evaluate(META_JS)
    issues = []

    if not checks["title"]:
        issues.append("Missing <title>")
    elif len(checks["title"]) > 60:
        issues.append(f"Title is {len(checks['title'])} characters (over 60)")
    if not checks["description"]:
        issues.append("Missing meta description")
    if not checks["hasLang"]:
        issues.append("Missing lang attribute on <html>")
    if not checks["hasViewport"]:
        issues.append("Missing viewport meta tag")
    if checks["h1Count"] == 0:
        issues.append("No <h1> heading")
    elif checks["h1Count"] > 1:
        issues.append(f"{checks['h1Count']} <h1> headings")
    if checks["skippedHeading"]:
        issues.append("Heading levels skip a level")
    if checks["imagesWithoutAlt"]:
        issues.append(f"{checks['imagesWithoutAlt']} images without alt text")
    if checks["unsafeBlankLinks"]:
        issues.append(f"{checks['unsafeBlankLinks']} target=_blank links without rel=noopener")

    return MetaAuditReport(
        url=page.url,
        title=checks["title"],
        description=checks["description"],
        issues=issues,
    )


class Auditors:
    """The set of auditors applied to audited URLs. Any member may be None."""

    def __init__(
        self,
        accessibility: Optional[AccessibilityAuditor] = None,
        performance: Optional[PerformanceAuditor] = None,
        meta: Optional[MetaAuditor] = None,
    ):
        self.accessibility = accessibility
        self.performance = performance
        self.meta = meta

    @classmethod
    def default(cls) -> "Auditors":
        return cls(performance=audit_performance, meta=audit_meta)

    async def run(self, page: Page) -> PageAudit:
        url = page.url
        audit = PageAudit(url=url)

        if self.accessibility is not None:
            audit.accessibility = await safe_audit(
                "accessibility", self.accessibility, page, AccessibilityReport(url=url)
            )
        if self.performance is not None:
            audit.performance = await safe_audit(
                "performance", self.performance, page, PerformanceMetrics(url=url)
            )
        if self.meta is not None:
            audit.meta = await safe_audit("meta", self.meta, page, MetaAuditReport(url=url))

        return audit


async def safe_audit(name: str, auditor: Callable, page: Page, fallback):
    """Run an auditor, returning ``fallback`` if it raises."""
    try:
        return await auditor(page)
    except Exception as e:
        logger.warning(f"{name} audit failed for {page.url}: {e}")
        return fallback
