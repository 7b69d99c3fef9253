"""SPA framework detection and client-side route discovery."""

import logging
import time
from typing import List, Optional, Set

from playwright.async_api import Page

from afterburn.models.discovery import FrameworkName, SPAFramework
from afterburn.utils.config import settings
from afterburn.utils.urls import get_hostname, resolve_url

logger = logging.getLogger(__name__)

# Meta-frameworks are checked before the framework they build on
DETECT_FRAMEWORK_JS = """
() => {
    const w = window;
    if (document.querySelector('script#__NEXT_DATA__') || w.__NEXT_DATA__) {
        const data = w.__NEXT_DATA__ || {};
        return {framework: 'next', version: data.buildId || null, router: 'next-router'};
    }
    if (w.__NUXT__ || document.querySelector('[data-n-head]')) {
        let version = null;
        try { version = w.__NUXT__.config.app.version || null; } catch (e) {}
        return {framework: 'nuxt', version, router: 'nuxt-router'};
    }
    const reactContainer = Object.keys(document.body || {}).find(k => k.startsWith('__reactContainer'));
    const devtools = w.__REACT_DEVTOOLS_GLOBAL_HOOK__;
    if (reactContainer || devtools) {
        let version = null;
        try { version = devtools.renderers.values().next().value.version || null; } catch (e) {}
        return {framework: 'react', version, router: 'react-router'};
    }
    if (w.__VUE__ || w.Vue || document.querySelector('[data-v-]')) {
        let version = null;
        try { version = (w.Vue && w.Vue.version) || (w.__VUE__ && w.__VUE__.version) || null; } catch (e) {}
        return {framework: 'vue', version, router: 'vue-router'};
    }
    const ngVersion = document.querySelector('[ng-version]');
    if (w.ng || ngVersion || document.querySelector('app-root')) {
        let version = ngVersion ? ngVersion.getAttribute('ng-version') : null;
        try { version = version || w.ng.version.full || null; } catch (e) {}
        return {framework: 'angular', version, router: 'angular-router'};
    }
    if (document.querySelector('[data-svelte-h]')) {
        return {framework: 'svelte', version: null, router: 'sveltekit'};
    }
    return {framework: 'none', version: null, router: null};
}
"""

ROUTE_RECORDER_JS = """
() => {
    if (window.__afterburn_routes) return;
    window.__afterburn_routes = [];
    const record = url => { if (url) window.__afterburn_routes.push(String(url)); };
    const originalPushState = history.pushState;
    const originalReplaceState = history.replaceState;
    history.pushState = function (data, unused, url) {
        record(url);
        return originalPushState.apply(history, arguments);
    };
    history.replaceState = function (data, unused, url) {
        record(url);
        return originalReplaceState.apply(history, arguments);
    };
    window.addEventListener('popstate', () => record(location.pathname + location.search));
}
"""

NAVIGATION_SELECTOR = 'nav a, [role="navigation"] a, header a'

SKIP_WORDS = [
    "delete", "remove", "destroy", "reset", "clear", "drop", "purge",
    "revoke", "terminate", "unsubscribe", "cancel-account", "close-account",
    "cancel", "submit", "download", "logout", "log out", "sign out",
]


async def detect_framework(page: Page) -> SPAFramework:
    """Detect the client framework, or ``none``. Never raises."""
    try:
        detected = await page.evaluate(DETECT_FRAMEWORK_JS)
    except Exception as e:
        logger.debug(f"SPA framework detection failed: {e}")
        return SPAFramework()

    try:
        framework = FrameworkName(detected.get("framework", "none"))
    except ValueError:
        framework = FrameworkName.NONE

    version = detected.get("version")
    return SPAFramework(
        framework=framework,
        version=str(version) if version is not None else None,
        router=detected.get("router"),
    )


async def _restore(page: Page, before_url: str) -> bool:
    """Go back to ``before_url``; False when neither history nor goto works."""
    try:
        await page.go_back(timeout=3000, wait_until="domcontentloaded")
        if page.url == before_url:
            return True
    except Exception as e:
        logger.debug(f"History back failed: {e}")

    try:
        await page.goto(before_url, timeout=5000, wait_until="domcontentloaded")
        return True
    except Exception as e:
        logger.debug(f"Could not return to {before_url}: {e}")
        return False


async def discover_routes(page: Page, timeout_seconds: Optional[float] = None) -> List[str]:
    """
    Find client-side routes by activating navigation elements.

    The History API is instrumented so that pushState/replaceState/popstate
    URLs are recorded. Each internal, non-destructive navigation element is
    clicked, recorded routes are collected and the original URL restored
    before the next element. Navigation that leaves the origin is rolled
    back and not counted. Never raises.
    """
    timeout_seconds = timeout_seconds or settings.SPA_DISCOVERY_TIMEOUT_SECONDS
    discovered: Set[str] = set()
    start_url = page.url
    start_hostname = get_hostname(start_url)
    started = time.monotonic()

    try:
        await page.add_init_script(f"({ROUTE_RECORDER_JS})()")
        await page.evaluate(ROUTE_RECORDER_JS)

        candidates = await page.locator(NAVIGATION_SELECTOR).all()
        candidates += await page.get_by_role("link").all()
    except Exception as e:
        logger.debug(f"Route discovery setup failed: {e}")
        return []

    seen_hrefs: Set[str] = set()

    for element in candidates:
        if time.monotonic() - started > timeout_seconds:
            logger.info(f"Route discovery stopped after {timeout_seconds}s")
            break

        try:
            href = await element.get_attribute("href")
            if not href or href in seen_hrefs:
                continue
            seen_hrefs.add(href)

            text = ((await element.text_content()) or "").lower()
            if any(word in text for word in SKIP_WORDS):
                continue

            if not href.startswith("/"):
                resolved = resolve_url(href, start_url)
                if not resolved or get_hostname(resolved) != start_hostname:
                    continue

            before_url = page.url
            await element.click(timeout=2000)

            try:
                await page.wait_for_load_state("domcontentloaded", timeout=3000)
            except Exception:
                # Client-side route changes may not fire a load event
                pass

            if get_hostname(page.url) != start_hostname:
                logger.debug(f"Off-origin navigation to {page.url}, rolling back")
                if not await _restore(page, before_url):
                    break
                continue

            routes = await page.evaluate("() => window.__afterburn_routes || []")
            for route in routes:
                absolute = resolve_url(route, start_url)
                if absolute and get_hostname(absolute) == start_hostname:
                    discovered.add(absolute)

            if page.url != before_url:
                discovered.add(page.url)
                if not await _restore(page, before_url):
                    break
        except Exception as e:
            # Stale element, download, alert...
            logger.debug(f"Route discovery element failed: {e}")
            continue

    logger.info(f"Discovered {len(discovered)} client-side routes")
    return sorted(discovered)
