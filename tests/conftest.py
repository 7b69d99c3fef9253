"""Pytest configuration and browser fakes for Afterburn tests."""

from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from afterburn.utils.urls import normalize_url


class FakeResponse:
    """Stands in for a Playwright APIResponse."""

    def __init__(
        self,
        status: int = 200,
        url: str = "",
        status_text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status = status
        self.url = url
        self.headers = headers or {}
        self.status_text = status_text or ("OK" if status < 400 else "Error")


class FakeRequestContext:
    """page.request replacement answering from a url -> response table."""

    def __init__(self, responses: Dict[str, FakeResponse]):
        self.responses = responses
        self.calls: List[str] = []
        self.redirect_limits: List[Optional[int]] = []

    async def get(
        self,
        url: str,
        timeout: Optional[int] = None,
        max_redirects: Optional[int] = None,
    ) -> FakeResponse:
        self.calls.append(url)
        self.redirect_limits.append(max_redirects)
        response = self.responses.get(url)
        if response is None:
            raise ConnectionError(f"net::ERR_CONNECTION_REFUSED at {url}")
        if not response.url:
            response.url = url
        return response


class FakeCrawlPage:
    """Minimal page for crawler tests: a title and a list of anchors."""

    def __init__(self, url: str, title: str, hrefs: List[str]):
        self.url = url
        self._title = title
        self._hrefs = hrefs
        self.closed = False

    async def title(self) -> str:
        return self._title

    async def wait_for_timeout(self, ms: int) -> None:
        return None

    async def eval_on_selector_all(self, selector: str, script: str):
        return [{"href": href, "text": href.rsplit("/", 1)[-1]} for href in self._hrefs]

    async def close(self) -> None:
        self.closed = True


class FakeSite:
    """
    A tiny website keyed by normalized URL.

        site = FakeSite({"https://example.com/": ("Home", ["https://example.com/about"])})
    """

    def __init__(self, pages: Dict[str, Tuple[str, List[str]]]):
        self.pages = {normalize_url(url): value for url, value in pages.items()}

    def open(self, url: str) -> FakeCrawlPage:
        key = normalize_url(url)
        if key not in self.pages:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        title, hrefs = self.pages[key]
        return FakeCrawlPage(key, title, hrefs)


class FakeBrowserManager:
    """BrowserManager double serving pages from a FakeSite."""

    def __init__(self, site: Optional[FakeSite] = None):
        self.site = site or FakeSite({})
        self.opened: List[str] = []
        self.launched = False
        self.closed = False
        self.force_closed = False

    async def launch(self) -> None:
        self.launched = True

    async def new_page(self, url: Optional[str] = None):
        if url is None:
            return make_page()
        self.opened.append(url)
        return self.site.open(url)

    def get_context(self):
        return MagicMock()

    async def block_heavy_resources(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    async def force_close(self, timeout: float = 5.0) -> None:
        self.force_closed = True


def make_locator(count: int = 1, visible: bool = True) -> MagicMock:
    """A Locator mock whose ``.first`` and ``.locator()`` return itself."""
    locator = MagicMock()
    locator.first = locator
    locator.locator.return_value = locator
    locator.count = AsyncMock(return_value=count)
    locator.is_visible = AsyncMock(return_value=visible)
    locator.click = AsyncMock()
    locator.fill = AsyncMock()
    locator.check = AsyncMock()
    locator.uncheck = AsyncMock()
    locator.select_option = AsyncMock()
    locator.wait_for = AsyncMock()
    locator.evaluate = AsyncMock()
    locator.get_attribute = AsyncMock(return_value=None)
    locator.text_content = AsyncMock(return_value="")
    return locator


def make_page(url: str = "https://example.com/", locator: Optional[MagicMock] = None) -> MagicMock:
    """
    A Page mock. Every ``page.locator()`` call returns ``locator`` except
    the modal close-button selectors, which are never visible.
    """
    page = MagicMock()
    page.url = url
    target = locator if locator is not None else make_locator()
    hidden = make_locator(count=0, visible=False)

    close_selectors = {
        '[aria-label*="close" i]',
        '[aria-label*="dismiss" i]',
        'button.close',
        'button.modal-close',
        '.modal-close-button',
        '[data-dismiss="modal"]',
    }
    page.locator.side_effect = lambda selector: hidden if selector in close_selectors else target
    page.get_by_label.return_value = target
    page.get_by_text.return_value = target
    page.get_by_placeholder.return_value = target
    page.get_by_role.return_value = target

    page.keyboard.press = AsyncMock()
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value=0)
    page.wait_for_timeout = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.screenshot = AsyncMock(return_value=b"\x89PNG fake")
    page.close = AsyncMock()
    return page


@pytest.fixture
def page():
    return make_page()


@pytest.fixture
def public_resolver():
    """Resolver that maps every hostname to a public documentation address."""

    async def resolve(hostname: str) -> List[str]:
        return ["93.184.216.34"]

    return resolve
