"""Tests for broken-link validation."""

from unittest.mock import MagicMock

import pytest

from afterburn.models import LinkInfo
from afterburn.services.link_validator import (
    MAX_LINKS_PER_PAGE,
    MAX_REDIRECTS,
    LinkValidationState,
    select_links_to_check,
    validate_links,
)

from conftest import FakeRequestContext, FakeResponse


def _link(href, internal=True):
    return LinkInfo(href=href, is_internal=internal)


def _page(responses, url="https://example.com/"):
    page = MagicMock()
    page.url = url
    page.request = FakeRequestContext(responses)
    return page


class TestSelectLinksToCheck:
    """Tests for select_links_to_check."""

    def test_filters_and_dedupes(self):
        """Should keep internal http(s) links once each."""
        links = [
            _link("https://example.com/a"),
            _link("https://example.com/a/"),
            _link("https://other.com/x", internal=False),
            _link("mailto:hi@example.com"),
            _link("javascript:void(0)"),
            _link("https://example.com/b?page=2"),
        ]

        selected = [l.href for l in select_links_to_check(links)]

        assert selected == ["https://example.com/a", "https://example.com/b?page=2"]


class TestValidateLinks:
    """Tests for validate_links."""

    @pytest.mark.asyncio
    async def test_reports_404(self, public_resolver):
        """Should report responses with status >= 400."""
        page = _page({
            "https://example.com/ok": FakeResponse(200),
            "https://example.com/missing": FakeResponse(404, status_text="Not Found"),
        })
        state = LinkValidationState(public_resolver)

        broken = await validate_links(
            [_link("https://example.com/ok"), _link("https://example.com/missing")],
            page,
            state,
        )

        assert len(broken) == 1
        assert broken[0].url == "https://example.com/missing"
        assert broken[0].status_code == 404
        assert broken[0].source_url == "https://example.com/"
        assert state.checked_count == 2

    @pytest.mark.asyncio
    async def test_network_error_is_status_zero(self, public_resolver):
        """Should report network failures with status 0."""
        page = _page({})
        broken = await validate_links(
            [_link("https://example.com/down")], page, LinkValidationState(public_resolver)
        )

        assert broken[0].status_code == 0
        assert "ERR_CONNECTION_REFUSED" in broken[0].status_text

    @pytest.mark.asyncio
    async def test_blocks_redirect_to_private_host(self, public_resolver):
        """Should reject a redirect into private address space before requesting it."""
        page = _page({
            "https://example.com/go": FakeResponse(302, headers={"location": "http://10.0.0.1/admin"}),
            "http://10.0.0.1/admin": FakeResponse(200),
        })

        broken = await validate_links(
            [_link("https://example.com/go")], page, LinkValidationState(public_resolver)
        )

        assert len(broken) == 1
        assert broken[0].status_code == 0
        assert "SSRF protection" in broken[0].status_text
        assert page.request.calls == ["https://example.com/go"]
        assert page.request.redirect_limits == [0]

    @pytest.mark.asyncio
    async def test_follows_relative_redirects(self, public_resolver):
        """Should follow each hop itself and report the final status."""
        page = _page({
            "https://example.com/old": FakeResponse(301, headers={"location": "/new"}),
            "https://example.com/new": FakeResponse(404, status_text="Not Found"),
        })

        broken = await validate_links(
            [_link("https://example.com/old")], page, LinkValidationState(public_resolver)
        )

        assert page.request.calls == ["https://example.com/old", "https://example.com/new"]
        assert [(b.url, b.status_code) for b in broken] == [("https://example.com/old", 404)]

    @pytest.mark.asyncio
    async def test_redirect_loop(self, public_resolver):
        """Should give up on a link that keeps redirecting."""
        page = _page({
            "https://example.com/loop": FakeResponse(302, headers={"location": "https://example.com/loop"}),
        })

        broken = await validate_links(
            [_link("https://example.com/loop")], page, LinkValidationState(public_resolver)
        )

        assert broken[0].status_code == 0
        assert "Too many redirects" in broken[0].status_text
        assert len(page.request.calls) == MAX_REDIRECTS + 1

    @pytest.mark.asyncio
    async def test_does_not_request_private_links(self):
        """Should reject links whose host resolves privately without fetching them."""
        async def resolver(hostname):
            return ["192.168.1.20"]

        page = _page({"https://intranet.example.com/": FakeResponse(200)})
        broken = await validate_links(
            [_link("https://intranet.example.com/")], page, LinkValidationState(resolver)
        )

        assert broken[0].status_code == 0
        assert page.request.calls == []

    @pytest.mark.asyncio
    async def test_caps_links_per_page(self, public_resolver):
        """Should check at most 50 links from one page."""
        links = [_link(f"https://example.com/p{i}") for i in range(60)]
        page = _page({link.href: FakeResponse(200) for link in links})
        state = LinkValidationState(public_resolver)

        await validate_links(links, page, state)

        assert len(page.request.calls) == MAX_LINKS_PER_PAGE
        assert state.checked_count == MAX_LINKS_PER_PAGE

    @pytest.mark.asyncio
    async def test_global_cap_across_pages(self, public_resolver):
        """Should stop probing once the scan-wide cap is reached."""
        state = LinkValidationState(public_resolver, max_total=5)
        first = [_link(f"https://example.com/a{i}") for i in range(4)]
        second = [_link(f"https://example.com/b{i}") for i in range(4)]
        responses = {link.href: FakeResponse(200) for link in first + second}
        page = _page(responses)

        await validate_links(first, page, state)
        await validate_links(second, page, state)

        assert len(page.request.calls) == 5
        assert state.remaining == 0
