"""Tests for SPA detection and route discovery."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from afterburn.models.discovery import FrameworkName
from afterburn.services.spa_detector import detect_framework, discover_routes


class TestDetectFramework:
    """Tests for detect_framework."""

    @pytest.mark.asyncio
    async def test_detects_next(self):
        """Should map the detection result to a framework."""
        page = MagicMock()
        page.evaluate = AsyncMock(return_value={
            "framework": "next", "version": "abc123", "router": "next-router",
        })

        framework = await detect_framework(page)

        assert framework.framework == FrameworkName.NEXT
        assert framework.version == "abc123"
        assert framework.router == "next-router"

    @pytest.mark.asyncio
    async def test_unknown_framework_is_none(self):
        """Should treat unknown names as none."""
        page = MagicMock()
        page.evaluate = AsyncMock(return_value={"framework": "ember"})

        framework = await detect_framework(page)

        assert framework.framework == FrameworkName.NONE

    @pytest.mark.asyncio
    async def test_never_raises(self):
        """Should return none when evaluation fails."""
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=RuntimeError("Execution context was destroyed"))

        framework = await detect_framework(page)

        assert framework.framework == FrameworkName.NONE


def _nav_element(href, text, on_click=None):
    element = MagicMock()
    element.get_attribute = AsyncMock(return_value=href)
    element.text_content = AsyncMock(return_value=text)
    element.click = AsyncMock(side_effect=on_click)
    return element


class TestDiscoverRoutes:
    """Tests for discover_routes."""

    @pytest.mark.asyncio
    async def test_records_client_route_and_restores(self):
        """Should click navigation, record the route and go back."""
        page = MagicMock()
        page.url = "https://example.com/"

        def navigate(*args, **kwargs):
            page.url = "https://example.com/dashboard"

        def go_back(*args, **kwargs):
            page.url = "https://example.com/"

        dashboard = _nav_element("/dashboard", "Dashboard", navigate)
        logout = _nav_element("/logout", "Log out")

        page.add_init_script = AsyncMock()
        page.evaluate = AsyncMock(side_effect=[None, ["/dashboard"]])
        page.locator.return_value.all = AsyncMock(return_value=[dashboard, logout])
        page.get_by_role.return_value.all = AsyncMock(return_value=[])
        page.wait_for_load_state = AsyncMock()
        page.go_back = AsyncMock(side_effect=go_back)

        routes = await discover_routes(page, timeout_seconds=30)

        assert routes == ["https://example.com/dashboard"]
        assert page.url == "https://example.com/"
        logout.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_setup_failure_returns_empty(self):
        """Should return no routes when instrumentation fails."""
        page = MagicMock()
        page.url = "https://example.com/"
        page.add_init_script = AsyncMock(side_effect=RuntimeError("closed"))

        assert await discover_routes(page, timeout_seconds=5) == []
