"""Tests for dead-button and broken-form detection."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from afterburn.models.execution import ClickStateSnapshot
from afterburn.services.defect_detectors import (
    RequestWatcher,
    capture_click_state,
    check_dead_button,
    detect_broken_form,
    find_form_selector,
)

from conftest import make_locator, make_page


def _snapshot(url="https://example.com/", dom_size=1000, network=False):
    return ClickStateSnapshot(url=url, dom_size=dom_size, had_network_activity=network)


def _fire_request(page):
    """Invoke every handler registered for the request event."""
    for call in page.on.call_args_list:
        event, handler = call.args
        if event == "request":
            handler(MagicMock())


@pytest.fixture(autouse=True)
def fast_waits():
    with patch("afterburn.services.defect_detectors.settings") as mock_settings:
        mock_settings.STEP_TIMEOUT_MS = 100
        mock_settings.DEAD_BUTTON_WAIT_MS = 0
        yield mock_settings


class TestCheckDeadButton:
    """Tests for check_dead_button."""

    def test_change_of_exactly_100_is_dead(self):
        """Should treat a 100 character change as no change."""
        result = check_dead_button("#b", _snapshot(dom_size=1000), _snapshot(dom_size=1100))

        assert result.is_dead
        assert "No URL change" in result.reason

    def test_change_of_101_is_alive(self):
        """Should treat more than 100 characters as a reaction."""
        result = check_dead_button("#b", _snapshot(dom_size=1000), _snapshot(dom_size=1101))

        assert not result.is_dead

    def test_shrinking_dom_counts(self):
        """Should compare the absolute change."""
        result = check_dead_button("#b", _snapshot(dom_size=5000), _snapshot(dom_size=100))

        assert not result.is_dead

    def test_identical_large_page_is_dead(self):
        """Should flag a click that changed nothing."""
        result = check_dead_button("#b", _snapshot(dom_size=5000), _snapshot(dom_size=5000))

        assert result.is_dead

    def test_url_change_is_alive(self):
        """Should treat navigation as a reaction."""
        result = check_dead_button("#b", _snapshot(), _snapshot(url="https://example.com/next"))

        assert not result.is_dead

    def test_network_activity_is_alive(self):
        """Should treat a request as a reaction."""
        result = check_dead_button("#b", _snapshot(), _snapshot(network=True))

        assert not result.is_dead


class TestRequestWatcher:
    """Tests for RequestWatcher."""

    @pytest.mark.asyncio
    async def test_records_requests_and_detaches(self, page):
        """Should flag requests and remove its listener on exit."""
        async with RequestWatcher(page) as watcher:
            assert not watcher.saw_request
            _fire_request(page)

        assert watcher.saw_request
        page.remove_listener.assert_called_once_with("request", watcher._on_request)

    @pytest.mark.asyncio
    async def test_capture_click_state(self, page):
        """Should record URL and body size."""
        page.evaluate = AsyncMock(return_value=4242)

        snapshot = await capture_click_state(page, had_network_activity=True)

        assert snapshot.dom_size == 4242
        assert snapshot.url == "https://example.com/"
        assert snapshot.had_network_activity


class TestFindFormSelector:
    """Tests for find_form_selector."""

    @pytest.mark.asyncio
    async def test_returns_closest_form(self):
        """Should return the selector computed in the page."""
        locator = make_locator()
        locator.evaluate = AsyncMock(return_value="form#login")

        assert await find_form_selector(make_page(locator=locator), "#email") == "form#login"

    @pytest.mark.asyncio
    async def test_missing_element(self):
        """Should return None when the element is absent."""
        assert await find_form_selector(make_page(locator=make_locator(count=0)), "#x") is None


def _form_page(fields=None):
    locator = make_locator()

    async def evaluate(script, *args):
        if "querySelectorAll('input, select, textarea')" in script:
            return fields if fields is not None else [
                {"name": "email", "id": "", "type": "email", "label": "", "disabled": False, "readOnly": False},
            ]
        return None

    locator.evaluate = AsyncMock(side_effect=evaluate)
    return make_page(locator=locator), locator


class TestDetectBrokenForm:
    """Tests for detect_broken_form."""

    @pytest.mark.asyncio
    async def test_broken_when_nothing_happens(self):
        """Should flag a form whose submit causes no navigation or request."""
        page, locator = _form_page()

        result = await detect_broken_form(page, "form#signup")

        assert result.is_broken
        assert result.form_selector == "form#signup"
        locator.fill.assert_awaited_once()
        locator.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_request_means_working(self):
        """Should pass a form whose submit sends a request."""
        page, locator = _form_page()
        locator.click = AsyncMock(side_effect=lambda *a, **k: _fire_request(page))

        result = await detect_broken_form(page, "form#signup")

        assert not result.is_broken

    @pytest.mark.asyncio
    async def test_navigation_means_working(self):
        """Should pass a form whose submit changes the URL."""
        page, locator = _form_page()

        def navigate(*args, **kwargs):
            page.url = "https://example.com/thanks"

        locator.click = AsyncMock(side_effect=navigate)

        result = await detect_broken_form(page, "form#signup")

        assert not result.is_broken

    @pytest.mark.asyncio
    async def test_skips_disabled_fields(self):
        """Should not fill disabled or read-only fields."""
        page, locator = _form_page(fields=[
            {"name": "a", "id": "", "type": "text", "label": "", "disabled": True, "readOnly": False},
            {"name": "b", "id": "", "type": "text", "label": "", "disabled": False, "readOnly": True},
        ])

        await detect_broken_form(page, "form#x")

        locator.fill.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_form_not_found(self):
        """Should not flag a form that is not on the page."""
        page = make_page(locator=make_locator(count=0))

        result = await detect_broken_form(page, "form#gone")

        assert not result.is_broken
        assert result.reason == "Form not found"

    @pytest.mark.asyncio
    async def test_failure_is_not_broken(self):
        """Should report detection errors without flagging the form."""
        locator = make_locator()
        locator.evaluate = AsyncMock(side_effect=RuntimeError("Target closed"))
        page = make_page(locator=locator)

        result = await detect_broken_form(page, "form#x")

        assert not result.is_broken
        assert result.reason.startswith("Detection failed")


def _field(name, **overrides):
    field = {"name": name, "id": "", "type": "text", "label": "", "disabled": False, "readOnly": False}
    field.update(overrides)
    return field


def _routed_form_page(fields, controls):
    """
    A page whose form hands out a separate locator per selector.

    ``controls`` maps submit shapes to how many matches they have; every
    other selector gets a visible field locator.
    """
    form = make_locator()
    form.evaluate = AsyncMock(side_effect=lambda script, *args: fields if "querySelectorAll" in script else None)
    by_selector = {}

    def locate(selector):
        if selector not in by_selector:
            by_selector[selector] = make_locator(count=controls.get(selector, 1))
        return by_selector[selector]

    form.locator.side_effect = locate
    return make_page(locator=form), form, by_selector


class TestBrokenFormFieldsAndSubmit:
    """Tests for field selection and submit-control choice."""

    @pytest.mark.asyncio
    async def test_skips_hidden_fields(self):
        """Should leave honeypots and hidden inputs untouched."""
        fields = [
            _field("website", visible=False),
            _field("trap", hiddenAttr=True),
            _field("aria", ariaHidden=True),
            _field("token", type="hidden"),
            _field("email", type="email"),
        ]
        page, _, by_selector = _routed_form_page(fields, {})

        await detect_broken_form(page, "form#contact")

        assert '[name="website"]' not in by_selector
        assert '[name="trap"]' not in by_selector
        assert '[name="aria"]' not in by_selector
        assert '[name="token"]' not in by_selector
        by_selector['[name="email"]'].fill.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_escapes_field_names(self):
        """Should escape quotes in name attributes."""
        page, _, by_selector = _routed_form_page([_field('say "hi"')], {})

        await detect_broken_form(page, "form#x")

        assert '[name="say \\"hi\\""]' in by_selector

    @pytest.mark.asyncio
    async def test_prefers_typed_submit_over_plain_buttons(self):
        """Should click a type=submit control and never a type=button one."""
        page, _, by_selector = _routed_form_page([], {})

        await detect_broken_form(page, "form#login")

        by_selector['button[type="submit"], input[type="submit"]'].click.assert_awaited_once()
        assert "button:not([type])" not in by_selector
        assert not any('type="button"' in selector for selector in by_selector)

    @pytest.mark.asyncio
    async def test_falls_back_to_untyped_button(self):
        """Should click a button without a type when no submit control exists."""
        page, _, by_selector = _routed_form_page([], {'button[type="submit"], input[type="submit"]': 0})

        await detect_broken_form(page, "form#login")

        by_selector["button:not([type])"].click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_submits_programmatically_without_controls(self):
        """Should call form.submit() when the form has no submit control."""
        page, form, _ = _routed_form_page([], {
            'button[type="submit"], input[type="submit"]': 0,
            "button:not([type])": 0,
        })

        result = await detect_broken_form(page, "form#login")

        scripts = [call.args[0] for call in form.evaluate.await_args_list]
        assert "form => form.submit()" in scripts
        assert result.is_broken
