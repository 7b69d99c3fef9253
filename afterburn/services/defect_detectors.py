"""Dead-button and broken-form detection."""

import logging
from typing import Dict, List, Optional

from playwright.async_api import Page

from afterburn.models.discovery import FormField
from afterburn.models.execution import BrokenFormResult, ClickStateSnapshot, DeadButtonResult
from afterburn.services.element_mapper import escape_selector_text, is_hidden_field
from afterburn.services.step_handlers import StepSkipped, apply_fill, resolve_locator
from afterburn.services.test_data import is_fill_actionable, synthetic_value
from afterburn.utils.config import settings

logger = logging.getLogger(__name__)

DOM_CHANGE_THRESHOLD = 100

BODY_SIZE_JS = "() => document.body ? document.body.innerHTML.length : 0"

FORM_FIELDS_JS = """
form => Array.from(form.querySelectorAll('input, select, textarea'))
    .filter(el => el.name || el.id)
    .map(el => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        return {
            name: el.name || '',
            id: el.id || '',
            type: el.tagName.toLowerCase() === 'select' ? 'select'
                : el.tagName.toLowerCase() === 'textarea' ? 'textarea'
                : (el.getAttribute('type') || 'text').toLowerCase(),
            label: el.getAttribute('aria-label') || el.placeholder || '',
            disabled: !!el.disabled,
            readOnly: !!el.readOnly,
            hiddenAttr: el.hasAttribute('hidden'),
            ariaHidden: (el.getAttribute('aria-hidden') || '').toLowerCase() === 'true',
            visible: style.display !== 'none' && style.visibility !== 'hidden'
                && rect.width > 0 && rect.height > 0
        };
    })
"""

CLOSEST_FORM_JS = """
el => {
    const form = el.closest('form');
    if (!form) return null;
    if (form.id) return 'form#' + CSS.escape(form.id);
    if (form.getAttribute('name')) return 'form[name="' + form.getAttribute('name').replace(/"/g, '\\\\"') + '"]';
    const index = Array.from(document.querySelectorAll('form')).indexOf(form);
    return 'form >> nth=' + index;
}
"""

# Tried in order; the first shape present in the form is clicked
SUBMIT_CONTROLS = (
    'button[type="submit"], input[type="submit"]',
    "button:not([type])",
)


class RequestWatcher:
    """
    Records whether the page issued any request while the block ran.

        async with RequestWatcher(page) as watcher:
            await button.click()
        watcher.saw_request
    """

    def __init__(self, page: Page):
        self.page = page
        self.saw_request = False

    def _on_request(self, request) -> None:
        self.saw_request = True

    async def __aenter__(self):
        self.page.on("request", self._on_request)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.page.remove_listener("request", self._on_request)
        return False


async def capture_click_state(page: Page, had_network_activity: bool = False) -> ClickStateSnapshot:
    return ClickStateSnapshot(
        url=page.url,
        dom_size=await page.evaluate(BODY_SIZE_JS),
        had_network_activity=had_network_activity,
    )


def check_dead_button(
    selector: str,
    before: ClickStateSnapshot,
    after: ClickStateSnapshot,
) -> DeadButtonResult:
    """
    A click is dead when the URL is unchanged, the body length moved by at
    most 100 characters, and no request was sent.
    """
    url_changed = before.url != after.url
    dom_changed = abs(after.dom_size - before.dom_size) > DOM_CHANGE_THRESHOLD
    network = before.had_network_activity or after.had_network_activity

    if not url_changed and not dom_changed and not network:
        return DeadButtonResult(
            selector=selector,
            is_dead=True,
            reason="No URL change, DOM change, or network activity detected",
        )
    return DeadButtonResult(selector=selector, is_dead=False)


async def find_form_selector(page: Page, selector: str) -> Optional[str]:
    """Selector for the nearest ancestor form of the element, or None."""
    try:
        locator = resolve_locator(page, selector)
        if await locator.count() == 0:
            return None
        return await locator.evaluate(CLOSEST_FORM_JS)
    except Exception as e:
        logger.debug(f"Could not resolve form for {selector}: {e}")
        return None


def _as_form_field(info: Dict) -> FormField:
    field_type = info.get("type") or "text"
    return FormField(
        type=field_type,
        name=info.get("name") or info.get("id") or "",
        label=info.get("label") or "",
        disabled=bool(info.get("disabled")),
        read_only=bool(info.get("readOnly")),
        hidden=is_hidden_field(
            field_type,
            info.get("hiddenAttr", False),
            info.get("ariaHidden", False),
            info.get("visible", True),
        ),
    )


async def _fill_form(page: Page, form_selector: str, fields: List[Dict]) -> int:
    """Fill every actionable field; hidden, disabled and read-only ones are left alone."""
    form = page.locator(form_selector).first
    filled = 0

    for info in fields:
        field = _as_form_field(info)
        if not is_fill_actionable(field):
            continue

        if info.get("name"):
            locator = form.locator(f'[name="{escape_selector_text(info["name"])}"]').first
        else:
            locator = form.locator(f'[id="{escape_selector_text(info["id"])}"]').first

        value = synthetic_value(field.type, field.name, field.label)
        try:
            await apply_fill(locator, field.type, value)
            filled += 1
        except StepSkipped:
            continue
        except Exception as e:
            logger.debug(f"Could not fill {field.name} in {form_selector}: {e}")

    return filled


async def _submit(form) -> None:
    for shape in SUBMIT_CONTROLS:
        control = form.locator(shape).first
        if await control.count() > 0:
            await control.click(timeout=settings.STEP_TIMEOUT_MS)
            return
    await form.evaluate("form => form.submit()")


async def detect_broken_form(page: Page, form_selector: str) -> BrokenFormResult:
    """
    Fill a form with synthetic data, submit it, and flag it broken when
    neither the URL changed nor any request fired.
    """
    try:
        form = page.locator(form_selector).first
        if await form.count() == 0:
            return BrokenFormResult(form_selector=form_selector, is_broken=False, reason="Form not found")

        fields = await form.evaluate(FORM_FIELDS_JS)
        filled = await _fill_form(page, form_selector, fields)

        url_before = page.url
        async with RequestWatcher(page) as watcher:
            await _submit(form)
            await page.wait_for_timeout(settings.DEAD_BUTTON_WAIT_MS)

        if page.url == url_before and not watcher.saw_request:
            logger.info(f"Broken form detected: {form_selector} ({filled} fields filled)")
            return BrokenFormResult(
                form_selector=form_selector,
                is_broken=True,
                reason="Form submission caused no navigation or network request",
            )
        return BrokenFormResult(form_selector=form_selector, is_broken=False)
    except Exception as e:
        return BrokenFormResult(
            form_selector=form_selector,
            is_broken=False,
            reason=f"Detection failed: {str(e)[:200]}",
        )
