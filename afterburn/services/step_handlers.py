"""
Step handlers for workflow execution.

``execute_step`` never raises: every outcome becomes a StepResult with
status passed, failed or skipped.
"""

import logging
import re
import time
from typing import Dict, List, Optional, Union
from urllib.parse import urljoin, urlsplit

from playwright.async_api import Locator, Page

from afterburn.models.discovery import WorkflowStep
from afterburn.models.execution import StepResult, StepStatus
from afterburn.services.test_data import fill_strategy, wants_checked
from afterburn.utils.config import settings
from afterburn.utils.guards import (
    AfterburnError,
    GuardError,
    is_allowed_navigation_host,
    sanitize_value,
    validate_navigation_url,
    validate_selector,
    validate_url,
)
from afterburn.utils.logging import redact_sensitive_data

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500

CLOSE_SELECTORS = [
    '[aria-label*="close" i]',
    '[aria-label*="dismiss" i]',
    'button.close',
    'button.modal-close',
    '.modal-close-button',
    '[data-dismiss="modal"]',
]

SUBMIT_SELECTOR_MARKERS = ('[type="submit"]', "[type='submit']", "button:not([type])")

DISABLED_ERROR_MARKERS = (
    "element is not enabled",
    "element is disabled",
    "disabled:pointer-events-none",
)

DESCRIBE_FIELD_JS = """
el => ({
    tag: el.tagName.toLowerCase(),
    type: (el.getAttribute('type') || '').toLowerCase(),
    disabled: !!el.disabled,
    readOnly: !!el.readOnly
})
"""

LIST_OPTIONS_JS = """
el => Array.from(el.options || []).map(o => ({
    value: o.value,
    label: (o.label || o.textContent || '').trim(),
    disabled: o.disabled
}))
"""

_LEGACY_SELECTOR = re.compile(
    r"^\s*(getByRole|getByLabel|getByText|getByPlaceholder)\((.*)\)\s*$",
    re.DOTALL,
)
_QUOTED = re.compile(r"""(['"])((?:\\.|(?!\1).)*)\1""", re.DOTALL)
_ROLE_NAME = re.compile(r"""name\s*:\s*(['"])((?:\\.|(?!\1).)*)\1""", re.DOTALL)
_NAME_FRAGMENT = re.compile(r"""\[name=(['"]?)([^'"\]]+)\1\]""")
_ID_FRAGMENT = re.compile(r"""\[id=(['"]?)([^'"\]]+)\1\]|#([A-Za-z_][\w-]*)""")


class StepSkipped(Exception):
    """Raised inside a handler when the step cannot apply to the page."""


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def is_submit_selector(selector: str) -> bool:
    return any(marker in selector for marker in SUBMIT_SELECTOR_MARKERS)


def is_disabled_button_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in DISABLED_ERROR_MARKERS)


def resolve_locator(page: Page, selector: str) -> Locator:
    """
    Turn a step selector into a Locator.

    Strings such as ``getByLabel('Email')`` or
    ``getByRole('button', { name: 'Save' })`` map to the matching
    Playwright locator; anything else is treated as a CSS selector.
    """
    match = _LEGACY_SELECTOR.match(selector)
    if not match:
        return page.locator(selector).first

    method, args = match.groups()
    first_arg = _QUOTED.search(args)
    text = _unescape(first_arg.group(2)) if first_arg else ""

    if method == "getByLabel":
        return page.get_by_label(text).first
    if method == "getByText":
        return page.get_by_text(text).first
    if method == "getByPlaceholder":
        return page.get_by_placeholder(text).first

    name_match = _ROLE_NAME.search(args)
    if name_match:
        return page.get_by_role(text, name=_unescape(name_match.group(2))).first
    return page.get_by_role(text).first


def infer_field_locator(page: Page, selector: str) -> Optional[Locator]:
    """Fallback locator from a ``[name=...]`` or ``#id`` fragment of the selector."""
    name_match = _NAME_FRAGMENT.search(selector)
    if name_match:
        return page.locator(f'[name="{name_match.group(2)}"]').first

    id_match = _ID_FRAGMENT.search(selector)
    if id_match:
        element_id = id_match.group(2) or id_match.group(3)
        return page.locator(f'[id="{element_id}"]').first

    return None


async def dismiss_modal_if_present(page: Page) -> None:
    """Click a visible close button, else press Escape. Best-effort."""
    try:
        for selector in CLOSE_SELECTORS:
            close_button = page.locator(selector).first
            if await close_button.is_visible():
                await close_button.click(timeout=1000)
                return

        await page.keyboard.press("Escape")
    except Exception as e:
        logger.debug(f"Modal dismissal skipped: {e}")


async def _select_best_option(locator: Locator, value: Optional[str], timeout: int) -> None:
    options: List[Dict] = await locator.evaluate(LIST_OPTIONS_JS)
    enabled = [option for option in options if not option.get("disabled")]

    wanted = (value or "").strip().lower()
    if wanted:
        for option in enabled:
            if option["value"].lower() == wanted or option["label"].lower() == wanted:
                await locator.select_option(value=option["value"], timeout=timeout)
                return

    for option in enabled:
        if option["value"]:
            await locator.select_option(value=option["value"], timeout=timeout)
            return

    raise StepSkipped("Select has no usable option")


async def apply_fill(
    locator: Locator,
    field_type: Optional[str],
    value: Union[bool, str, None],
    timeout: Optional[int] = None,
) -> None:
    """
    Fill one field according to its type.

    Checkboxes and radios are checked unless the value is falsy, selects
    pick the closest option, everything else gets text.

    Raises:
        StepSkipped: If the field type cannot take input
    """
    timeout = timeout or settings.STEP_TIMEOUT_MS
    strategy = fill_strategy(field_type)

    if strategy is None:
        raise StepSkipped(f'Field type "{field_type}" does not accept input')

    if strategy == "check":
        if wants_checked(value):
            await locator.check(timeout=timeout)
        elif (field_type or "").lower() == "radio":
            raise StepSkipped("Radio buttons cannot be unchecked")
        else:
            await locator.uncheck(timeout=timeout)
        return

    if strategy == "select":
        await _select_best_option(locator, None if isinstance(value, bool) else value, timeout)
        return

    text = "" if isinstance(value, bool) or value is None else value
    await locator.fill(text, timeout=timeout)


async def _describe_field(locator: Locator) -> Dict:
    info = await locator.evaluate(DESCRIBE_FIELD_JS)
    tag = info.get("tag")
    if tag in ("select", "textarea"):
        info["type"] = tag
    else:
        info["type"] = info.get("type") or "text"
    return info


async def _navigate(page: Page, step, base_url: Optional[str]) -> None:
    target = step.value or step.selector

    if base_url:
        target = validate_navigation_url(urljoin(base_url, target), base_url)
    else:
        target = validate_url(target)

    await page.goto(target, wait_until="domcontentloaded", timeout=settings.NAVIGATION_TIMEOUT_MS)

    if base_url:
        landed_host = urlsplit(page.url).hostname
        base_host = urlsplit(base_url).hostname
        if not is_allowed_navigation_host(landed_host, base_host):
            raise GuardError(
                f'Navigation ended on "{landed_host}", outside base host "{base_host}"'
            )


async def _click(page: Page, step, base_url: Optional[str]) -> None:
    locator = resolve_locator(page, step.selector)

    if is_submit_selector(step.selector) and await locator.count() == 0:
        raise StepSkipped(f"Skipping submit click: no submit control matches {step.selector}")

    try:
        await locator.click(timeout=settings.STEP_TIMEOUT_MS)
    except Exception as e:
        if is_disabled_button_error(str(e)):
            raise StepSkipped(f"Skipping click on disabled control: {step.selector}") from e
        raise


async def _fill(page: Page, step, base_url: Optional[str]) -> None:
    locator = resolve_locator(page, step.selector)

    if await locator.count() == 0:
        inferred = infer_field_locator(page, step.selector)
        if inferred is None or await inferred.count() == 0:
            raise AfterburnError(f"No field matches {step.selector}")
        locator = inferred

    info = await _describe_field(locator)
    if info.get("disabled") or info.get("readOnly"):
        raise StepSkipped(f"Field {step.selector} is disabled or read-only")

    await apply_fill(locator, info["type"], step.value)


async def _select(page: Page, step, base_url: Optional[str]) -> None:
    locator = resolve_locator(page, step.selector)
    await locator.select_option(step.value or "", timeout=settings.STEP_TIMEOUT_MS)


async def _wait(page: Page, step, base_url: Optional[str]) -> None:
    locator = resolve_locator(page, step.selector)
    await locator.wait_for(state="visible", timeout=settings.STEP_TIMEOUT_MS)


async def _expect(page: Page, step, base_url: Optional[str]) -> None:
    locator = resolve_locator(page, step.selector)
    if not await locator.is_visible():
        raise AfterburnError(f"Expected element not visible: {step.selector}")


STEP_HANDLERS = {
    "navigate": _navigate,
    "click": _click,
    "fill": _fill,
    "select": _select,
    "wait": _wait,
    "expect": _expect,
}


def _sanitized(step: WorkflowStep) -> WorkflowStep:
    value = getattr(step, "value", None)
    if isinstance(value, str):
        return step.model_copy(update={"value": sanitize_value(value)})
    return step


async def execute_step(
    page: Page,
    step: WorkflowStep,
    step_index: int,
    base_url: Optional[str] = None,
) -> StepResult:
    """Run one step against ``page`` and report how it went."""
    started = time.monotonic()

    def result(status: StepStatus, error: Optional[str] = None) -> StepResult:
        return StepResult(
            step_index=step_index,
            action=step.action,
            selector=step.selector,
            status=status,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )

    try:
        await dismiss_modal_if_present(page)
        validate_selector(step.selector)

        handler = STEP_HANDLERS[step.action]
        await handler(page, _sanitized(step), base_url)
        return result(StepStatus.PASSED)
    except StepSkipped as e:
        logger.info(f"Step {step_index} ({step.action}) skipped: {e}")
        return result(StepStatus.SKIPPED, str(e)[:MAX_ERROR_LENGTH])
    except Exception as e:
        message = redact_sensitive_data(str(e)) or type(e).__name__
        logger.warning(f"Step {step_index} ({step.action}) failed: {message[:200]}")
        return result(StepStatus.FAILED, message[:MAX_ERROR_LENGTH])
