"""Inventory of interactive elements, including content hidden behind toggles."""

import logging
import re
from typing import Dict, List, Optional, Set, Tuple

from playwright.async_api import Locator, Page

from afterburn.models.discovery import (
    ElementType,
    FormField,
    FormInfo,
    InteractiveElement,
    LinkInfo,
    PartialPageData,
)
from afterburn.services.test_data import is_fill_actionable
from afterburn.utils.config import settings
from afterburn.utils.urls import get_hostname, resolve_url

logger = logging.getLogger(__name__)

DESTRUCTIVE_KEYWORDS = [
    "delete", "remove", "destroy", "reset", "clear", "drop", "purge",
    "revoke", "terminate", "unsubscribe", "cancel-account", "close-account",
    "logout", "log out", "sign out",
]

TRIGGER_SELECTORS = [
    'button[aria-expanded]',
    'button[aria-haspopup]',
    'button[data-toggle]',
    'button[data-bs-toggle]',
    '[class*="hamburger"]',
    '[class*="menu-toggle"]',
    '[class*="navbar-toggler"]',
]

TRIGGER_TEXTS = ["menu", "nav", "more", "show", "open", "expand"]

REVEAL_CONTAINER_SELECTOR = ", ".join([
    '[role="dialog"]',
    '[role="menu"]',
    '.modal',
    '.dropdown-menu',
    '.nav-menu',
    '[aria-hidden="false"]',
])

MENU_SELECTOR = 'nav, [role="navigation"], [role="menubar"]'

NAV_HOVER_SELECTOR = 'nav li, [role="menubar"] > *'

DROPDOWN_SELECTOR = '.dropdown-menu, [role="menu"]'

INTERACTIVE_ROLES = [
    ElementType.TAB,
    ElementType.DIALOG,
    ElementType.COMBOBOX,
    ElementType.LISTBOX,
]

FIELD_INFO_JS = """
el => ({
    tag: el.tagName.toLowerCase(),
    type: (el.getAttribute('type') || '').toLowerCase(),
    name: el.getAttribute('name') || '',
    id: el.getAttribute('id') || '',
    required: el.hasAttribute('required'),
    placeholder: el.getAttribute('placeholder') || '',
    disabled: el.hasAttribute('disabled'),
    readOnly: el.hasAttribute('readonly'),
    hiddenAttr: el.hasAttribute('hidden'),
    ariaHidden: (el.getAttribute('aria-hidden') || '').toLowerCase() === 'true',
    ariaLabel: el.getAttribute('aria-label') || ''
})
"""

COUNT_VISIBLE_JS = """
selector => Array.from(document.querySelectorAll(selector)).filter(el => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    return style.display !== 'none' && style.visibility !== 'hidden'
        && rect.width > 0 && rect.height > 0;
}).length
"""

_CSS_IDENTIFIER = re.compile(r'^[A-Za-z_][\w-]*$')


def escape_selector_text(value: str) -> str:
    """Escape backslashes and double quotes for use inside "..." in a selector."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def normalize_label(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def is_destructive_action(text: str) -> bool:
    lowered = text.lower().strip()
    return any(keyword in lowered for keyword in DESTRUCTIVE_KEYWORDS)


def is_hidden_field(field_type: str, hidden_attr: bool, aria_hidden: bool, visible: bool) -> bool:
    """type=hidden, the hidden attribute, aria-hidden or not rendered."""
    return field_type == "hidden" or bool(hidden_attr) or bool(aria_hidden) or not visible


def form_selector(index: int, form_id: Optional[str], form_name: Optional[str]) -> str:
    if form_id:
        if _CSS_IDENTIFIER.match(form_id):
            return f"form#{form_id}"
        return f'form[id="{escape_selector_text(form_id)}"]'
    if form_name:
        return f'form[name="{escape_selector_text(form_name)}"]'
    return f"form:nth-of-type({index + 1})"


def button_selector(index: int, text: str, aria_label: str) -> str:
    if text:
        return f'button:has-text("{escape_selector_text(text)}")'
    if aria_label:
        return f'button[aria-label="{escape_selector_text(aria_label)}"]'
    return f"role=button >> nth={index}"


class RestoreLadder:
    """
    Bounded recovery after a reveal trigger: re-click, Escape, reload.

    Each rung is attempted in order until the page is back to its baseline
    (no more visible overlay containers than before, trigger not expanded).
    If every rung fails the caller stops triggering.
    """

    RUNGS = ("reclick", "escape", "reload")

    def __init__(self, page: Page, baseline_overlays: int):
        self.page = page
        self.baseline_overlays = baseline_overlays

    async def is_restored(self, trigger: Locator) -> bool:
        try:
            overlays = await self.page.evaluate(COUNT_VISIBLE_JS, REVEAL_CONTAINER_SELECTOR)
        except Exception:
            return False

        if overlays > self.baseline_overlays:
            return False

        try:
            expanded = await trigger.get_attribute("aria-expanded", timeout=1000)
        except Exception:
            # Trigger gone from the DOM, nothing left open by it
            return True

        return expanded != "true"

    async def _apply(self, rung: str, trigger: Locator) -> None:
        if rung == "reclick":
            await trigger.click(timeout=1000)
            await self.page.wait_for_timeout(300)
        elif rung == "escape":
            await self.page.keyboard.press("Escape")
            await self.page.wait_for_timeout(300)
        else:
            await self.page.reload(timeout=5000, wait_until="domcontentloaded")

    async def restore(self, trigger: Locator) -> Optional[str]:
        """
        Bring the page back to baseline.

        Returns:
            "already" if nothing had to be undone, the name of the rung that
            worked, or None when the page could not be restored
        """
        if await self.is_restored(trigger):
            return "already"

        for rung in self.RUNGS:
            try:
                await self._apply(rung, trigger)
            except Exception as e:
                logger.debug(f"Restore rung '{rung}' failed: {e}")
                continue

            # A successful reload resets state by definition
            if rung == "reload" or await self.is_restored(trigger):
                return rung

        return None


class ElementMapper:
    """Discovers forms, buttons, links, menus and ARIA widgets on a page."""

    def __init__(self, trigger_limit: Optional[int] = None):
        self.trigger_limit = trigger_limit or settings.HIDDEN_TRIGGER_LIMIT

    async def discover_visible(self, page: Page, page_url: str) -> PartialPageData:
        """Inventory of the page as it currently renders."""
        return PartialPageData(
            forms=await self._discover_forms(page, page_url),
            buttons=await self._discover_buttons(page),
            links=await self._discover_links(page, page_url),
            menus=await self._discover_menus(page),
            other_interactive=await self._discover_roles(page),
        )

    async def _discover_forms(self, page: Page, page_url: str) -> List[FormInfo]:
        forms = []
        for index, form in enumerate(await page.locator("form").all()):
            try:
                action = await form.get_attribute("action") or ""
                method = (await form.get_attribute("method") or "GET").upper()
                selector = form_selector(
                    index,
                    await form.get_attribute("id"),
                    await form.get_attribute("name"),
                )

                fields = []
                for field in await form.locator("input, textarea, select").all():
                    form_field = await self._describe_field(page, field)
                    if form_field is not None:
                        fields.append(form_field)

                forms.append(FormInfo(
                    action=(resolve_url(action, page_url) or page_url) if action else page_url,
                    method=method,
                    selector=selector,
                    fields=fields,
                ))
            except Exception as e:
                logger.debug(f"Skipping form {index} on {page_url}: {e}")
        return forms

    async def _describe_field(self, page: Page, field: Locator) -> Optional[FormField]:
        try:
            info = await field.evaluate(FIELD_INFO_JS)
        except Exception as e:
            logger.debug(f"Could not read field: {e}")
            return None

        if info["tag"] in ("select", "textarea"):
            field_type = info["tag"]
        else:
            field_type = info["type"] or "text"

        try:
            visible = await field.is_visible()
        except Exception:
            visible = True

        hidden = is_hidden_field(field_type, info["hiddenAttr"], info["ariaHidden"], visible)

        return FormField(
            type=field_type,
            name=(info["name"] or info["id"]).strip(),
            label=await self._resolve_label(page, field, info),
            required=info["required"],
            placeholder=normalize_label(info["placeholder"]) or None,
            disabled=info["disabled"],
            read_only=info["readOnly"],
            hidden=hidden,
        )

    async def _resolve_label(self, page: Page, field: Locator, info: Dict) -> str:
        """aria-label, then <label for=id>, then an ancestor <label>."""
        label = normalize_label(info.get("ariaLabel"))
        if label:
            return label

        if info.get("id"):
            try:
                label_locator = page.locator(f'label[for="{escape_selector_text(info["id"])}"]').first
                if await label_locator.count():
                    label = normalize_label(await label_locator.text_content(timeout=1000))
            except Exception:
                label = ""
            if label:
                return label

        try:
            parent = field.locator("xpath=ancestor::label[1]").first
            if await parent.count():
                return normalize_label(await parent.text_content(timeout=1000))
        except Exception as e:
            logger.debug(f"No ancestor label: {e}")
        return ""

    async def _discover_buttons(self, page: Page) -> List[InteractiveElement]:
        buttons = []
        for index, button in enumerate(await page.get_by_role("button").all()):
            try:
                text = (await button.text_content() or "").strip()
                aria_label = await button.get_attribute("aria-label") or ""
                buttons.append(InteractiveElement(
                    type=ElementType.BUTTON,
                    selector=button_selector(index, text, aria_label),
                    text=text or aria_label,
                    visible=await button.is_visible(),
                    attributes={
                        "type": await button.get_attribute("type") or "button",
                        "disabled": str(await button.get_attribute("disabled") is not None).lower(),
                    },
                ))
            except Exception as e:
                logger.debug(f"Skipping button {index}: {e}")
        return buttons

    async def _discover_links(self, page: Page, page_url: str) -> List[LinkInfo]:
        page_hostname = get_hostname(page_url)
        links = []
        seen: Set[str] = set()
        for link in await page.locator("a[href]").all():
            try:
                href = await link.get_attribute("href")
                absolute = resolve_url(href, page_url) if href else None
                if not absolute or absolute in seen:
                    continue
                seen.add(absolute)
                links.append(LinkInfo(
                    href=absolute,
                    text=(await link.text_content() or "").strip(),
                    is_internal=get_hostname(absolute) == page_hostname,
                ))
            except Exception as e:
                logger.debug(f"Skipping link: {e}")
        return links

    async def _discover_menus(self, page: Page) -> List[InteractiveElement]:
        menus = []
        for index, nav in enumerate(await page.locator(MENU_SELECTOR).all()):
            try:
                text = (await nav.text_content() or "").strip()
                aria_label = await nav.get_attribute("aria-label") or ""
                menus.append(InteractiveElement(
                    type=ElementType.MENU,
                    selector=f"{MENU_SELECTOR} >> nth={index}",
                    text=aria_label or text[:50] or f"Menu {index + 1}",
                    visible=await nav.is_visible(),
                ))
            except Exception as e:
                logger.debug(f"Skipping menu {index}: {e}")
        return menus

    async def _discover_roles(self, page: Page) -> List[InteractiveElement]:
        elements = []
        for role in INTERACTIVE_ROLES:
            for index, element in enumerate(await page.locator(f'[role="{role.value}"]').all()):
                try:
                    text = (await element.text_content() or "").strip()
                    aria_label = await element.get_attribute("aria-label") or ""
                    elements.append(InteractiveElement(
                        type=role,
                        selector=f'[role="{role.value}"] >> nth={index}',
                        text=aria_label or text[:50] or f"{role.value} {index + 1}",
                        visible=await element.is_visible(),
                        attributes={"role": role.value},
                    ))
                except Exception as e:
                    logger.debug(f"Skipping {role.value} {index}: {e}")
        return elements

    async def _collect_triggers(self, page: Page) -> List[Locator]:
        triggers: List[Locator] = []
        for selector in TRIGGER_SELECTORS:
            triggers.extend(await page.locator(selector).all())

        for button in await page.get_by_role("button").all():
            try:
                text = (await button.text_content() or "").lower()
            except Exception:
                continue
            if any(word in text for word in TRIGGER_TEXTS):
                triggers.append(button)

        return triggers[:self.trigger_limit]

    async def discover_hidden(self, page: Page, page_url: str) -> PartialPageData:
        """
        Elements that only appear after toggles, menus or modals open.

        Only elements absent (or invisible) in the initial inventory are
        returned. Best effort: any failure yields whatever was found so far.
        """
        found = _NewElementCollector()

        try:
            baseline = await self.discover_visible(page, page_url)
            found.set_baseline(baseline)
            triggers = await self._collect_triggers(page)
        except Exception as e:
            logger.debug(f"Hidden element discovery setup failed on {page_url}: {e}")
            return found.result()

        restored = True
        for trigger in triggers:
            ladder = None
            try:
                if not await trigger.is_visible():
                    continue

                label = f"{await trigger.text_content() or ''} {await trigger.get_attribute('aria-label') or ''}"
                if is_destructive_action(label):
                    continue

                overlays_before = await page.evaluate(COUNT_VISIBLE_JS, REVEAL_CONTAINER_SELECTOR)
                ladder = RestoreLadder(page, overlays_before)

                await trigger.click(timeout=2000)
                await page.wait_for_timeout(500)

                overlays_after = await page.evaluate(COUNT_VISIBLE_JS, REVEAL_CONTAINER_SELECTOR)
                if overlays_after > overlays_before:
                    found.add(await self.discover_visible(page, page_url))
            except Exception as e:
                logger.debug(f"Reveal trigger failed on {page_url}: {e}")

            if ladder is None:
                continue

            outcome = await ladder.restore(trigger)
            if outcome is None:
                logger.info(f"Could not restore {page_url} after trigger, stopping hidden discovery")
                restored = False
                break

        if restored:
            await self._hover_nav_items(page, page_url, found)

        result = found.result()
        logger.debug(
            f"Hidden discovery on {page_url}: {len(result.buttons)} buttons, "
            f"{len(result.links)} links, {len(result.forms)} forms"
        )
        return result

    async def _hover_nav_items(self, page: Page, page_url: str, found: "_NewElementCollector") -> None:
        """Hover navigation items and collect dropdowns that open on hover."""
        try:
            items = await page.locator(NAV_HOVER_SELECTOR).all()
        except Exception as e:
            logger.debug(f"Could not list nav items on {page_url}: {e}")
            return

        for item in items[:self.trigger_limit]:
            try:
                if not await item.is_visible():
                    continue

                await item.hover(timeout=1000)
                await page.wait_for_timeout(300)

                for dropdown in await page.locator(DROPDOWN_SELECTOR).all():
                    if await dropdown.is_visible():
                        found.add(await self.discover_visible(page, page_url))
                        break
            except Exception as e:
                logger.debug(f"Hover on nav item failed on {page_url}: {e}")

class _NewElementCollector:
    """
    Keeps elements that were not visible in the baseline inventory.

    A form already present in the baseline counts as new once it exposes
    fillable fields that were hidden before, e.g. a login form in a modal.
    """

    KEYS: Tuple[Tuple[str, str], ...] = (
        ("forms", "selector"),
        ("buttons", "selector"),
        ("links", "href"),
        ("menus", "selector"),
        ("other_interactive", "selector"),
    )

    def __init__(self):
        self._baseline: Dict[str, Set[str]] = {name: set() for name, _ in self.KEYS}
        self._baseline_fillable: Dict[str, Set[str]] = {}
        self._found: Dict[str, list] = {name: [] for name, _ in self.KEYS}
        self._seen: Dict[str, Set[str]] = {name: set() for name, _ in self.KEYS}

    @staticmethod
    def _was_visible(item) -> bool:
        return getattr(item, "visible", True)

    @staticmethod
    def _fillable(form: FormInfo) -> Set[str]:
        return {field.name or field.label for field in form.fields if is_fill_actionable(field)}

    def set_baseline(self, inventory: PartialPageData) -> None:
        for name, key in self.KEYS:
            for item in getattr(inventory, name) or []:
                if name == "forms":
                    self._baseline_fillable[item.selector] = self._fillable(item)
                    self._baseline[name].add(item.selector)
                elif self._was_visible(item):
                    self._baseline[name].add(getattr(item, key))

    def _is_new(self, name: str, marker: str, item) -> bool:
        if marker in self._seen[name]:
            return False
        if name == "forms":
            if marker not in self._baseline[name]:
                return True
            return bool(self._fillable(item) - self._baseline_fillable.get(marker, set()))
        return marker not in self._baseline[name] and self._was_visible(item)

    def add(self, inventory: PartialPageData) -> None:
        for name, key in self.KEYS:
            for item in getattr(inventory, name) or []:
                marker = getattr(item, key)
                if not self._is_new(name, marker, item):
                    continue
                self._seen[name].add(marker)
                self._found[name].append(item)

    def result(self) -> PartialPageData:
        return PartialPageData(**self._found)


_element_mapper = ElementMapper()


def get_element_mapper() -> ElementMapper:
    """Get global element mapper instance."""
    return _element_mapper
