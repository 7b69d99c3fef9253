"""Workflow plans derived from the sitemap without any planner service."""

import logging
import re
from typing import List, Optional
from urllib.parse import urlsplit

from afterburn.models.discovery import (
    PRIORITY_ORDER,
    ClickStep,
    ExpectStep,
    FillStep,
    FormField,
    FormInfo,
    InteractiveElement,
    NavigateStep,
    SitemapNode,
    WorkflowPlan,
    WorkflowPriority,
    WorkflowSource,
)
from afterburn.services.element_mapper import escape_selector_text, is_destructive_action
from afterburn.services.sitemap_builder import iter_nodes
from afterburn.services.test_data import (
    is_fill_actionable,
    normalize_whitespace,
    synthetic_value,
)

logger = logging.getLogger(__name__)

MAX_WORKFLOWS = 8
MAX_BUTTON_PLANS_PER_PAGE = 3
MAX_NAVIGATION_PAGES = 5
MAX_NAVIGATION_DEPTH = 2

CRITICAL_FORM_KINDS = ("login", "signup", "search")

_SIGNUP_FIELDS = re.compile(r"\b(first.?name|last.?name|username|user.?name|full.?name)\b")
_SIGNUP_URL = re.compile(r"sign.?up|register|signup|create.?account|join")
_LOGIN_ACTION = re.compile(r"\b(sign.?in|signin|log.?in|login)\b")
_LOGIN_PATH = re.compile(r"/(sign.?in|signin|log.?in|login)\b")


def submit_selector(form_selector: str) -> str:
    """Common submit control shapes scoped to one form."""
    return (
        f'{form_selector} button[type="submit"], '
        f'{form_selector} input[type="submit"], '
        f'{form_selector} button:not([type])'
    )


def escape_step_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def field_selector(form: FormInfo, field: FormField) -> str:
    if field.name:
        return f'{form.selector} [name="{escape_selector_text(field.name)}"]'

    label = normalize_whitespace(field.label)
    if label:
        return f"getByLabel('{escape_step_string(label)}')"

    field_type = (field.type or "text").lower()
    if field_type == "textarea":
        return f"{form.selector} textarea"
    if field_type in ("select", "select-one"):
        return f"{form.selector} select"
    return f'{form.selector} input[type="{escape_selector_text(field_type)}"]'


def _url_path(url: str) -> str:
    parts = urlsplit(url or "")
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


def classify_form(form: FormInfo, page_url: str = "") -> str:
    """
    Guess what a form is for: login, signup, search, contact, subscribe or general.

    A login-looking action or page path wins over weaker signup signals
    such as a stray "confirm" field.
    """
    field_hints = " ".join(
        f"{f.type} {f.name} {f.label}".lower() for f in form.fields
    )
    action = (form.action or "").lower()
    page_path = _url_path(page_url).lower()

    has_signup_fields = bool(_SIGNUP_FIELDS.search(field_hints))
    has_signup_url = bool(_SIGNUP_URL.search(_url_path(action)) or _SIGNUP_URL.search(page_path))
    has_login_url = bool(_LOGIN_ACTION.search(_url_path(action)) or _LOGIN_PATH.search(page_path))

    if "password" in field_hints and "email" in field_hints:
        if has_login_url and not has_signup_url:
            return "login"
        if "confirm" in field_hints or "register" in field_hints or has_signup_fields or has_signup_url:
            return "signup"
        return "login"

    if "search" in action or "search" in field_hints or "query" in field_hints:
        return "search"
    if "contact" in action or "message" in field_hints or "subject" in field_hints:
        return "contact"
    if "subscribe" in action or "newsletter" in field_hints:
        return "subscribe"

    if "password" in field_hints:
        if has_login_url and not has_signup_url:
            return "login"
        if has_signup_fields or has_signup_url:
            return "signup"
        return "login"

    return "general"


def _page_score(node: SitemapNode) -> int:
    return len(node.page_data.forms) * 10 + len(node.page_data.buttons) * 2


def collect_pages(sitemap: SitemapNode) -> List[SitemapNode]:
    """All nodes, richest first, then shallowest."""
    return sorted(iter_nodes(sitemap), key=lambda node: (-_page_score(node), node.depth))


def _path_suffix(node: SitemapNode) -> str:
    path = node.path or urlsplit(node.url).path
    if "?" not in path and len(path) > 1:
        path = path.rstrip("/") or "/"
    return f" ({path})" if path and path != "/" else ""


def build_form_workflow(page: SitemapNode, form: FormInfo) -> Optional[WorkflowPlan]:
    fillable = [field for field in form.fields if is_fill_actionable(field)]
    if not fillable:
        return None

    title = page.page_data.title
    steps = [NavigateStep(
        selector=page.url,
        expected_result=f'Page "{title}" loads successfully',
        confidence=1.0,
    )]

    for field in fillable:
        label = normalize_whitespace(field.label or field.name or field.type or "field")
        value = synthetic_value(field.type, field.name, field.label)
        steps.append(FillStep(
            selector=field_selector(form, field),
            value="" if value is None else value,
            expected_result=f'Field "{label}" accepts input',
            confidence=0.7,
        ))

    steps.append(ClickStep(
        selector=submit_selector(form.selector),
        expected_result="Form submits without errors",
        confidence=0.6,
    ))
    steps.append(ExpectStep(
        selector="body",
        expected_result="Page does not show error messages after submission",
        confidence=0.7,
    ))

    kind = classify_form(form, page.url)
    priority = (
        WorkflowPriority.CRITICAL if kind in CRITICAL_FORM_KINDS
        else WorkflowPriority.IMPORTANT
    )

    return WorkflowPlan(
        workflow_name=f"{kind.capitalize()} Form{_path_suffix(page)}",
        description=f"Fill and submit the {kind} form on {title} to verify it works without errors",
        steps=steps,
        priority=priority,
        estimated_duration=10 + len(fillable) * 2,
        source=WorkflowSource.AUTO_DISCOVERED,
    )


def build_button_workflow(page: SitemapNode, button: InteractiveElement) -> Optional[WorkflowPlan]:
    text = button.text.strip()
    if not text:
        return None

    title = page.page_data.title
    return WorkflowPlan(
        workflow_name=f'Click "{text}" Button',
        description=f'Click the "{text}" button on {title} and verify no errors occur',
        steps=[
            NavigateStep(
                selector=page.url,
                expected_result=f'Page "{title}" loads successfully',
                confidence=1.0,
            ),
            ClickStep(
                selector=button.selector,
                expected_result=f'Button "{text}" responds to click without errors',
                confidence=0.7,
            ),
            ExpectStep(
                selector="body",
                expected_result="Page does not show error state after button click",
                confidence=0.7,
            ),
        ],
        priority=WorkflowPriority.NICE_TO_HAVE,
        estimated_duration=8,
        source=WorkflowSource.AUTO_DISCOVERED,
    )


def build_navigation_workflow(pages: List[SitemapNode]) -> Optional[WorkflowPlan]:
    targets = [page for page in pages if page.depth <= MAX_NAVIGATION_DEPTH][:MAX_NAVIGATION_PAGES]
    if not targets:
        return None

    return WorkflowPlan(
        workflow_name="Core Page Navigation",
        description=f"Navigate to {len(targets)} key pages and verify they load without errors",
        steps=[
            NavigateStep(
                selector=page.url,
                expected_result=f'"{page.page_data.title}" loads without errors',
                confidence=1.0,
            )
            for page in targets
        ],
        priority=WorkflowPriority.IMPORTANT,
        estimated_duration=len(targets) * 5,
        source=WorkflowSource.AUTO_DISCOVERED,
    )


class HeuristicPlanner:
    """
    Builds up to 8 plans from forms, prominent buttons and shallow pages.

    Works offline and never raises, so it is always available as the
    fallback when no planner is configured or the planner fails.
    """

    def __init__(self, max_workflows: int = MAX_WORKFLOWS):
        self.max_workflows = max_workflows

    def synthesize(self, sitemap: SitemapNode) -> List[WorkflowPlan]:
        pages = collect_pages(sitemap)
        plans: List[WorkflowPlan] = []
        seen_names = set()

        def add(plan: Optional[WorkflowPlan]) -> None:
            if plan is not None and plan.workflow_name not in seen_names:
                seen_names.add(plan.workflow_name)
                plans.append(plan)

        for page in pages:
            for form in page.page_data.forms:
                if len(plans) >= self.max_workflows:
                    break
                add(build_form_workflow(page, form))

        for page in pages:
            buttons = [
                button for button in page.page_data.buttons
                if button.visible and button.text.strip() and not is_destructive_action(button.text)
            ][:MAX_BUTTON_PLANS_PER_PAGE]
            for button in buttons:
                if len(plans) >= self.max_workflows:
                    break
                add(build_button_workflow(page, button))

        if len(plans) < self.max_workflows:
            add(build_navigation_workflow(pages))

        plans.sort(key=lambda plan: PRIORITY_ORDER[plan.priority])

        logger.info(f"Heuristic planner produced {len(plans)} workflows")
        return plans

    async def generate_plans(self, sitemap: SitemapNode, hints: List[str]) -> List[WorkflowPlan]:
        """Planner interface; hints are not used by the heuristics."""
        return self.synthesize(sitemap)


_heuristic_planner = HeuristicPlanner()


def get_heuristic_planner() -> HeuristicPlanner:
    """Get global heuristic planner instance."""
    return _heuristic_planner
