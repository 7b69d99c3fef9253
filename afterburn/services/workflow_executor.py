"""
Workflow executor.

Runs each plan on a fresh page, strictly in order:
page-open -> steps -> audits -> screenshot -> page-close.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import List, Optional, Set, Union

from playwright.async_api import Page
from pydantic import SecretStr

from afterburn.models.discovery import BrokenLink, WorkflowPlan, WorkflowStep
from afterburn.models.events import Stage
from afterburn.models.execution import (
    BrokenFormResult,
    DeadButtonResult,
    ExecutionArtifact,
    PageAudit,
    StepResult,
    StepStatus,
    WorkflowExecutionResult,
    WorkflowStatus,
)
from afterburn.services.auditors import Auditors
from afterburn.services.browser_manager import BrowserManager
from afterburn.services.defect_detectors import (
    RequestWatcher,
    capture_click_state,
    check_dead_button,
    detect_broken_form,
    find_form_selector,
)
from afterburn.services.error_detector import ErrorListeners
from afterburn.services.events import EventChannel
from afterburn.services.evidence_capture import ScreenshotManager, capture_error_evidence
from afterburn.services.step_handlers import execute_step, is_submit_selector
from afterburn.utils.config import settings
from afterburn.utils.logging import redact_sensitive_data

logger = logging.getLogger(__name__)

AUDIT_NAVIGATION_TIMEOUT_MS = 15000

LOGIN_WORKFLOW_MARKERS = ("login", "log in", "sign in", "signin")
EMAIL_SELECTOR_MARKERS = ("email", "username", "user")
PASSWORD_SELECTOR_MARKERS = ("password", "pass")

# Whitespace outside [...] separates the form scope from the field part
_SCOPE_SEPARATOR = re.compile(r"\s+(?![^\[]*\])")


def field_fragment(selector: str) -> str:
    """The part of a fill selector that names the field, without its form scope."""
    selector = selector.strip()
    if selector.startswith("getBy"):
        return selector
    return _SCOPE_SEPARATOR.split(selector)[-1]


def is_login_workflow(plan: WorkflowPlan) -> bool:
    name = plan.workflow_name.lower()
    return (
        any(marker in name for marker in LOGIN_WORKFLOW_MARKERS)
        or "authentication" in plan.description.lower()
    )


def count_total_issues(
    workflow_results: List[WorkflowExecutionResult],
    page_audits: List[PageAudit],
    dead_buttons: List[DeadButtonResult],
    broken_forms: List[BrokenFormResult],
    broken_links: List[BrokenLink],
) -> int:
    """
    Failed steps, console errors, network failures, broken images, dead
    buttons, broken forms, broken links and critical/serious accessibility
    violations all count as one issue each.
    """
    total = 0
    for result in workflow_results:
        total += sum(1 for step in result.step_results if step.status == StepStatus.FAILED)
        total += len(result.errors.console_errors)
        total += len(result.errors.network_failures)
        total += len(result.errors.broken_images)

    total += sum(1 for button in dead_buttons if button.is_dead)
    total += sum(1 for form in broken_forms if form.is_broken)
    total += len(broken_links)

    for audit in page_audits:
        if audit.accessibility is not None:
            total += audit.accessibility.severe_violation_count

    return total


def compute_exit_code(workflow_results: List[WorkflowExecutionResult], total_issues: int) -> int:
    failed = any(result.status == WorkflowStatus.FAILED for result in workflow_results)
    return 1 if failed or total_issues > 0 else 0


async def _dismiss_dialog(dialog) -> None:
    try:
        await dialog.dismiss()
    except Exception as e:
        logger.debug(f"Dialog already handled: {e}")


class WorkflowExecutor:
    """
    Executes workflow plans against the target site and collects defects.

    Credentials are only ever used for fill steps of login workflows.
    """

    def __init__(
        self,
        browser_manager: BrowserManager,
        plans: List[WorkflowPlan],
        target_url: str,
        session_id: str,
        auditors: Optional[Auditors] = None,
        email: Optional[str] = None,
        password: Optional[Union[str, SecretStr]] = None,
        events: Optional[EventChannel] = None,
        screenshots: Optional[ScreenshotManager] = None,
    ):
        self.browser_manager = browser_manager
        self.plans = plans
        self.target_url = target_url
        self.session_id = session_id
        self.auditors = auditors if auditors is not None else Auditors.default()
        self.email = email
        self.password = password.get_secret_value() if isinstance(password, SecretStr) else password
        self.events = events or EventChannel(session_id)
        self.screenshots = screenshots or ScreenshotManager()

        self._audited_urls: Set[str] = set()
        self._page_audits: List[PageAudit] = []
        self._dead_buttons: List[DeadButtonResult] = []
        self._broken_forms: List[BrokenFormResult] = []

    async def execute(self) -> ExecutionArtifact:
        """Run every plan in order and build the execution artifact."""
        started_at = datetime.now(timezone.utc)
        results: List[WorkflowExecutionResult] = []

        await self.browser_manager.launch()
        try:
            for number, plan in enumerate(self.plans, 1):
                logger.info(f"[{self.session_id}] Executing workflow {number}/{len(self.plans)}: {plan.workflow_name}")
                self.events.emit(
                    Stage.EXECUTE,
                    f"Executing workflow: {plan.workflow_name}",
                    {"index": number, "total": len(self.plans)},
                )

                result = await self._run_workflow(plan)
                results.append(result)

                passed = sum(1 for step in result.step_results if step.status == StepStatus.PASSED)
                logger.info(
                    f"[{self.session_id}]   Status: {result.status.value} "
                    f"({passed}/{len(plan.steps)} passed)"
                )
        finally:
            await self.browser_manager.close()

        total_issues = count_total_issues(
            results, self._page_audits, self._dead_buttons, self._broken_forms, []
        )
        return ExecutionArtifact(
            session_id=self.session_id,
            target_url=self.target_url,
            workflow_results=results,
            page_audits=self._page_audits,
            dead_buttons=self._dead_buttons,
            broken_forms=self._broken_forms,
            total_issues=total_issues,
            exit_code=compute_exit_code(results, total_issues),
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    async def _run_workflow(self, plan: WorkflowPlan) -> WorkflowExecutionResult:
        started = time.monotonic()

        try:
            page = await self.browser_manager.new_page()
        except Exception as e:
            logger.error(f"[{self.session_id}] Could not open page for {plan.workflow_name}: {e}")
            first_action = plan.steps[0].action if plan.steps else "navigate"
            return WorkflowExecutionResult(
                workflow_name=plan.workflow_name,
                status=WorkflowStatus.FAILED,
                step_results=[StepResult(
                    step_index=0,
                    action=first_action,
                    status=StepStatus.FAILED,
                    error=(redact_sensitive_data(str(e)) or "Could not open page")[:500],
                )],
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        page.on("dialog", _dismiss_dialog)
        listeners = ErrorListeners(page).attach()

        result = WorkflowExecutionResult(workflow_name=plan.workflow_name, status=WorkflowStatus.PASSED)
        checked_forms: Set[str] = set()
        first_nav_url: Optional[str] = None
        last_url = ""

        try:
            for index, step in enumerate(plan.steps):
                logger.debug(f"[{self.session_id}]   Step {index + 1}/{len(plan.steps)}: {step.action} {step.selector}")
                step = self.inject_credentials(step, plan)

                if step.action == "click":
                    step_result = await self._run_click(page, step, index, plan, result)
                else:
                    step_result = await execute_step(page, step, index, self.target_url)

                if step_result.status == StepStatus.FAILED:
                    logger.info(f"[{self.session_id}]     Failed: {step_result.error}")
                    result.evidence.append(
                        await capture_error_evidence(page, listeners.collection, self.screenshots, index)
                    )

                result.step_results.append(step_result)

                if step.action == "navigate" and first_nav_url is None and step_result.status == StepStatus.PASSED:
                    first_nav_url = page.url
                last_url = page.url

                if step.action == "click":
                    previous = plan.steps[index - 1] if index > 0 else None
                    after_fill = previous is not None and previous.action == "fill"
                    # A fill-then-submit pair is checked even when the submit control is missing
                    if step_result.status == StepStatus.PASSED or after_fill or is_submit_selector(step.selector):
                        candidates = [step.selector]
                        if after_fill:
                            candidates.insert(0, previous.selector)
                        await self._check_form(page, candidates, checked_forms, plan, result)

            for url in (first_nav_url, last_url):
                if url:
                    await self._audit(page, url)

            try:
                name = "workflow-" + "-".join(plan.workflow_name.lower().split())
                result.final_screenshot = await self.screenshots.capture(page, name)
            except Exception as e:
                logger.warning(f"[{self.session_id}] Final screenshot failed for {plan.workflow_name}: {e}")
        finally:
            listeners.detach()
            try:
                page.remove_listener("dialog", _dismiss_dialog)
                await page.close()
            except Exception as e:
                logger.debug(f"Page close failed: {e}")

        result.errors = listeners.collection
        if any(step.status == StepStatus.FAILED for step in result.step_results):
            result.status = WorkflowStatus.FAILED
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _run_click(
        self,
        page: Page,
        step: WorkflowStep,
        index: int,
        plan: WorkflowPlan,
        result: WorkflowExecutionResult,
    ) -> StepResult:
        """Execute a click and compare page state before and after it."""
        try:
            before = await capture_click_state(page)
        except Exception as e:
            logger.debug(f"Pre-click snapshot failed: {e}")
            before = None

        async with RequestWatcher(page) as watcher:
            step_result = await execute_step(page, step, index, self.target_url)
            if before is not None and step_result.status == StepStatus.PASSED:
                await page.wait_for_timeout(settings.DEAD_BUTTON_WAIT_MS)

        if before is None or step_result.status != StepStatus.PASSED:
            return step_result

        try:
            after = await capture_click_state(page, had_network_activity=watcher.saw_request)
        except Exception as e:
            # Snapshot fails while a navigation is in progress, which means the click did something
            logger.debug(f"Post-click snapshot failed: {e}")
            return step_result

        verdict = check_dead_button(step.selector, before, after)
        if verdict.is_dead:
            logger.warning(f"[{self.session_id}]     Dead button detected: {step.selector}")
            verdict = verdict.model_copy(update={"workflow_name": plan.workflow_name, "step_index": index})
            result.dead_buttons.append(verdict)
            self._dead_buttons.append(verdict)
        return step_result

    async def _check_form(
        self,
        page: Page,
        selectors: List[str],
        checked_forms: Set[str],
        plan: WorkflowPlan,
        result: WorkflowExecutionResult,
    ) -> None:
        form_selector = None
        for selector in selectors:
            form_selector = await find_form_selector(page, selector)
            if form_selector:
                break

        if not form_selector or form_selector in checked_forms:
            return
        checked_forms.add(form_selector)

        verdict = await detect_broken_form(page, form_selector)
        if verdict.is_broken:
            logger.warning(f"[{self.session_id}]     Broken form detected: {form_selector}")
            verdict = verdict.model_copy(update={"workflow_name": plan.workflow_name})
            result.broken_forms.append(verdict)
            self._broken_forms.append(verdict)

    async def _audit(self, page: Page, url: str) -> None:
        """Audit ``url`` once per run, navigating back to it if needed."""
        if url in self._audited_urls:
            return
        self._audited_urls.add(url)

        try:
            if page.url != url:
                await page.goto(url, wait_until="domcontentloaded", timeout=AUDIT_NAVIGATION_TIMEOUT_MS)
        except Exception as e:
            logger.warning(f"[{self.session_id}] Could not reopen {url} for audit: {e}")
            return

        logger.info(f"[{self.session_id}]   Auditing page: {url}")
        audit = await self.auditors.run(page)
        self._page_audits.append(audit.model_copy(update={"url": url}))

        if audit.accessibility is not None and audit.accessibility.violations:
            logger.info(f"[{self.session_id}]     Accessibility: {len(audit.accessibility.violations)} violations found")
        if audit.performance is not None and audit.performance.lcp_ms > 0:
            logger.info(f"[{self.session_id}]     Performance: LCP {round(audit.performance.lcp_ms)}ms")

    def inject_credentials(self, step: WorkflowStep, plan: WorkflowPlan) -> WorkflowStep:
        """Swap configured credentials into email/username and password fills of login workflows."""
        if step.action != "fill" or not is_login_workflow(plan):
            return step

        selector = field_fragment(step.selector).lower()
        if self.password and any(marker in selector for marker in PASSWORD_SELECTOR_MARKERS):
            return step.model_copy(update={"value": self.password})
        if self.email and any(marker in selector for marker in EMAIL_SELECTOR_MARKERS):
            return step.model_copy(update={"value": self.email})
        return step
