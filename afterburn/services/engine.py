"""
Scan engine: discovery, then execution, under one wall-clock deadline.

Only one browser is live at a time. When the deadline passes the live
browser is force-closed and the next stage boundary raises
ScanTimeoutError.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, List, Optional

from afterburn.models.discovery import BrokenLink
from afterburn.models.events import Stage
from afterburn.models.execution import ExecutionArtifact
from afterburn.models.scan import ScanOptions, ScanResult
from afterburn.services.auditors import Auditors
from afterburn.services.browser_manager import BrowserManager
from afterburn.services.cancellation import CancellationToken, ScanTimeoutError
from afterburn.services.discovery_pipeline import Planner, run_discovery
from afterburn.services.events import EventChannel
from afterburn.services.evidence_capture import ScreenshotManager
from afterburn.services.workflow_executor import (
    WorkflowExecutor,
    compute_exit_code,
    count_total_issues,
)
from afterburn.utils.config import settings
from afterburn.utils.guards import HostResolver, validate_max_pages, validate_url

logger = logging.getLogger(__name__)

__all__ = [
    "CancellationToken",
    "ScanSupervisor",
    "ScanTimeoutError",
    "merge_discovery_broken_links",
    "recalculate_execution_summary",
    "run_scan",
]

BrowserFactory = Callable[[], BrowserManager]


def merge_discovery_broken_links(artifact: ExecutionArtifact, broken_links: List[BrokenLink]) -> ExecutionArtifact:
    """Add discovery's broken links to the artifact, deduplicated by url and source page."""
    merged: List[BrokenLink] = []
    seen = set()
    for link in list(artifact.broken_links) + list(broken_links):
        key = (link.url, link.source_url)
        if key in seen:
            continue
        seen.add(key)
        merged.append(link)
    return artifact.model_copy(update={"broken_links": merged})


def recalculate_execution_summary(artifact: ExecutionArtifact) -> ExecutionArtifact:
    """Recompute total_issues and exit_code from the artifact's contents."""
    total_issues = count_total_issues(
        artifact.workflow_results,
        artifact.page_audits,
        artifact.dead_buttons,
        artifact.broken_forms,
        artifact.broken_links,
    )
    return artifact.model_copy(update={
        "total_issues": total_issues,
        "exit_code": compute_exit_code(artifact.workflow_results, total_issues),
    })


class ScanSupervisor:
    """Tracks the live browser and enforces the scan deadline."""

    def __init__(self, timeout_seconds: float, session_id: str = ""):
        self.token = CancellationToken(timeout_seconds)
        self.session_id = session_id
        self.browser: Optional[BrowserManager] = None
        self.close_task: Optional[asyncio.Task] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def arm(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.token.timeout_seconds, self.on_timeout)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def on_timeout(self) -> None:
        logger.error(
            f"[{self.session_id}] Scan exceeded {self.token.timeout_seconds:g}s; "
            f"cancelling and closing browser"
        )
        self.token.cancel()
        if self.browser is not None:
            self.close_task = asyncio.ensure_future(self.browser.force_close())

    async def wait_for_close(self) -> None:
        if self.close_task is not None:
            await asyncio.gather(self.close_task, return_exceptions=True)


async def run_scan(
    options: ScanOptions,
    planner: Optional[Planner] = None,
    auditors: Optional[Auditors] = None,
    events: Optional[EventChannel] = None,
    browser_factory: BrowserFactory = BrowserManager,
    resolver: Optional[HostResolver] = None,
    timeout_seconds: Optional[float] = None,
    screenshots: Optional[ScreenshotManager] = None,
) -> ScanResult:
    """
    Run discovery and execution against ``options.target_url``.

    Raises:
        GuardError: If the target URL is not a valid http(s) URL
        BrowserLaunchError: If Chromium cannot be started
        ScanTimeoutError: If the deadline passes before a stage starts
    """
    started = time.monotonic()
    target_url = validate_url(options.target_url)
    session_id = options.session_id or str(uuid.uuid4())
    max_pages = validate_max_pages(settings.MAX_PAGES if options.max_pages is None else options.max_pages)
    options = options.model_copy(update={
        "target_url": target_url,
        "session_id": session_id,
        "max_pages": max_pages,
    })

    events = events or EventChannel(session_id)
    screenshots = screenshots or ScreenshotManager()
    supervisor = ScanSupervisor(timeout_seconds or settings.PIPELINE_TIMEOUT_SECONDS, session_id)
    token = supervisor.token

    logger.info(f"[{session_id}] Starting scan of {target_url} (max {max_pages} pages)")
    supervisor.arm()
    try:
        token.raise_if_cancelled("crawl")
        supervisor.browser = browser_factory()
        discovery = await run_discovery(
            options,
            planner=planner,
            browser_manager=supervisor.browser,
            events=events,
            screenshots=screenshots,
            resolver=resolver,
            cancel_token=token,
        )
        supervisor.browser = None

        token.raise_if_cancelled("execute")
        events.emit(Stage.EXECUTE, f"Executing {len(discovery.workflow_plans)} workflows")
        supervisor.browser = browser_factory()
        executor = WorkflowExecutor(
            supervisor.browser,
            discovery.workflow_plans,
            target_url,
            session_id,
            auditors=auditors,
            email=options.email,
            password=options.password,
            events=events,
            screenshots=screenshots,
        )
        artifact = await executor.execute()
        supervisor.browser = None

        token.raise_if_cancelled("analyze")
        events.emit(Stage.ANALYZE, "Merging discovery and execution results")
        artifact = merge_discovery_broken_links(artifact, discovery.crawl_result.broken_links)
        artifact = recalculate_execution_summary(artifact)

        duration_ms = int((time.monotonic() - started) * 1000)
        events.emit(
            Stage.COMPLETE,
            f"Scan complete: {artifact.total_issues} issues",
            {"total_issues": artifact.total_issues, "exit_code": artifact.exit_code},
        )
        logger.info(
            f"[{session_id}] Scan complete in {duration_ms}ms: "
            f"{artifact.total_issues} issues, exit code {artifact.exit_code}"
        )
        return ScanResult(
            session_id=session_id,
            discovery=discovery,
            execution=artifact,
            duration_ms=duration_ms,
        )
    finally:
        supervisor.disarm()
        await supervisor.wait_for_close()
