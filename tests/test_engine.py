"""Tests for the scan engine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from afterburn.models import (
    CrawlResult,
    DiscoveryResult,
    ExecutionArtifact,
    PageData,
    ScanOptions,
    SitemapNode,
    WorkflowPlan,
)
from afterburn.models.discovery import BrokenLink
from afterburn.models.events import Stage
from afterburn.services.cancellation import CancellationToken, ScanTimeoutError
from afterburn.services.engine import (
    ScanSupervisor,
    merge_discovery_broken_links,
    recalculate_execution_summary,
    run_scan,
)
from afterburn.services.events import EventChannel
from afterburn.utils.guards import GuardError

from conftest import FakeBrowserManager

MODULE = "afterburn.services.engine"


def _link(url, source="https://example.com/"):
    return BrokenLink(url=url, source_url=source, status_code=404, status_text="Not Found")


def _discovery(broken_links=()):
    root = SitemapNode(url="https://example.com/", page_data=PageData(url="https://example.com/"))
    return DiscoveryResult(
        session_id="s1",
        target_url="https://example.com",
        sitemap=root,
        crawl_result=CrawlResult(broken_links=list(broken_links)),
        workflow_plans=[WorkflowPlan(workflow_name="Core Page Navigation")],
    )


def _artifact(**kwargs):
    return ExecutionArtifact(session_id="s1", target_url="https://example.com", **kwargs)


class TestArtifactHelpers:
    """Tests for artifact merging and recalculation."""

    def test_merge_dedupes_by_url_and_source(self):
        """Should keep one entry per url and source page."""
        artifact = _artifact(broken_links=[_link("https://example.com/a")])

        merged = merge_discovery_broken_links(artifact, [
            _link("https://example.com/a"),
            _link("https://example.com/a", source="https://example.com/other"),
            _link("https://example.com/b"),
        ])

        assert len(merged.broken_links) == 3
        assert len(artifact.broken_links) == 1

    def test_recalculate_counts_links(self):
        """Should include broken links in the issue count and exit code."""
        artifact = _artifact(broken_links=[_link("https://example.com/a")])

        updated = recalculate_execution_summary(artifact)

        assert updated.total_issues == 1
        assert updated.exit_code == 1

    def test_recalculate_clean(self):
        """Should exit 0 when nothing was found."""
        updated = recalculate_execution_summary(_artifact(total_issues=9, exit_code=1))

        assert updated.total_issues == 0
        assert updated.exit_code == 0


class TestCancellation:
    """Tests for CancellationToken and ScanSupervisor."""

    def test_token(self):
        """Should raise with the stage name once cancelled."""
        token = CancellationToken(1.5)
        token.raise_if_cancelled("crawl")

        token.cancel()

        with pytest.raises(ScanTimeoutError) as exc_info:
            token.raise_if_cancelled("execute")
        assert str(exc_info.value) == "Scan timed out after 1.5s before execute"
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_timeout_force_closes_live_browser(self):
        """Should cancel the token and force-close the browser."""
        supervisor = ScanSupervisor(0.01, "s1")
        supervisor.browser = FakeBrowserManager()

        supervisor.arm()
        await asyncio.sleep(0.05)
        await supervisor.wait_for_close()

        assert supervisor.token.cancelled
        assert supervisor.browser.force_closed

    @pytest.mark.asyncio
    async def test_disarm_prevents_timeout(self):
        """Should not fire after disarm."""
        supervisor = ScanSupervisor(0.01)
        supervisor.arm()
        supervisor.disarm()

        await asyncio.sleep(0.03)

        assert not supervisor.token.cancelled


class TestRunScan:
    """Tests for run_scan."""

    @pytest.mark.asyncio
    async def test_rejects_invalid_url(self):
        """Should fail fast on unsafe URLs."""
        with pytest.raises(GuardError):
            await run_scan(ScanOptions(target_url="file:///etc/passwd"))

    @pytest.mark.asyncio
    async def test_happy_path(self):
        """Should run discovery then execution and merge broken links."""
        discovery = _discovery([_link("https://example.com/gone")])
        executor = MagicMock()
        executor.return_value.execute = AsyncMock(return_value=_artifact())
        events = EventChannel("s1")
        browsers = []

        def factory():
            browsers.append(FakeBrowserManager())
            return browsers[-1]

        with patch(f"{MODULE}.run_discovery", AsyncMock(return_value=discovery)) as discover, \
                patch(f"{MODULE}.WorkflowExecutor", executor):
            result = await run_scan(
                ScanOptions(target_url="https://example.com", session_id="s1", max_pages=0),
                events=events,
                browser_factory=factory,
                screenshots=MagicMock(),
            )

        assert result.execution.total_issues == 1
        assert result.exit_code == 1
        assert [l.url for l in result.execution.broken_links] == ["https://example.com/gone"]
        assert len(browsers) == 2

        options = discover.call_args.args[0]
        assert options.max_pages == 500
        assert options.session_id == "s1"

        stages = [event.stage for event in events.history]
        assert stages == [Stage.EXECUTE, Stage.ANALYZE, Stage.COMPLETE]

    @pytest.mark.asyncio
    async def test_passes_credentials_to_executor(self):
        """Should hand configured credentials to the executor only."""
        executor = MagicMock()
        executor.return_value.execute = AsyncMock(return_value=_artifact())

        with patch(f"{MODULE}.run_discovery", AsyncMock(return_value=_discovery())), \
                patch(f"{MODULE}.WorkflowExecutor", executor):
            await run_scan(
                ScanOptions(target_url="https://example.com", email="me@corp.example", password="pw-123456"),
                browser_factory=FakeBrowserManager,
                screenshots=MagicMock(),
            )

        kwargs = executor.call_args.kwargs
        assert kwargs["email"] == "me@corp.example"
        assert kwargs["password"].get_secret_value() == "pw-123456"

    @pytest.mark.asyncio
    async def test_timeout_during_discovery(self):
        """Should force-close the discovery browser and stop before execution."""
        browsers = []

        def factory():
            browsers.append(FakeBrowserManager())
            return browsers[-1]

        async def slow_discovery(*args, **kwargs):
            await asyncio.sleep(0.2)
            return _discovery()

        executor = MagicMock()

        with patch(f"{MODULE}.run_discovery", AsyncMock(side_effect=slow_discovery)), \
                patch(f"{MODULE}.WorkflowExecutor", executor):
            with pytest.raises(ScanTimeoutError) as exc_info:
                await run_scan(
                    ScanOptions(target_url="https://example.com"),
                    browser_factory=factory,
                    timeout_seconds=0.05,
                    screenshots=MagicMock(),
                )

        assert exc_info.value.stage == "execute"
        assert len(browsers) == 1
        assert browsers[0].force_closed
        executor.assert_not_called()
