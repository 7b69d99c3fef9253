"""Tests for page auditors."""

from unittest.mock import AsyncMock

import pytest

from afterburn.models.execution import AccessibilityReport, AccessibilityViolation
from afterburn.services.auditors import Auditors, audit_meta, audit_performance


def _meta_checks(**overrides):
    checks = {
        "title": "Example",
        "description": "An example page",
        "hasLang": True,
        "hasViewport": True,
        "h1Count": 1,
        "skippedHeading": False,
        "imagesWithoutAlt": 0,
        "unsafeBlankLinks": 0,
    }
    checks.update(overrides)
    return checks


class TestAuditMeta:
    """Tests for audit_meta."""

    @pytest.mark.asyncio
    async def test_clean_page(self, page):
        """Should report no issues for a well-formed page."""
        page.evaluate = AsyncMock(return_value=_meta_checks())

        report = await audit_meta(page)

        assert report.issues == []
        assert report.title == "Example"

    @pytest.mark.asyncio
    async def test_reports_problems(self, page):
        """Should list each missing element."""
        page.evaluate = AsyncMock(return_value=_meta_checks(
            title="", description="", hasLang=False, h1Count=2, imagesWithoutAlt=3,
        ))

        report = await audit_meta(page)

        assert "Missing <title>" in report.issues
        assert "Missing meta description" in report.issues
        assert "Missing lang attribute on <html>" in report.issues
        assert "2 <h1> headings" in report.issues
        assert "3 images without alt text" in report.issues


class TestAuditPerformance:
    """Tests for audit_performance."""

    @pytest.mark.asyncio
    async def test_maps_metrics(self, page):
        """Should map browser timings to milliseconds fields."""
        page.evaluate = AsyncMock(return_value={
            "ttfb": 120, "fcp": 800, "lcp": 1500, "domContentLoaded": 900, "load": 1700,
        })

        metrics = await audit_performance(page)

        assert metrics.lcp_ms == 1500
        assert metrics.ttfb_ms == 120


class TestAuditors:
    """Tests for Auditors.run."""

    @pytest.mark.asyncio
    async def test_failure_gives_zero_report(self, page):
        """Should substitute an empty report when an auditor raises."""
        async def broken(page):
            raise RuntimeError("axe failed to inject")

        audit = await Auditors(accessibility=broken).run(page)

        assert audit.accessibility.violations == []
        assert audit.performance is None
        assert audit.meta is None

    @pytest.mark.asyncio
    async def test_runs_configured_auditors(self, page):
        """Should store each auditor's report on the page audit."""
        report = AccessibilityReport(
            url=page.url,
            violations=[AccessibilityViolation(id="image-alt", impact="critical")],
        )

        async def accessibility(page):
            return report

        audit = await Auditors(accessibility=accessibility).run(page)

        assert audit.accessibility.severe_violation_count == 1
        assert audit.url == "https://example.com/"

    def test_default_set(self):
        """Should include performance and meta by default."""
        auditors = Auditors.default()

        assert auditors.accessibility is None
        assert auditors.performance is audit_performance
        assert auditors.meta is audit_meta
