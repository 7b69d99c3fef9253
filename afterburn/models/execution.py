"""Models for workflow execution results and defects."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from afterburn.models.discovery import BrokenLink, ScreenshotRef


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    """Outcome of one step."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    """Result of a single workflow step."""
    step_index: int = Field(..., description="Zero-based position in the plan")
    action: str = Field(..., description="navigate, click, fill, select, wait, expect")
    selector: str = Field("", description="Selector the step targeted")
    status: StepStatus = Field(..., description="passed, failed or skipped")
    duration_ms: int = Field(0, description="Duration in milliseconds")
    error: Optional[str] = Field(None, description="Redacted error or skip reason")


class ClickStateSnapshot(BaseModel):
    """Observable page state around a click."""
    url: str
    dom_size: int = Field(..., description="Length of document.body.innerHTML")
    had_network_activity: bool = False


class DeadButtonResult(BaseModel):
    """Verdict of the dead-button detector for one click."""
    selector: str
    is_dead: bool
    reason: str = ""
    workflow_name: Optional[str] = None
    step_index: Optional[int] = None


class BrokenFormResult(BaseModel):
    """Verdict of the broken-form detector for one form."""
    form_selector: str
    is_broken: bool
    reason: str = ""
    workflow_name: Optional[str] = None


class ConsoleError(BaseModel):
    """A console error or uncaught exception seen on the page."""
    message: str
    url: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class NetworkFailure(BaseModel):
    """A response with status >= 400."""
    url: str
    status: int
    method: str = "GET"
    resource_type: str = ""


class BrokenImage(BaseModel):
    """An image that failed to load."""
    url: str
    status: int
    selector: str = ""


class ErrorCollection(BaseModel):
    """Passive errors collected while a workflow page was open."""
    console_errors: List[ConsoleError] = Field(default_factory=list)
    network_failures: List[NetworkFailure] = Field(default_factory=list)
    broken_images: List[BrokenImage] = Field(default_factory=list)


class ErrorEvidence(BaseModel):
    """Context captured when a step fails."""
    step_index: int
    screenshot: Optional[ScreenshotRef] = None
    console_errors: List[str] = Field(default_factory=list)
    network_failures: List[NetworkFailure] = Field(default_factory=list)
    page_url: str = ""
    captured_at: datetime = Field(default_factory=_utcnow)


class WorkflowStatus(str, Enum):
    """Overall workflow outcome."""
    PASSED = "passed"
    FAILED = "failed"


class WorkflowExecutionResult(BaseModel):
    """Result of one executed workflow plan."""
    workflow_name: str
    status: WorkflowStatus
    step_results: List[StepResult] = Field(default_factory=list)
    errors: ErrorCollection = Field(default_factory=ErrorCollection)
    evidence: List[ErrorEvidence] = Field(default_factory=list)
    dead_buttons: List[DeadButtonResult] = Field(default_factory=list)
    broken_forms: List[BrokenFormResult] = Field(default_factory=list)
    final_screenshot: Optional[ScreenshotRef] = None
    duration_ms: int = 0


class AccessibilityViolation(BaseModel):
    """One accessibility rule violation."""
    id: str
    impact: str = Field("minor", description="critical, serious, moderate or minor")
    description: str = ""
    nodes: int = 0


class AccessibilityReport(BaseModel):
    """Accessibility auditor output for one URL."""
    url: str
    violations: List[AccessibilityViolation] = Field(default_factory=list)
    passes: int = 0
    incomplete: int = 0

    @property
    def severe_violation_count(self) -> int:
        return sum(1 for v in self.violations if v.impact in ("critical", "serious"))


class PerformanceMetrics(BaseModel):
    """Performance auditor output for one URL, all in milliseconds."""
    url: str
    ttfb_ms: float = 0
    fcp_ms: float = 0
    lcp_ms: float = 0
    dom_content_loaded_ms: float = 0
    load_ms: float = 0


class MetaAuditReport(BaseModel):
    """Meta/SEO auditor output for one URL."""
    url: str
    title: str = ""
    description: str = ""
    issues: List[str] = Field(default_factory=list)


class PageAudit(BaseModel):
    """All audits run against one URL."""
    url: str
    accessibility: Optional[AccessibilityReport] = None
    performance: Optional[PerformanceMetrics] = None
    meta: Optional[MetaAuditReport] = None
    screenshot: Optional[ScreenshotRef] = None


class ExecutionArtifact(BaseModel):
    """Final, read-only output of the execution stage."""
    session_id: str
    target_url: str
    workflow_results: List[WorkflowExecutionResult] = Field(default_factory=list)
    page_audits: List[PageAudit] = Field(default_factory=list)
    dead_buttons: List[DeadButtonResult] = Field(default_factory=list)
    broken_forms: List[BrokenFormResult] = Field(default_factory=list)
    broken_links: List[BrokenLink] = Field(default_factory=list)
    total_issues: int = 0
    exit_code: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    class Config:
        frozen = True
