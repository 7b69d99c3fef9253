"""Data models for the Afterburn engine."""

from afterburn.models.discovery import (
    ScreenshotRef,
    FormField,
    FormInfo,
    ElementType,
    InteractiveElement,
    LinkInfo,
    FrameworkName,
    SPAFramework,
    PageData,
    PartialPageData,
    merge_page_data,
    SitemapNode,
    BrokenLink,
    CrawlResult,
    WorkflowPriority,
    WorkflowSource,
    NavigateStep,
    ClickStep,
    FillStep,
    SelectStep,
    WaitStep,
    ExpectStep,
    WorkflowStep,
    WorkflowPlan,
    DiscoveryResult,
)
from afterburn.models.execution import (
    StepStatus,
    StepResult,
    ClickStateSnapshot,
    DeadButtonResult,
    BrokenFormResult,
    ErrorCollection,
    ErrorEvidence,
    WorkflowStatus,
    WorkflowExecutionResult,
    AccessibilityReport,
    PerformanceMetrics,
    MetaAuditReport,
    PageAudit,
    ExecutionArtifact,
)
from afterburn.models.events import Stage, StageEvent
from afterburn.models.scan import ScanOptions, ScanResult

__all__ = [
    'ScreenshotRef',
    'FormField',
    'FormInfo',
    'ElementType',
    'InteractiveElement',
    'LinkInfo',
    'FrameworkName',
    'SPAFramework',
    'PageData',
    'PartialPageData',
    'merge_page_data',
    'SitemapNode',
    'BrokenLink',
    'CrawlResult',
    'WorkflowPriority',
    'WorkflowSource',
    'NavigateStep',
    'ClickStep',
    'FillStep',
    'SelectStep',
    'WaitStep',
    'ExpectStep',
    'WorkflowStep',
    'WorkflowPlan',
    'DiscoveryResult',
    'StepStatus',
    'StepResult',
    'ClickStateSnapshot',
    'DeadButtonResult',
    'BrokenFormResult',
    'ErrorCollection',
    'ErrorEvidence',
    'WorkflowStatus',
    'WorkflowExecutionResult',
    'AccessibilityReport',
    'PerformanceMetrics',
    'MetaAuditReport',
    'PageAudit',
    'ExecutionArtifact',
    'Stage',
    'StageEvent',
    'ScanOptions',
    'ScanResult',
]
