"""Models produced by site discovery: pages, elements, sitemap and plans."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScreenshotRef(BaseModel):
    """A PNG written to the screenshot directory."""
    id: str = Field(..., description="Content hash prefix")
    name: str = Field(..., description="Human readable screenshot name")
    path: str = Field(..., description="Filesystem path of the PNG")
    size_bytes: int = Field(0, description="File size in bytes")
    captured_at: datetime = Field(default_factory=_utcnow)


class FormField(BaseModel):
    """A single input, select or textarea inside a form."""
    type: str = Field("text", description="Input type, or 'select' / 'textarea'")
    name: str = Field("", description="name attribute, falling back to id")
    label: str = Field("", description="Resolved accessible label")
    required: bool = False
    placeholder: Optional[str] = None
    disabled: bool = False
    read_only: bool = False
    hidden: bool = False


class FormInfo(BaseModel):
    """A form found on a page."""
    action: str = Field("", description="Absolute action URL")
    method: str = Field("GET", description="Upper-cased HTTP method")
    selector: str = Field(..., description="Selector that locates the form")
    fields: List[FormField] = Field(default_factory=list)


class ElementType(str, Enum):
    """Kinds of interactive elements."""
    BUTTON = "button"
    LINK = "link"
    INPUT = "input"
    SELECT = "select"
    MENU = "menu"
    TAB = "tab"
    TABPANEL = "tabpanel"
    DIALOG = "dialog"
    COMBOBOX = "combobox"
    LISTBOX = "listbox"
    MODAL_TRIGGER = "modal-trigger"


class InteractiveElement(BaseModel):
    """A clickable or otherwise interactive element."""
    type: ElementType = Field(..., description="Element kind")
    selector: str = Field(..., description="Selector that locates the element")
    text: str = Field("", description="Visible text or accessible name")
    visible: bool = True
    attributes: Dict[str, str] = Field(default_factory=dict)


class LinkInfo(BaseModel):
    """An anchor discovered on a page."""
    href: str = Field(..., description="Absolute URL")
    text: str = ""
    is_internal: bool = Field(False, description="Same hostname as the crawl seed")
    status_code: Optional[int] = None


class FrameworkName(str, Enum):
    """Client-side frameworks recognised by SPA detection."""
    REACT = "react"
    VUE = "vue"
    ANGULAR = "angular"
    NEXT = "next"
    SVELTE = "svelte"
    NUXT = "nuxt"
    NONE = "none"


class SPAFramework(BaseModel):
    """Detected client framework."""
    framework: FrameworkName = FrameworkName.NONE
    version: Optional[str] = None
    router: Optional[str] = None


class PageData(BaseModel):
    """Everything discovered about one crawled page."""
    url: str
    title: str = ""
    forms: List[FormInfo] = Field(default_factory=list)
    buttons: List[InteractiveElement] = Field(default_factory=list)
    links: List[LinkInfo] = Field(default_factory=list)
    menus: List[InteractiveElement] = Field(default_factory=list)
    other_interactive: List[InteractiveElement] = Field(default_factory=list)
    spa_framework: Optional[SPAFramework] = None
    screenshot: Optional[ScreenshotRef] = None
    crawled_at: datetime = Field(default_factory=_utcnow)


class PartialPageData(BaseModel):
    """What a page processor may contribute for a page. Every field is optional."""
    title: Optional[str] = None
    forms: Optional[List[FormInfo]] = None
    buttons: Optional[List[InteractiveElement]] = None
    links: Optional[List[LinkInfo]] = None
    menus: Optional[List[InteractiveElement]] = None
    other_interactive: Optional[List[InteractiveElement]] = None
    spa_framework: Optional[SPAFramework] = None
    screenshot: Optional[ScreenshotRef] = None


# list field -> attribute used as dedupe key
_MERGE_KEYS = {
    "forms": "selector",
    "buttons": "selector",
    "links": "href",
    "menus": "selector",
    "other_interactive": "selector",
}

_SCALAR_FIELDS = ("title", "spa_framework", "screenshot")


def _merge_unique(first: list, second: list, key: str) -> list:
    merged = []
    seen = set()
    for item in list(first) + list(second):
        marker = getattr(item, key)
        if marker in seen:
            continue
        seen.add(marker)
        merged.append(item)
    return merged


def merge_page_data(base: PageData, partial: Optional[PartialPageData]) -> PageData:
    """
    Combine crawler-extracted data with a page processor's contribution.

    List fields are concatenated and deduplicated (forms and elements by
    selector, links by href); scalar fields overwrite when provided. Returns
    a new PageData and leaves both inputs untouched.
    """
    if partial is None:
        return base

    update: Dict[str, Any] = {}
    for field_name, key in _MERGE_KEYS.items():
        extra = getattr(partial, field_name)
        if extra:
            update[field_name] = _merge_unique(getattr(base, field_name), extra, key)

    for field_name in _SCALAR_FIELDS:
        value = getattr(partial, field_name)
        if value is not None:
            update[field_name] = value

    return base.model_copy(update=update)


class SitemapNode(BaseModel):
    """One node of the sitemap tree."""
    url: str
    title: str = ""
    path: str = "/"
    depth: int = 0
    children: List["SitemapNode"] = Field(default_factory=list)
    page_data: PageData


SitemapNode.model_rebuild()


class BrokenLink(BaseModel):
    """A link that answered with an error or could not be reached."""
    url: str
    source_url: str = Field(..., description="Page the link was found on")
    status_code: int = Field(..., description="HTTP status, 0 for network/SSRF errors")
    status_text: str = ""


class CrawlResult(BaseModel):
    """Output of one crawl."""
    pages: List[PageData] = Field(default_factory=list)
    broken_links: List[BrokenLink] = Field(default_factory=list)
    total_pages_discovered: int = 0
    total_links_checked: int = 0
    crawl_duration_ms: int = 0
    spa_detected: Optional[SPAFramework] = None


class WorkflowPriority(str, Enum):
    """Plan priority, highest first."""
    CRITICAL = "critical"
    IMPORTANT = "important"
    NICE_TO_HAVE = "nice-to-have"


PRIORITY_ORDER = {
    WorkflowPriority.CRITICAL: 0,
    WorkflowPriority.IMPORTANT: 1,
    WorkflowPriority.NICE_TO_HAVE: 2,
}


class WorkflowSource(str, Enum):
    """Where a plan came from."""
    AUTO_DISCOVERED = "auto-discovered"
    USER_HINT = "user-hint"


class _StepBase(BaseModel):
    selector: str = Field(..., description="Target selector, or URL for navigate")
    expected_result: str = Field("", description="What should happen")
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class NavigateStep(_StepBase):
    action: Literal["navigate"] = "navigate"
    value: Optional[str] = Field(None, description="Target URL, overrides selector")


class ClickStep(_StepBase):
    action: Literal["click"] = "click"


class FillStep(_StepBase):
    action: Literal["fill"] = "fill"
    value: Union[bool, str] = Field(
        "",
        description="Text to type, or a boolean for checkbox/radio fields"
    )


class SelectStep(_StepBase):
    action: Literal["select"] = "select"
    value: Optional[str] = Field(None, description="Option value or label")


class WaitStep(_StepBase):
    action: Literal["wait"] = "wait"


class ExpectStep(_StepBase):
    action: Literal["expect"] = "expect"


WorkflowStep = Annotated[
    Union[NavigateStep, ClickStep, FillStep, SelectStep, WaitStep, ExpectStep],
    Field(discriminator="action"),
]


class WorkflowPlan(BaseModel):
    """An ordered list of steps modelling one user journey."""
    workflow_name: str = Field(..., description="Unique within one batch of plans")
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)
    priority: WorkflowPriority = WorkflowPriority.IMPORTANT
    estimated_duration: int = Field(10, description="Estimated duration in seconds")
    source: WorkflowSource = WorkflowSource.AUTO_DISCOVERED

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_name": "Login Form (/login)",
                "description": "Fill and submit the login form on /login",
                "steps": [
                    {"action": "navigate", "selector": "https://example.com/login",
                     "expected_result": "Page loads", "confidence": 1.0},
                    {"action": "fill", "selector": "form#login [name=\"email\"]",
                     "value": "test@example.com", "confidence": 0.7},
                ],
                "priority": "critical",
                "estimated_duration": 14,
                "source": "auto-discovered",
            }
        }


class DiscoveryResult(BaseModel):
    """Output of the discovery stage."""
    session_id: str
    target_url: str
    sitemap: SitemapNode
    crawl_result: CrawlResult
    workflow_plans: List[WorkflowPlan] = Field(default_factory=list)
    user_hints: List[str] = Field(default_factory=list)
    used_heuristic_fallback: bool = False
    spa_framework: SPAFramework = Field(default_factory=SPAFramework)
    discovered_at: datetime = Field(default_factory=_utcnow)
