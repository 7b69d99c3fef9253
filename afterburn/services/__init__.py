"""Services for the Afterburn engine."""

from afterburn.services.browser_manager import BrowserManager, BrowserLaunchError
from afterburn.services.events import EventChannel
from afterburn.services.crawler import SiteCrawler
from afterburn.services.element_mapper import ElementMapper, RestoreLadder, get_element_mapper
from afterburn.services.link_validator import LinkValidationState, validate_links
from afterburn.services.sitemap_builder import build_sitemap, print_sitemap_tree
from afterburn.services.heuristic_planner import HeuristicPlanner, get_heuristic_planner
from afterburn.services.step_handlers import execute_step
from afterburn.services.auditors import Auditors
from afterburn.services.evidence_capture import ScreenshotManager
from afterburn.services.workflow_executor import WorkflowExecutor
from afterburn.services.discovery_pipeline import Planner, run_discovery
from afterburn.services.cancellation import CancellationToken, ScanTimeoutError
from afterburn.services.engine import run_scan

__all__ = [
    "BrowserManager",
    "BrowserLaunchError",
    "EventChannel",
    "SiteCrawler",
    "ElementMapper",
    "RestoreLadder",
    "get_element_mapper",
    "LinkValidationState",
    "validate_links",
    "build_sitemap",
    "print_sitemap_tree",
    "HeuristicPlanner",
    "get_heuristic_planner",
    "execute_step",
    "Auditors",
    "ScreenshotManager",
    "WorkflowExecutor",
    "Planner",
    "run_discovery",
    "CancellationToken",
    "ScanTimeoutError",
    "run_scan",
]
