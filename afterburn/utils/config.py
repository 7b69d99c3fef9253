"""
Configuration settings for the Afterburn engine.

All settings can be overridden via environment variables prefixed with
``AFTERBURN_`` (or a local ``.env`` file). Credentials are never read from
here; callers pass them explicitly to the executor.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Engine settings with environment variable support."""

    # Browser Configuration
    HEADLESS: bool = Field(default=True, description="Run Chromium headless")
    VIEWPORT_WIDTH: int = Field(default=1920, description="Browser viewport width")
    VIEWPORT_HEIGHT: int = Field(default=1080, description="Browser viewport height")
    USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
        ),
        description="User agent used by every browser context"
    )
    LOCALE: str = Field(default="en-US", description="Browser locale")
    TIMEZONE_ID: str = Field(default="America/New_York", description="Browser timezone")
    AUTO_INSTALL_BROWSERS: bool = Field(
        default=False,
        description="Install Chromium automatically when the executable is missing"
    )

    # Discovery Configuration
    MAX_PAGES: int = Field(default=50, description="Default crawl page limit (0 = ceiling)")
    CRAWL_CONCURRENCY: int = Field(default=3, description="Pages loaded in parallel per batch")
    CRAWL_SETTLE_MS: int = Field(default=500, description="Wait after page load before extraction")
    EXCLUDE_PATTERNS: List[str] = Field(
        default=[],
        description="URL patterns never crawled (*substr*, *suffix, prefix*)"
    )
    BLOCK_HEAVY_RESOURCES: bool = Field(
        default=True,
        description="Abort image/font/media/analytics requests during discovery"
    )
    SPA_DISCOVERY_TIMEOUT_SECONDS: int = Field(default=30, description="Time limit for SPA route discovery")
    HIDDEN_TRIGGER_LIMIT: int = Field(default=10, description="Max reveal triggers per page")

    # Execution Configuration
    STEP_TIMEOUT_MS: int = Field(default=10000, description="Timeout for a single step action")
    NAVIGATION_TIMEOUT_MS: int = Field(default=30000, description="Timeout for navigate steps")
    DEAD_BUTTON_WAIT_MS: int = Field(default=1000, description="Settle time after a click")
    LINK_CHECK_TIMEOUT_MS: int = Field(default=5000, description="Timeout for one link check")
    PIPELINE_TIMEOUT_SECONDS: int = Field(default=300, description="Hard wall clock for a scan")

    # Artifacts
    SCREENSHOT_DIR: str = Field(
        default=".afterburn/screenshots",
        description="Directory where PNG screenshots are written"
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_FORMAT: str = Field(default="text", description="Log format: json or text")

    class Config:
        env_prefix = "AFTERBURN_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()


# Validation
def validate_settings(current: Settings = None):
    """Validate settings before a scan starts."""
    current = current or settings
    errors = []

    if current.CRAWL_CONCURRENCY < 1:
        errors.append("CRAWL_CONCURRENCY must be at least 1")

    if current.PIPELINE_TIMEOUT_SECONDS <= 0:
        errors.append("PIPELINE_TIMEOUT_SECONDS must be positive")

    if current.LOG_FORMAT.lower() not in ("json", "text"):
        errors.append(f"LOG_FORMAT must be 'json' or 'text', got '{current.LOG_FORMAT}'")

    for name in ("STEP_TIMEOUT_MS", "NAVIGATION_TIMEOUT_MS", "LINK_CHECK_TIMEOUT_MS"):
        if getattr(current, name) <= 0:
            errors.append(f"{name} must be positive")

    if errors:
        raise ValueError("Configuration errors: " + "; ".join(errors))


# Secret patterns for redaction
SECRET_PATTERNS = [
    r"password",
    r"passwd",
    r"secret",
    r"token",
    r"api[_-]?key",
    r"auth",
    r"credential",
    r"bearer",
    r"session",
    r"jwt",
]
