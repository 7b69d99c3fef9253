"""Models for a complete scan request and its result."""

from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr

from afterburn.models.discovery import DiscoveryResult
from afterburn.models.execution import ExecutionArtifact


class ScanOptions(BaseModel):
    """Input for one bounded scan."""
    target_url: str = Field(
        ...,
        description="Public http(s) URL to scan",
        min_length=1,
        max_length=2048
    )
    max_pages: Optional[int] = Field(
        None,
        description="Page limit; None uses the configured default, 0 the ceiling"
    )
    exclude_patterns: List[str] = Field(
        default_factory=list,
        description="URL patterns the crawler skips"
    )
    user_hints: List[str] = Field(
        default_factory=list,
        description="Free-text hints for a planner"
    )
    email: Optional[str] = Field(None, description="Login email for login workflows")
    password: Optional[SecretStr] = Field(None, description="Login password")
    session_id: Optional[str] = Field(None, description="Override the generated session id")

    class Config:
        json_schema_extra = {
            "example": {
                "target_url": "https://example.com",
                "max_pages": 20,
                "exclude_patterns": ["*logout*", "*.pdf"],
                "user_hints": ["test the signup flow"],
            }
        }


class ScanResult(BaseModel):
    """Discovery and execution output of one scan."""
    session_id: str
    discovery: DiscoveryResult
    execution: ExecutionArtifact
    duration_ms: int = 0

    @property
    def exit_code(self) -> int:
        return self.execution.exit_code
