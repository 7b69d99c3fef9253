"""Stage progress events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class Stage(str, Enum):
    """Pipeline stages in execution order."""
    CRAWL = "crawl"
    PLAN = "plan"
    EXECUTE = "execute"
    ANALYZE = "analyze"
    COMPLETE = "complete"


class StageEvent(BaseModel):
    """A progress event emitted by the engine."""
    stage: Stage
    message: str
    session_id: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
