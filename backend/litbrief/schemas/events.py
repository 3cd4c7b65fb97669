"""
Progress Event Schemas

Pydantic models for progress updates emitted while a run executes.
A host application can forward these to its UI as they arrive.
"""
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ProgressStep(str, Enum):
    """All possible steps in the search pipeline."""
    GENERATING_QUERIES = "generating_queries"
    SEARCHING = "searching"
    DEDUPLICATING = "deduplicating"
    PERSISTING = "persisting"
    SCORING = "scoring"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ProgressEvent(BaseModel):
    """Progress update during a run."""
    type: Literal["progress"] = "progress"
    step: ProgressStep
    message: str = Field(description="Human-readable status message")
    detail: Optional[str] = Field(default=None, description="Additional detail like 'Found 25 papers'")
    progress_percent: int = Field(ge=0, le=100, description="Overall progress percentage")
    
    @classmethod
    def for_step(cls, step: ProgressStep, message: str, detail: Optional[str] = None) -> "ProgressEvent":
        config = STEP_CONFIG.get(step, {"progress": 0})
        return cls(step=step, message=message, detail=detail, progress_percent=config["progress"])


STEP_CONFIG = {
    ProgressStep.GENERATING_QUERIES: {"label": "Generating search queries", "progress": 5},
    ProgressStep.SEARCHING: {"label": "Searching arXiv", "progress": 20},
    ProgressStep.DEDUPLICATING: {"label": "Removing duplicates", "progress": 55},
    ProgressStep.PERSISTING: {"label": "Saving papers", "progress": 65},
    ProgressStep.SCORING: {"label": "Scoring relevancy", "progress": 80},
    ProgressStep.COMPLETE: {"label": "Complete", "progress": 100},
    ProgressStep.CANCELLED: {"label": "Cancelled", "progress": 100},
}
