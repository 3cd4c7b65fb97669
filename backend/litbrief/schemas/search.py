"""
Search Schemas

Search queries with their per-run status, and the options controlling
how a run dispatches them.
"""
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .papers import new_id


class QueryStatus(str, Enum):
    """Lifecycle of a query within one run."""
    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    
    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.COMPLETED, QueryStatus.FAILED)


class SearchQuery(BaseModel):
    """A query string in search-service syntax, e.g. ti:attention AND abs:transformer."""
    id: str = Field(default_factory=new_id)
    text: str = Field(min_length=1)
    is_selected: bool = True
    status: QueryStatus = QueryStatus.WAITING
    error: Optional[str] = None
    description: Optional[str] = None
    
    @classmethod
    def manual(cls, text: str) -> "SearchQuery":
        """A query typed in by the user rather than generated."""
        return cls(text=text.strip())
    
    def fresh(self) -> "SearchQuery":
        """Copy of this query reset to waiting for a new run; the original is left untouched."""
        return self.model_copy(update={"status": QueryStatus.WAITING, "error": None})


class DateRange(BaseModel):
    """Submission-date bounds; either side may be open."""
    start: Optional[date] = None
    end: Optional[date] = None
    
    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("start date must not be after end date")
        return self
    
    @property
    def is_open(self) -> bool:
        return self.start is None and self.end is None


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    LAST_UPDATED = "lastUpdatedDate"
    SUBMITTED = "submittedDate"


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class SearchOptions(BaseModel):
    """Per-run dispatch options."""
    date_range: Optional[DateRange] = None
    max_results: int = Field(default=100, ge=1, le=2000)
    sort_by: SortBy = SortBy.RELEVANCE
    sort_order: SortOrder = SortOrder.DESCENDING
    relax_grouped_terms: bool = Field(
        default=False,
        description="Rewrite AND inside parenthesised groups as OR to broaden queries",
    )
