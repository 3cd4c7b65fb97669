"""
Run Schemas

Explicit state for one search run, threaded through each pipeline stage.
Each stage reports a result per item (query, candidate, batch) instead of
raising, and the orchestrator decides what is fatal.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .papers import CandidatePaper, new_id, utc_now
from .search import QueryStatus, SearchOptions, SearchQuery


class RunPhase(str, Enum):
    """Where a run currently is; completed, cancelled and failed are final."""
    PENDING = "pending"
    SEARCHING = "searching"
    PERSISTING = "persisting"
    SCORING = "scoring"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    
    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.COMPLETED, RunPhase.CANCELLED, RunPhase.FAILED)


class QueryOutcome(BaseModel):
    """Result of dispatching one query."""
    query_id: str
    query_text: str
    status: QueryStatus
    papers: List[CandidatePaper] = Field(default_factory=list)
    total_results: int = 0
    error: Optional[str] = None
    attempts: int = 0
    
    @property
    def succeeded(self) -> bool:
        return self.status == QueryStatus.COMPLETED


class PersistOutcome(BaseModel):
    """Result of writing one candidate."""
    external_id: str
    paper_id: Optional[str] = None
    paper_created: bool = False
    association_created: bool = False
    error: Optional[str] = None
    
    @property
    def succeeded(self) -> bool:
        return self.error is None


class BatchOutcome(BaseModel):
    """Result of one scoring batch."""
    index: int
    paper_ids: List[str]
    scored_paper_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    
    @property
    def succeeded(self) -> bool:
        return self.error is None


class ScoringReport(BaseModel):
    """Result of scoring a set of papers for one brief."""
    batches: List[BatchOutcome] = Field(default_factory=list)
    
    @property
    def updated_count(self) -> int:
        return len({pid for b in self.batches for pid in b.scored_paper_ids})
    
    @property
    def failed_batches(self) -> List[BatchOutcome]:
        return [b for b in self.batches if not b.succeeded]


class RunContext(BaseModel):
    """State of one run for one brief."""
    run_id: str = Field(default_factory=new_id)
    brief_id: str
    question: str
    options: SearchOptions = Field(default_factory=SearchOptions)
    phase: RunPhase = RunPhase.PENDING
    
    queries: List[SearchQuery] = Field(default_factory=list)
    query_outcomes: List[QueryOutcome] = Field(default_factory=list)
    candidates: List[CandidatePaper] = Field(default_factory=list)
    unique_candidates: List[CandidatePaper] = Field(default_factory=list)
    persist_outcomes: List[PersistOutcome] = Field(default_factory=list)
    persisted_paper_ids: List[str] = Field(default_factory=list)
    batch_outcomes: List[BatchOutcome] = Field(default_factory=list)
    scored_count: int = 0
    
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    
    @property
    def papers_found(self) -> int:
        return len(self.unique_candidates)
    
    @property
    def failed_queries(self) -> List[SearchQuery]:
        return [q for q in self.queries if q.status == QueryStatus.FAILED]
    
    @property
    def failed_writes(self) -> List[PersistOutcome]:
        return [o for o in self.persist_outcomes if not o.succeeded]
    
    @property
    def unscored_paper_ids(self) -> List[str]:
        scored = {pid for b in self.batch_outcomes for pid in b.scored_paper_ids}
        return [pid for pid in self.persisted_paper_ids if pid not in scored]
    
    def finish(self, phase: RunPhase, error: Optional[str] = None) -> None:
        self.phase = phase
        self.error = error
        self.finished_at = utc_now()
