"""
Paper Schemas

Pydantic models for papers at each point of their life: transient search
candidates, canonical persisted papers, per-brief associations, and the
joined view used for display.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class CandidatePaper(BaseModel):
    """
    A paper as returned by one query execution.
    
    Exists only for the duration of a run and is never stored directly;
    the persistence stage turns it into a Paper and an association.
    """
    external_id: str = Field(description="Search service identifier, e.g. arXiv id 1706.03762")
    title: str
    abstract: str = ""
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = None
    submitted_date: Optional[str] = None
    updated_date: Optional[str] = None
    abstract_url: str = ""
    pdf_url: str = ""
    doi: Optional[str] = None
    bibtex: Optional[str] = None
    primary_category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    comments: Optional[str] = None
    journal_ref: Optional[str] = None
    source: str = "arxiv"
    
    # Originating query texts, in dispatch order; the first is the query that found it
    search_queries: List[str] = Field(default_factory=list)
    relevancy_score: Optional[float] = None
    
    @property
    def search_query(self) -> Optional[str]:
        return self.search_queries[0] if self.search_queries else None


class Paper(BaseModel):
    """Canonical paper record, unique by external_id."""
    id: str = Field(default_factory=new_id)
    external_id: str
    title: str
    abstract: str = ""
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = None
    submitted_date: Optional[str] = None
    updated_date: Optional[str] = None
    abstract_url: str = ""
    pdf_url: str = ""
    doi: Optional[str] = None
    bibtex: Optional[str] = None
    primary_category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    comments: Optional[str] = None
    journal_ref: Optional[str] = None
    source: str = "arxiv"
    last_enriched: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    
    @classmethod
    def from_candidate(cls, candidate: CandidatePaper) -> "Paper":
        data = candidate.model_dump(exclude={"search_queries", "relevancy_score"})
        return cls(**data)


class PaperBriefAssociation(BaseModel):
    """Links one brief to one paper; unique per (brief_id, paper_id)."""
    id: str = Field(default_factory=new_id)
    brief_id: str
    paper_id: str
    search_queries: List[str] = Field(default_factory=list)
    is_selected: bool = False
    relevancy_score: Optional[float] = Field(default=None, ge=0, le=100)
    relevancy_justification: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BriefPaper(BaseModel):
    """A paper joined with its association for one brief."""
    paper: Paper
    association: PaperBriefAssociation
    
    @property
    def paper_id(self) -> str:
        return self.paper.id
    
    @property
    def relevancy_score(self) -> Optional[float]:
        return self.association.relevancy_score
    
    @property
    def is_selected(self) -> bool:
        return self.association.is_selected
    
    @property
    def is_scored(self) -> bool:
        return self.association.relevancy_score is not None
