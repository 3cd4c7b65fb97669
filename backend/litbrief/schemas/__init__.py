"""
Schemas Module

Contains all Pydantic models for:
- Papers, associations and the joined brief view
- Search queries and run options
- LLM scoring responses
- Run state and progress events
"""
from .papers import CandidatePaper, Paper, PaperBriefAssociation, BriefPaper
from .search import (
    QueryStatus,
    SearchQuery,
    DateRange,
    SortBy,
    SortOrder,
    SearchOptions,
)
from .scoring import RelevancyScore, ScoreBatchResponse, SCORE_BANDS
from .run import (
    RunPhase,
    QueryOutcome,
    PersistOutcome,
    BatchOutcome,
    ScoringReport,
    RunContext,
)
from .events import ProgressStep, ProgressEvent, STEP_CONFIG

__all__ = [
    "CandidatePaper",
    "Paper",
    "PaperBriefAssociation",
    "BriefPaper",
    "QueryStatus",
    "SearchQuery",
    "DateRange",
    "SortBy",
    "SortOrder",
    "SearchOptions",
    "RelevancyScore",
    "ScoreBatchResponse",
    "SCORE_BANDS",
    "RunPhase",
    "QueryOutcome",
    "PersistOutcome",
    "BatchOutcome",
    "ScoringReport",
    "RunContext",
    "ProgressStep",
    "ProgressEvent",
    "STEP_CONFIG",
]
