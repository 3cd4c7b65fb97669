"""
Read-side view over a brief's papers.

Filtering by a minimum relevancy, sorting, bucket counts and pagination.
Papers that have not been scored yet are never hidden by the relevancy
filter and always sort after scored papers.
"""
import math
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from litbrief.schemas.papers import BriefPaper
from .types import RESULTS_PER_PAGE

# (label, lower bound inclusive); a score belongs to the highest bucket it reaches
RELEVANCY_BUCKETS: List[Tuple[str, int]] = [
    ("0-19", 0),
    ("20-39", 20),
    ("40-59", 40),
    ("60-79", 60),
    ("80-100", 80),
]
UNSCORED_BUCKET = "unscored"


class PaperSort(str, Enum):
    RELEVANCY_DESC = "relevancy-desc"
    RELEVANCY_ASC = "relevancy-asc"
    YEAR_DESC = "year-desc"
    YEAR_ASC = "year-asc"
    TITLE_ASC = "title-asc"
    TITLE_DESC = "title-desc"


class PaperPage(BaseModel):
    """One page of a filtered, sorted paper list."""
    items: List[BriefPaper]
    page: int
    total_pages: int
    total_items: int


def filter_by_min_relevancy(papers: List[BriefPaper], min_score: float = 0) -> List[BriefPaper]:
    """
    Papers scoring at least min_score, plus every unscored paper.
    
    The threshold is clamped to [0, 100], so unscored papers pass for any value.
    """
    min_score = min(max(min_score, 0), 100)
    return [
        p for p in papers
        if p.relevancy_score is None or p.relevancy_score >= min_score
    ]


def _split_missing(papers: List[BriefPaper], key) -> Tuple[List[BriefPaper], List[BriefPaper]]:
    present = [p for p in papers if key(p) is not None]
    missing = [p for p in papers if key(p) is None]
    return present, missing


def sort_papers(papers: List[BriefPaper], sort: PaperSort = PaperSort.RELEVANCY_DESC) -> List[BriefPaper]:
    """
    Sort papers; the sort is stable.
    
    For relevancy sorts unscored papers come last in either direction, and
    for year sorts papers without a year come last.
    """
    sort = PaperSort(sort)
    
    if sort in (PaperSort.RELEVANCY_DESC, PaperSort.RELEVANCY_ASC):
        scored, unscored = _split_missing(papers, lambda p: p.relevancy_score)
        scored.sort(key=lambda p: p.relevancy_score, reverse=sort == PaperSort.RELEVANCY_DESC)
        return scored + unscored
    
    if sort in (PaperSort.YEAR_DESC, PaperSort.YEAR_ASC):
        dated, undated = _split_missing(papers, lambda p: p.paper.year)
        dated.sort(key=lambda p: p.paper.year, reverse=sort == PaperSort.YEAR_DESC)
        return dated + undated
    
    return sorted(
        papers,
        key=lambda p: p.paper.title.casefold(),
        reverse=sort == PaperSort.TITLE_DESC,
    )


def bucket_for(score: Optional[float]) -> str:
    """Bucket label for a score."""
    if score is None:
        return UNSCORED_BUCKET
    label = RELEVANCY_BUCKETS[0][0]
    for name, lower in RELEVANCY_BUCKETS:
        if score >= lower:
            label = name
    return label


def bucket_counts(papers: List[BriefPaper]) -> Dict[str, int]:
    """Number of papers per relevancy bucket; every bucket is present."""
    counts = {name: 0 for name, _ in RELEVANCY_BUCKETS}
    counts[UNSCORED_BUCKET] = 0
    for paper in papers:
        counts[bucket_for(paper.relevancy_score)] += 1
    return counts


def paginate(papers: List[BriefPaper], page: int = 1, per_page: int = RESULTS_PER_PAGE) -> PaperPage:
    """
    Slice out one page (1-indexed).
    
    Out-of-range page numbers are clamped to the first or last page.
    """
    if per_page < 1:
        raise ValueError(f"per_page must be at least 1, got {per_page}")
    total_pages = max(1, math.ceil(len(papers) / per_page))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return PaperPage(
        items=papers[start:start + per_page],
        page=page,
        total_pages=total_pages,
        total_items=len(papers),
    )
