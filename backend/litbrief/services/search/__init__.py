"""
Literature Search Pipeline

This package finds and scores papers for a research brief by:
1. Generating arXiv queries from the research question with an LLM
2. Running the selected queries one at a time against arXiv, rate limited
3. Deduplicating results by arXiv id
4. Storing papers and their brief associations idempotently
5. Scoring relevancy to the question in a fixed number of LLM batches

Package Structure:
- pipeline.py: BriefSearchPipeline orchestration and run_brief_search
- query_generator.py: Query generation with an LLM
- executor.py: Sequential, rate-limited query execution
- dedup.py: Deduplication by external id
- persistence.py: Per-candidate idempotent writes
- scoring.py: Batched LLM relevancy scoring
- view.py: Filtering, sorting, bucket counts and pagination
- types.py: Common types and constants
"""

# Main pipeline - primary public interface
from .pipeline import BriefSearchPipeline, run_brief_search, default_search_options

# Individual components for advanced usage
from .query_generator import QueryGenerator, parse_query_lines
from .executor import SearchExecutor, build_query_text, collect_candidates
from .dedup import deduplicate_candidates
from .persistence import persist_candidates
from .scoring import RelevancyScorer, partition_batches, parse_score_response
from .view import (
    PaperSort,
    PaperPage,
    RELEVANCY_BUCKETS,
    filter_by_min_relevancy,
    sort_papers,
    bucket_counts,
    paginate,
)

# Types for callers
from .types import ProgressCallback, QueryStatusCallback, _noop_callback

__all__ = [
    # Main pipeline
    "BriefSearchPipeline",
    "run_brief_search",
    "default_search_options",
    
    # Components
    "QueryGenerator",
    "parse_query_lines",
    "SearchExecutor",
    "build_query_text",
    "collect_candidates",
    "deduplicate_candidates",
    "persist_candidates",
    "RelevancyScorer",
    "partition_batches",
    "parse_score_response",
    
    # View
    "PaperSort",
    "PaperPage",
    "RELEVANCY_BUCKETS",
    "filter_by_min_relevancy",
    "sort_papers",
    "bucket_counts",
    "paginate",
    
    # Types
    "ProgressCallback",
    "QueryStatusCallback",
]
