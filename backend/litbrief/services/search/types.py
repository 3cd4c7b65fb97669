"""
Common types and utilities for the search pipeline.
"""
from typing import Callable, Optional

from litbrief.schemas.events import ProgressStep
from litbrief.schemas.search import SearchQuery

# Type alias for progress callbacks
ProgressCallback = Callable[[ProgressStep, str, Optional[str]], None]

# Called with the query every time its status changes
QueryStatusCallback = Callable[[SearchQuery], None]

# Processing constants
DEFAULT_QUERY_COUNT = 3
SCORING_BATCH_COUNT = 4
RESULTS_PER_PAGE = 10


def _noop_callback(step: ProgressStep, message: str, detail: Optional[str] = None):
    """Default no-op callback when none provided."""
    pass


def _noop_query_callback(query: SearchQuery):
    pass
