"""
Paper-search services.

Each service is implemented in its own module and exposes a BaseSource
subclass whose search() makes exactly one request.

To add a new service:
1. Create a new file (e.g., new_source.py)
2. Implement a BaseSource subclass
3. Export it here
"""
from .base import BaseSource, SearchPage
from .arxiv import ArxivSource, parse_feed, parse_arxiv_id
from .query_format import apply_date_range, relax_grouped_terms, normalize_query, search_url

__all__ = [
    "BaseSource",
    "SearchPage",
    "ArxivSource",
    "parse_feed",
    "parse_arxiv_id",
    "apply_date_range",
    "relax_grouped_terms",
    "normalize_query",
    "search_url",
]
