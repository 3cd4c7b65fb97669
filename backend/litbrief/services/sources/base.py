"""
Base types and interfaces for paper-search services.

Defines the page of results every source returns and the abstract base
class a source implements so the search executor can drive it.
"""
from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel, Field

from litbrief.schemas.papers import CandidatePaper
from litbrief.schemas.search import SortBy, SortOrder


class SearchPage(BaseModel):
    """One page of results for one query."""
    papers: List[CandidatePaper] = Field(default_factory=list)
    total_results: int = 0
    start_index: int = 0
    items_per_page: int = 0


class BaseSource(ABC):
    """
    Abstract base class for paper-search services.
    
    Implementations make exactly one request per search() call and raise
    SourceError subclasses on failure; retrying and rate limiting are the
    caller's job.
    
    Example:
        class NewSource(BaseSource):
            @property
            def name(self) -> str:
                return "NewSource"
            
            async def search(self, query, max_results=100, sort_by=..., sort_order=...):
                ...
    """
    
    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the search service."""
        pass
    
    @abstractmethod
    async def search(
        self,
        query: str,
        max_results: int = 100,
        sort_by: SortBy = SortBy.RELEVANCE,
        sort_order: SortOrder = SortOrder.DESCENDING,
    ) -> SearchPage:
        """
        Search this service for papers matching the query.
        
        Args:
            query: Query string in the service's own syntax
            max_results: Maximum number of results to return
            sort_by: Sort key
            sort_order: Sort direction
            
        Returns:
            SearchPage with candidate papers tagged with the query text
        """
        pass
