"""
Sequential query execution against a paper-search service.

Queries run one at a time in list order. Every request goes through a
shared rate limiter, transient failures are retried with backoff, and a
query that still fails is marked failed without stopping the others.
"""
import asyncio
import dataclasses
from typing import List, Optional

from litbrief.core.exceptions import QueryExecutionError, RunCancelledError
from litbrief.core.logging import get_logger
from litbrief.core.retry import RateLimiter, RetryPolicy, SleepFunc, call_with_retry
from litbrief.schemas.events import ProgressStep
from litbrief.schemas.papers import CandidatePaper
from litbrief.schemas.run import QueryOutcome
from litbrief.schemas.search import QueryStatus, SearchOptions, SearchQuery
from litbrief.services.sources.base import BaseSource, SearchPage
from litbrief.services.sources.query_format import (
    apply_date_range,
    normalize_query,
    relax_grouped_terms,
)
from .types import (
    ProgressCallback,
    QueryStatusCallback,
    _noop_callback,
    _noop_query_callback,
)

logger = get_logger(__name__)


def build_query_text(query: str, options: SearchOptions) -> str:
    """Query string as dispatched, after normalization, relaxing and date bounds."""
    text = normalize_query(query)
    if options.relax_grouped_terms:
        text = relax_grouped_terms(text)
    return apply_date_range(text, options.date_range)


def collect_candidates(outcomes: List[QueryOutcome]) -> List[CandidatePaper]:
    """Candidates of all successful queries, in query order then result order."""
    return [paper for outcome in outcomes if outcome.succeeded for paper in outcome.papers]


class SearchExecutor:
    """
    Runs queries against one source, spaced by a rate limiter.
    
    Args:
        source: Search service client
        limiter: Minimum-interval limiter shared by every request to the service
        policy: Retry policy; its timeout applies to each request, not to the wait
        sleep: Sleep used between retries (injectable for tests)
    """
    
    def __init__(
        self,
        source: BaseSource,
        limiter: RateLimiter,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.source = source
        self.limiter = limiter
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
    
    async def execute(
        self,
        queries: List[SearchQuery],
        options: Optional[SearchOptions] = None,
        on_query_status: QueryStatusCallback = _noop_query_callback,
        on_progress: ProgressCallback = _noop_callback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[QueryOutcome]:
        """
        Execute queries sequentially, updating each query's status in place.
        
        Status moves waiting -> processing -> completed|failed and every change
        is reported through on_query_status. If cancel_event is set, no
        further request is sent: a query waiting to retry is failed and the
        remaining ones stay waiting.
        
        Returns:
            One outcome per dispatched query, in order
        """
        options = options or SearchOptions()
        outcomes: List[QueryOutcome] = []
        total = len(queries)
        
        for index, query in enumerate(queries, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Search cancelled, {total - index + 1} queries not dispatched")
                break
            
            on_progress(
                ProgressStep.SEARCHING,
                f"Searching {self.source.name} ({index}/{total})...",
                query.text,
            )
            outcome = await self._execute_one(query, options, on_query_status, cancel_event)
            if outcome is None:
                logger.info(f"Search cancelled, {total - index + 1} queries not dispatched")
                break
            outcomes.append(outcome)
        
        completed = sum(1 for o in outcomes if o.succeeded)
        logger.info(f"Executed {len(outcomes)} queries: {completed} completed, {len(outcomes) - completed} failed")
        return outcomes
    
    async def _execute_one(
        self,
        query: SearchQuery,
        options: SearchOptions,
        on_query_status: QueryStatusCallback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[QueryOutcome]:
        query.status = QueryStatus.PROCESSING
        query.error = None
        on_query_status(query)
        
        text = build_query_text(query.text, options)
        attempts = 0
        
        def check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"search {query.text!r}")
        
        async def dispatch() -> SearchPage:
            nonlocal attempts
            check_cancelled()
            await self.limiter.acquire()
            # A cancel may arrive while waiting for the limiter
            check_cancelled()
            attempts += 1
            search = self.source.search(
                text,
                max_results=options.max_results,
                sort_by=options.sort_by,
                sort_order=options.sort_order,
            )
            if self.policy.timeout is None:
                return await search
            return await asyncio.wait_for(search, timeout=self.policy.timeout)
        
        try:
            page = await call_with_retry(
                dispatch,
                policy=dataclasses.replace(self.policy, timeout=None),
                sleep=self._sleep,
                label=f"search {query.text!r}",
            )
        except Exception as e:
            if isinstance(e, RunCancelledError):
                if attempts == 0:
                    query.status = QueryStatus.WAITING
                    on_query_status(query)
                    return None
                logger.info(f"Query {query.text!r}: {e} after {attempts} attempts")
            else:
                logger.warning(str(QueryExecutionError(query.text, e)))
            query.status = QueryStatus.FAILED
            query.error = str(e) or e.__class__.__name__
            on_query_status(query)
            return QueryOutcome(
                query_id=query.id,
                query_text=query.text,
                status=QueryStatus.FAILED,
                error=query.error,
                attempts=attempts,
            )
        
        # Candidates are tagged with the query as the user sees it
        papers = [
            p.model_copy(update={"search_queries": [query.text]}) for p in page.papers
        ]
        logger.info(f"Query {query.text!r}: {len(papers)} papers ({page.total_results} total matches)")
        
        query.status = QueryStatus.COMPLETED
        on_query_status(query)
        return QueryOutcome(
            query_id=query.id,
            query_text=query.text,
            status=QueryStatus.COMPLETED,
            papers=papers,
            total_results=page.total_results,
            attempts=attempts,
        )
