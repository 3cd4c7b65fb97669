"""
Main search pipeline.

Orchestrates one search run for a brief:
1. Sequential, rate-limited query execution
2. Deduplication by external id
3. Idempotent persistence of papers and brief associations
4. Batched LLM relevancy scoring

Only one run per brief may be active at a time. Failures are contained to
the smallest unit (query, candidate, scoring batch) and reported in the
returned RunContext.
"""
import asyncio
import dataclasses
from typing import Dict, List, Optional

from litbrief.core.config import Settings, settings as default_settings
from litbrief.core.logging import get_logger
from litbrief.core.retry import RateLimiter, RetryPolicy, SleepFunc
from litbrief.schemas.events import ProgressStep
from litbrief.schemas.papers import BriefPaper, PaperBriefAssociation
from litbrief.schemas.run import RunContext, RunPhase, ScoringReport
from litbrief.schemas.search import SearchOptions, SearchQuery, SortBy, SortOrder
from litbrief.services.run_lock import RunLock
from litbrief.services.sources.arxiv import ArxivSource
from litbrief.services.sources.base import BaseSource
from litbrief.services.store import PaperStore

from .types import (
    ProgressCallback,
    QueryStatusCallback,
    _noop_callback,
    _noop_query_callback,
)
from .query_generator import QueryGenerator
from .executor import SearchExecutor, collect_candidates
from .dedup import deduplicate_candidates
from .persistence import persist_candidates
from .scoring import RelevancyScorer
from .view import PaperSort, bucket_counts, filter_by_min_relevancy, sort_papers

logger = get_logger(__name__)


def default_search_options(config: Settings = default_settings) -> SearchOptions:
    """Search options from configuration: result cap and sort key/order."""
    return SearchOptions(
        max_results=config.search_max_results,
        sort_by=SortBy(config.search_sort_by),
        sort_order=SortOrder(config.search_sort_order),
    )


class BriefSearchPipeline:
    """
    Search, persist and score papers for research briefs.
    
    Every collaborator can be injected; anything left out is built from
    configuration. The rate limiter should be shared by every pipeline
    talking to the same search service.
    """
    
    def __init__(
        self,
        store: Optional[PaperStore] = None,
        source: Optional[BaseSource] = None,
        generator: Optional[QueryGenerator] = None,
        scorer: Optional[RelevancyScorer] = None,
        run_lock: Optional[RunLock] = None,
        limiter: Optional[RateLimiter] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
        config: Settings = default_settings,
    ):
        self.config = config
        self.policy = policy or RetryPolicy.from_settings(config)
        self.store = store or PaperStore(config.database_path)
        self.source = source or ArxivSource(
            base_url=config.arxiv_api_url,
            timeout=config.request_timeout_seconds,
        )
        self.limiter = limiter or RateLimiter(config.arxiv_min_interval_seconds, sleep=sleep)
        self.run_lock = run_lock or RunLock()
        self.generator = generator or QueryGenerator(policy=self.policy, sleep=sleep)
        self.scorer = scorer or RelevancyScorer(
            self.store,
            batch_count=config.scoring_batch_count,
            policy=self.policy,
            sleep=sleep,
        )
        self.executor = SearchExecutor(self.source, self.limiter, self.policy, sleep=sleep)
        self._sleep = sleep
    
    # === Queries ===
    
    async def generate_queries(
        self,
        question: str,
        max_queries: Optional[int] = None,
        on_progress: ProgressCallback = _noop_callback,
    ) -> List[SearchQuery]:
        """Generate selected, waiting queries for a research question."""
        return await self.generator.generate(
            question,
            max_queries or self.config.default_query_count,
            on_progress,
        )
    
    async def regenerate_queries(
        self,
        question: str,
        existing: List[SearchQuery],
        on_progress: ProgressCallback = _noop_callback,
    ) -> List[SearchQuery]:
        """Keep the selected queries and replace the rest with new ones."""
        return await self.generator.regenerate(question, existing, on_progress)
    
    # === Runs ===
    
    async def run(
        self,
        brief_id: str,
        question: str,
        queries: List[SearchQuery],
        options: Optional[SearchOptions] = None,
        score: bool = True,
        on_progress: ProgressCallback = _noop_callback,
        on_query_status: QueryStatusCallback = _noop_query_callback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunContext:
        """
        Run the selected queries for a brief and store what they find.
        
        The given queries are not modified; the run works on fresh copies
        (same ids, status reset to waiting) found in RunContext.queries.
        
        Args:
            brief_id: Brief the papers are collected for
            question: Research question, used for scoring
            queries: Queries to choose from; only selected ones are dispatched
            options: Date range, result cap and sort options
            score: Whether to score the persisted papers
            on_progress: Progress callback
            on_query_status: Called with a query on every status change
            cancel_event: Set to stop before the next query or scoring batch
            
        Returns:
            RunContext in a terminal phase
            
        Raises:
            ValueError: If no query is selected
            RunInProgressError: If a run for the brief is already active
        """
        selected = [q.fresh() for q in queries if q.is_selected]
        if not selected:
            raise ValueError("At least one selected query is required to run a search")
        
        context = RunContext(
            brief_id=brief_id,
            question=question,
            options=options or default_search_options(self.config),
            queries=selected,
        )
        
        async with self.run_lock.hold(brief_id):
            logger.info(f"Run {context.run_id} for brief {brief_id}: {len(selected)} queries")
            try:
                await self._execute(context, score, on_progress, on_query_status, cancel_event)
            except Exception as e:
                logger.error(f"Run {context.run_id} failed: {e!r}")
                context.finish(RunPhase.FAILED, str(e) or e.__class__.__name__)
                raise
        
        return context
    
    async def _execute(
        self,
        context: RunContext,
        score: bool,
        on_progress: ProgressCallback,
        on_query_status: QueryStatusCallback,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()
        
        # Step 1: Search
        context.phase = RunPhase.SEARCHING
        context.query_outcomes = await self.executor.execute(
            context.queries,
            context.options,
            on_query_status=on_query_status,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        context.candidates = collect_candidates(context.query_outcomes)
        
        # Step 2: Deduplicate
        on_progress(ProgressStep.DEDUPLICATING, "Removing duplicates...", f"{len(context.candidates)} results")
        context.unique_candidates = deduplicate_candidates(context.candidates)
        logger.info(f"Found {len(context.candidates)} results, {context.papers_found} unique papers")
        
        # Step 3: Persist whatever was found, even after a cancel
        context.phase = RunPhase.PERSISTING
        context.persist_outcomes = await persist_candidates(
            self.store,
            context.brief_id,
            context.unique_candidates,
            policy=dataclasses.replace(self.policy, timeout=None),
            sleep=self._sleep,
            on_progress=on_progress,
        )
        context.persisted_paper_ids = [o.paper_id for o in context.persist_outcomes if o.succeeded]
        
        # Step 4: Score
        if score and context.persisted_paper_ids and not cancelled():
            context.phase = RunPhase.SCORING
            papers = self.store.get_papers(context.persisted_paper_ids)
            report = await self.scorer.score(
                context.brief_id,
                context.question,
                papers,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
            context.batch_outcomes = report.batches
            context.scored_count = report.updated_count
        
        if cancelled():
            on_progress(ProgressStep.CANCELLED, "Search cancelled", f"{context.papers_found} papers saved")
            context.finish(RunPhase.CANCELLED)
            logger.info(f"Run {context.run_id} cancelled")
            return
        
        on_progress(
            ProgressStep.COMPLETE,
            "Search complete",
            f"Found {context.papers_found} papers, scored {context.scored_count}",
        )
        context.finish(RunPhase.COMPLETED)
        logger.info(
            f"Run {context.run_id} complete: {context.papers_found} papers, "
            f"{len(context.failed_queries)} failed queries, {len(context.failed_writes)} failed writes, "
            f"{context.scored_count} scored"
        )
    
    # === Scoring ===
    
    async def score_papers(
        self,
        brief_id: str,
        question: str,
        paper_ids: Optional[List[str]] = None,
        on_progress: ProgressCallback = _noop_callback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScoringReport:
        """
        Score a brief's papers, or only the given subset of them.
        
        Ids not associated with the brief are ignored.
        """
        brief_papers = self.store.list_brief_papers(brief_id)
        if paper_ids is not None:
            wanted = set(paper_ids)
            brief_papers = [bp for bp in brief_papers if bp.paper_id in wanted]
        papers = [bp.paper for bp in brief_papers]
        return await self.scorer.score(
            brief_id, question, papers, on_progress=on_progress, cancel_event=cancel_event
        )
    
    async def score_unscored(
        self,
        brief_id: str,
        question: str,
        on_progress: ProgressCallback = _noop_callback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScoringReport:
        """Score only the brief's papers that have no relevancy score yet."""
        unscored = [bp.paper_id for bp in self.store.list_brief_papers(brief_id) if not bp.is_scored]
        if not unscored:
            return ScoringReport()
        return await self.score_papers(brief_id, question, unscored, on_progress, cancel_event)
    
    # === View ===
    
    def list_papers(
        self,
        brief_id: str,
        min_relevancy: float = 0,
        sort: PaperSort = PaperSort.RELEVANCY_DESC,
    ) -> List[BriefPaper]:
        """Papers of a brief at or above min_relevancy (unscored always included), sorted."""
        papers = filter_by_min_relevancy(self.store.list_brief_papers(brief_id), min_relevancy)
        return sort_papers(papers, sort)
    
    def relevancy_counts(self, brief_id: str) -> Dict[str, int]:
        return bucket_counts(self.store.list_brief_papers(brief_id))
    
    def toggle_selection(self, brief_id: str, paper_id: str) -> PaperBriefAssociation:
        return self.store.toggle_selected(brief_id, paper_id)
    
    def set_selection(self, brief_id: str, paper_id: str, is_selected: bool) -> PaperBriefAssociation:
        return self.store.set_selected(brief_id, paper_id, is_selected)


def run_brief_search(
    brief_id: str,
    question: str,
    queries: List[SearchQuery],
    options: Optional[SearchOptions] = None,
    pipeline: Optional[BriefSearchPipeline] = None,
    **kwargs,
) -> RunContext:
    """
    Synchronous entry point for one run.
    
    Not usable from inside a running event loop; await BriefSearchPipeline.run there.
    """
    pipeline = pipeline or BriefSearchPipeline()
    return asyncio.run(pipeline.run(brief_id, question, queries, options, **kwargs))
