"""Tests for services/search/pipeline.py - End-to-end run orchestration."""
import asyncio
import json

import pytest


@pytest.fixture
def build_pipeline(store, fake_clock, fake_llm, fake_scoring_llm, no_retry_policy):
    """Factory wiring a pipeline to fakes: build_pipeline(source, scoring_replies)."""
    from litbrief.core.retry import RateLimiter
    from litbrief.services.run_lock import RunLock
    from litbrief.services.search.pipeline import BriefSearchPipeline
    from litbrief.services.search.query_generator import QueryGenerator
    from litbrief.services.search.scoring import RelevancyScorer
    
    def _build(source, scoring_replies=None, generation_replies=None, run_lock=None):
        return BriefSearchPipeline(
            store=store,
            source=source,
            generator=QueryGenerator(llm=fake_llm(generation_replies or []), policy=no_retry_policy),
            scorer=RelevancyScorer(store, llm=fake_scoring_llm(scoring_replies or []), batch_count=1, policy=no_retry_policy),
            run_lock=run_lock or RunLock(use_redis=False),
            limiter=RateLimiter(3.0, clock=fake_clock, sleep=fake_clock.sleep),
            policy=no_retry_policy,
            sleep=fake_clock.sleep,
        )
    
    return _build


class TestRun:
    """Test BriefSearchPipeline.run."""

    @pytest.mark.asyncio
    async def test_full_run(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.run import RunPhase
        from litbrief.schemas.search import QueryStatus, SearchQuery
        
        source = fake_source(results={
            "ti:a": [make_candidate("1"), make_candidate("2")],
            "ti:b": [make_candidate("2"), make_candidate("3")],
        })
        reply = json.dumps({"scores": [{"paperId": i, "score": 80} for i in ("1", "2", "3")]})
        pipeline = build_pipeline(source, scoring_replies=[reply])
        
        context = await pipeline.run("B1", "q?", [SearchQuery(text="ti:a"), SearchQuery(text="ti:b")])
        
        assert context.phase == RunPhase.COMPLETED
        assert context.finished_at is not None
        assert len(context.candidates) == 4
        assert context.papers_found == 3
        assert context.scored_count == 3
        assert all(q.status == QueryStatus.COMPLETED for q in context.queries)
        assert store.count_associations(brief_id="B1") == 3
        
        shared = store.get_paper_by_external_id("2")
        assert store.get_association("B1", shared.id).search_queries == ["ti:a", "ti:b"]

    @pytest.mark.asyncio
    async def test_paper_found_by_both_queries_stored_once(
        self, build_pipeline, fake_source, make_candidate, store, fake_clock
    ):
        from litbrief.schemas.search import SearchQuery

        texts = ["ti:attention AND abs:transformer", "au:Vaswani"]
        source = fake_source(results={
            texts[0]: [make_candidate("1706.03762"), make_candidate("1409.0473")],
            texts[1]: [make_candidate("1706.03762")],
        })

        context = await build_pipeline(source).run(
            "B1", "q?", [SearchQuery(text=t) for t in texts], score=False
        )

        assert source.calls[1][1] - source.calls[0][1] >= 3.0
        assert store.count_papers(external_id="1706.03762") == 1
        paper = store.get_paper_by_external_id("1706.03762")
        assert store.count_associations(brief_id="B1", paper_id=paper.id) == 1
        assert sum(o.association_created for o in context.persist_outcomes) == 2

    @pytest.mark.asyncio
    async def test_only_selected_queries_run(self, build_pipeline, fake_source):
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source()
        pipeline = build_pipeline(source)
        queries = [SearchQuery(text="ti:on"), SearchQuery(text="ti:off", is_selected=False)]
        
        context = await pipeline.run("B1", "q?", queries, score=False)
        
        assert [q for q, _ in source.calls] == ["ti:on"]
        assert [q.text for q in context.queries] == ["ti:on"]

    @pytest.mark.asyncio
    async def test_caller_queries_not_modified(self, build_pipeline, fake_source):
        from litbrief.schemas.search import QueryStatus, SearchQuery
        
        query = SearchQuery(text="ti:x", status=QueryStatus.FAILED, error="old failure")
        context = await build_pipeline(fake_source()).run("B1", "q?", [query], score=False)
        
        assert query.status == QueryStatus.FAILED
        assert context.queries[0].id == query.id
        assert context.queries[0].status == QueryStatus.COMPLETED
        assert context.queries[0].error is None

    @pytest.mark.asyncio
    async def test_no_selected_queries(self, build_pipeline, fake_source):
        from litbrief.schemas.search import SearchQuery
        
        with pytest.raises(ValueError):
            await build_pipeline(fake_source()).run("B1", "q?", [SearchQuery(text="ti:x", is_selected=False)])

    @pytest.mark.asyncio
    async def test_failed_query_reported(self, build_pipeline, fake_source, make_candidate):
        from litbrief.core.exceptions import SourceHTTPError
        from litbrief.schemas.run import RunPhase
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source(
            results={"ti:ok": [make_candidate("1")]},
            errors={"ti:bad": [SourceHTTPError("arXiv", 400)]},
        )
        context = await build_pipeline(source).run(
            "B1", "q?", [SearchQuery(text="ti:bad"), SearchQuery(text="ti:ok")], score=False
        )
        
        assert context.phase == RunPhase.COMPLETED
        assert [q.text for q in context.failed_queries] == ["ti:bad"]
        assert context.papers_found == 1

    @pytest.mark.asyncio
    async def test_scoring_failure_keeps_papers(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.run import RunPhase
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source(results={"ti:a": [make_candidate("1"), make_candidate("2")]})
        context = await build_pipeline(source, scoring_replies=["not json"]).run(
            "B1", "q?", [SearchQuery(text="ti:a")]
        )
        
        assert context.phase == RunPhase.COMPLETED
        assert context.scored_count == 0
        assert sorted(context.unscored_paper_ids) == sorted(context.persisted_paper_ids)
        assert store.count_associations(brief_id="B1") == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source(results={"ti:a": [make_candidate("1706.03762")]})
        pipeline = build_pipeline(source)
        
        await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")], score=False)
        context = await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")], score=False)
        
        assert not context.persist_outcomes[0].paper_created
        assert not context.persist_outcomes[0].association_created
        assert store.count_papers() == 1
        assert store.count_associations() == 1

    @pytest.mark.asyncio
    async def test_concurrent_run_for_same_brief_rejected(self, build_pipeline, fake_source):
        from litbrief.core.exceptions import RunInProgressError
        from litbrief.schemas.search import SearchQuery
        from litbrief.services.run_lock import RunLock
        
        lock = RunLock(use_redis=False)
        lock.try_acquire("B1")
        pipeline = build_pipeline(fake_source(), run_lock=lock)
        
        with pytest.raises(RunInProgressError):
            await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")])
        
        context = await pipeline.run("B2", "q?", [SearchQuery(text="ti:a")], score=False)
        assert context.brief_id == "B2"

    @pytest.mark.asyncio
    async def test_cancel_after_first_query(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.run import RunPhase
        from litbrief.schemas.search import QueryStatus, SearchQuery
        
        cancel = asyncio.Event()
        source = fake_source(results={"ti:a": [make_candidate("1")], "ti:b": [make_candidate("2")]})
        
        def on_status(query):
            if query.status == QueryStatus.COMPLETED:
                cancel.set()
        
        context = await build_pipeline(source).run(
            "B1", "q?", [SearchQuery(text="ti:a"), SearchQuery(text="ti:b")],
            on_query_status=on_status, cancel_event=cancel,
        )
        
        assert context.phase == RunPhase.CANCELLED
        assert [q.status for q in context.queries] == [QueryStatus.COMPLETED, QueryStatus.WAITING]
        assert context.batch_outcomes == []
        assert store.count_associations(brief_id="B1") == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed_and_releases_lock(self, build_pipeline, fake_source, store):
        from unittest.mock import patch
        from litbrief.schemas.search import SearchQuery
        
        pipeline = build_pipeline(fake_source())
        with patch("litbrief.services.search.pipeline.deduplicate_candidates", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError):
                await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")])
        
        assert not pipeline.run_lock.is_locked("B1")

    @pytest.mark.asyncio
    async def test_progress_steps_in_order(self, build_pipeline, fake_source, make_candidate):
        from litbrief.schemas.events import ProgressStep
        from litbrief.schemas.search import SearchQuery
        
        steps = []
        source = fake_source(results={"ti:a": [make_candidate("1")]})
        reply = json.dumps({"scores": [{"paperId": "1", "score": 50}]})
        
        await build_pipeline(source, scoring_replies=[reply]).run(
            "B1", "q?", [SearchQuery(text="ti:a")],
            on_progress=lambda step, message, detail=None: steps.append(step),
        )
        
        assert steps == [
            ProgressStep.SEARCHING,
            ProgressStep.DEDUPLICATING,
            ProgressStep.PERSISTING,
            ProgressStep.SCORING,
            ProgressStep.COMPLETE,
        ]


class TestQueriesAndView:
    """Test the non-run operations."""

    @pytest.mark.asyncio
    async def test_generate_queries_uses_default_count(self, build_pipeline, fake_source):
        pipeline = build_pipeline(fake_source(), generation_replies=["ti:a\nti:b\nti:c\nti:d"])
        queries = await pipeline.generate_queries("q?")
        assert [q.text for q in queries] == ["ti:a", "ti:b", "ti:c"]

    @pytest.mark.asyncio
    async def test_score_unscored_only(self, build_pipeline, fake_source, make_candidate, store, fake_scoring_llm):
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source(results={"ti:a": [make_candidate("1"), make_candidate("2")]})
        pipeline = build_pipeline(source)
        await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")], score=False)
        scored = store.get_paper_by_external_id("1")
        store.update_relevancy("B1", scored.id, 90)
        
        llm = fake_scoring_llm([json.dumps({"scores": [{"paperId": "2", "score": 30}]})])
        pipeline.scorer._llm = llm
        report = await pipeline.score_unscored("B1", "q?")
        
        assert report.updated_count == 1
        assert "ID: " + scored.id not in llm.calls[0][1].content
        assert pipeline.relevancy_counts("B1")["20-39"] == 1
        assert pipeline.relevancy_counts("B1")["80-100"] == 1

    @pytest.mark.asyncio
    async def test_list_papers_filters_and_sorts(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.search import SearchQuery
        from litbrief.services.search.view import PaperSort
        
        source = fake_source(results={"ti:a": [make_candidate(i) for i in ("1", "2", "3")]})
        pipeline = build_pipeline(source)
        await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")], score=False)
        store.update_relevancy("B1", store.get_paper_by_external_id("1").id, 20)
        store.update_relevancy("B1", store.get_paper_by_external_id("2").id, 90)
        
        listed = pipeline.list_papers("B1", min_relevancy=40, sort=PaperSort.RELEVANCY_DESC)
        assert [bp.paper.external_id for bp in listed] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_toggle_selection_persists(self, build_pipeline, fake_source, make_candidate, store):
        from litbrief.schemas.search import SearchQuery
        
        source = fake_source(results={"ti:a": [make_candidate("1")]})
        pipeline = build_pipeline(source)
        await pipeline.run("B1", "q?", [SearchQuery(text="ti:a")], score=False)
        paper_id = store.get_paper_by_external_id("1").id
        
        assert pipeline.toggle_selection("B1", paper_id).is_selected
        assert store.get_association("B1", paper_id).is_selected


class TestRunBriefSearch:
    """Test the synchronous entry point."""

    def test_runs_without_event_loop(self, build_pipeline, fake_source, make_candidate):
        from litbrief.schemas.run import RunPhase
        from litbrief.schemas.search import SearchQuery
        from litbrief.services.search.pipeline import run_brief_search
        
        pipeline = build_pipeline(fake_source(results={"ti:a": [make_candidate("1")]}))
        context = run_brief_search("B1", "q?", [SearchQuery(text="ti:a")], pipeline=pipeline, score=False)
        
        assert context.phase == RunPhase.COMPLETED
        assert context.papers_found == 1
