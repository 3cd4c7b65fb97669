"""
LLM relevancy scoring.

Papers are split into a fixed number of batches that are scored one after
another. Each batch is one structured-output model call returning a
ScoreBatchResponse ({"scores": [{"paperId", "score", "justification"}]}).
A batch whose call or response fails leaves its papers unscored and the
remaining batches still run.
"""
import asyncio
import math
import sqlite3
from typing import Any, Dict, List, Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from litbrief.core.exceptions import RunCancelledError, ScoringParseError
from litbrief.core.logging import get_logger
from litbrief.core.retry import RetryPolicy, SleepFunc, call_with_retry
from litbrief.schemas.events import ProgressStep
from litbrief.schemas.papers import Paper
from litbrief.schemas.run import BatchOutcome, ScoringReport
from litbrief.schemas.scoring import SCORE_BANDS, RelevancyScore, ScoreBatchResponse
from litbrief.services.llm import get_scoring_llm
from litbrief.services.store import PaperStore
from .types import SCORING_BATCH_COUNT, ProgressCallback, _noop_callback

logger = get_logger(__name__)

MAX_ABSTRACT_CHARS = 1500


def _band_lines() -> str:
    return "\n".join(f"- {low}-{high}: {label}" for label, low, high in SCORE_BANDS)


SYSTEM_PROMPT = f"""You are a research assistant scoring papers for relevance to a research question.

Score every paper from 0 to 100:
{_band_lines()}

Respond with a JSON object only, in exactly this shape:
{{"scores": [{{"paperId": "<id>", "score": <0-100>, "justification": "<one sentence>"}}]}}

Include one entry per paper and use the paper IDs exactly as given."""


def partition_batches(papers: List[Paper], batch_count: int = SCORING_BATCH_COUNT) -> List[List[Paper]]:
    """
    Split papers into at most batch_count contiguous batches.
    
    Batch size is ceil(n / batch_count), so the last batch may be shorter
    and fewer batches are produced when there are fewer papers than batches.
    """
    if batch_count < 1:
        raise ValueError(f"batch_count must be at least 1, got {batch_count}")
    if not papers:
        return []
    size = max(1, math.ceil(len(papers) / batch_count))
    return [papers[i:i + size] for i in range(0, len(papers), size)]


def build_scoring_messages(question: str, papers: List[Paper]) -> List[BaseMessage]:
    papers_text = ""
    for paper in papers:
        abstract = paper.abstract[:MAX_ABSTRACT_CHARS]
        papers_text += f"""
ID: {paper.id}
Title: {paper.title}
Abstract: {abstract}
---
"""
    
    user_prompt = f"""Research question: {question}

Papers:
{papers_text}
Score each paper's relevance to the research question."""
    
    return [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=user_prompt)]


def parse_score_response(response: Any, batch_index: Optional[int] = None) -> List[RelevancyScore]:
    """
    Validate a structured scoring response entry by entry.
    
    Entries with a missing id or a score outside [0, 100] are dropped
    individually; the rest of the batch is kept.
    
    Raises:
        ScoringParseError: If the response does not have a scores list
    """
    try:
        response = ScoreBatchResponse.model_validate(response)
    except ValidationError as e:
        raise ScoringParseError(f"unexpected response shape: {e.error_count()} errors", batch_index) from e
    
    scores = []
    for entry in response.scores:
        try:
            scores.append(RelevancyScore.model_validate(entry))
        except ValidationError:
            logger.warning(f"Dropping invalid score entry: {entry!r}")
    return scores


class RelevancyScorer:
    """
    Scores a brief's papers with an LLM and stores the results.
    
    Args:
        store: Paper store holding the brief's associations
        llm: Runnable whose ainvoke() returns a ScoreBatchResponse; defaults to
            the structured-output scoring model
        batch_count: Number of batches to split the papers into
        policy: Retry policy for each model call
        sleep: Sleep used between retries (injectable for tests)
    """
    
    def __init__(
        self,
        store: PaperStore,
        llm=None,
        batch_count: int = SCORING_BATCH_COUNT,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.store = store
        self._llm = llm
        self.batch_count = batch_count
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
    
    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_scoring_llm()
        return self._llm
    
    async def score(
        self,
        brief_id: str,
        question: str,
        papers: List[Paper],
        on_progress: ProgressCallback = _noop_callback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScoringReport:
        """
        Score papers batch by batch, writing each score as soon as it is parsed.
        
        If cancel_event is set, no further batch is started and a batch
        waiting to retry gives up.
        """
        batches = partition_batches(papers, self.batch_count)
        report = ScoringReport()
        if not batches:
            return report
        
        logger.info(f"Scoring {len(papers)} papers in {len(batches)} batches")
        
        for index, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Scoring cancelled before batch {index + 1}/{len(batches)}")
                break
            
            on_progress(
                ProgressStep.SCORING,
                f"Scoring relevancy (batch {index + 1}/{len(batches)})...",
                f"{len(batch)} papers",
            )
            outcome = await self._score_batch(brief_id, question, batch, index, cancel_event)
            report.batches.append(outcome)
        
        logger.info(
            f"Scoring done: {report.updated_count}/{len(papers)} papers scored, "
            f"{len(report.failed_batches)} batches failed"
        )
        return report
    
    async def _score_batch(
        self,
        brief_id: str,
        question: str,
        batch: List[Paper],
        index: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchOutcome:
        paper_ids = [p.id for p in batch]
        messages = build_scoring_messages(question, batch)
        
        async def invoke() -> Any:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"scoring batch {index + 1}")
            return await self.llm.ainvoke(messages)
        
        try:
            response = await call_with_retry(
                invoke,
                policy=self._policy,
                sleep=self._sleep,
                label=f"scoring batch {index + 1}",
            )
            scores = parse_score_response(response, index)
        except OutputParserException as e:
            error = ScoringParseError(str(e).splitlines()[0] if str(e) else "unparseable output", index)
            logger.warning(str(error))
            return BatchOutcome(index=index, paper_ids=paper_ids, error=str(error))
        except ScoringParseError as e:
            logger.warning(str(e))
            return BatchOutcome(index=index, paper_ids=paper_ids, error=str(e))
        except Exception as e:
            logger.warning(f"Scoring batch {index + 1} failed: {e!r}")
            return BatchOutcome(index=index, paper_ids=paper_ids, error=str(e) or e.__class__.__name__)
        
        # Only ids from this batch are accepted; the arXiv id works as well
        lookup: Dict[str, Paper] = {p.id: p for p in batch}
        for paper in batch:
            lookup.setdefault(paper.external_id, paper)
        
        scored: List[str] = []
        for entry in scores:
            paper = lookup.get(entry.paper_id)
            if paper is None:
                logger.debug(f"Ignoring score for unknown paper id {entry.paper_id!r}")
                continue
            try:
                updated = self.store.update_relevancy(
                    brief_id, paper.id, entry.score, entry.justification or None
                )
            except sqlite3.Error as e:
                logger.warning(f"Could not store score for paper {paper.external_id}: {e}")
                continue
            if updated and paper.id not in scored:
                scored.append(paper.id)
        
        logger.debug(f"Batch {index + 1}: {len(scored)}/{len(batch)} papers scored")
        return BatchOutcome(index=index, paper_ids=paper_ids, scored_paper_ids=scored)
