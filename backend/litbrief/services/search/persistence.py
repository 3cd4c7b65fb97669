"""
Persistence of deduplicated candidates for a brief.

Each candidate is written in its own transaction and retried on transient
store errors. A candidate that cannot be written is reported and skipped,
so one bad write never loses the rest of the run.
"""
import asyncio
from typing import List, Optional

from litbrief.core.exceptions import PersistenceError
from litbrief.core.logging import get_logger
from litbrief.core.retry import RetryPolicy, SleepFunc, call_with_retry
from litbrief.schemas.events import ProgressStep
from litbrief.schemas.papers import CandidatePaper
from litbrief.schemas.run import PersistOutcome
from litbrief.services.store import PaperStore, SaveResult
from .types import ProgressCallback, _noop_callback

logger = get_logger(__name__)


async def persist_candidates(
    store: PaperStore,
    brief_id: str,
    candidates: List[CandidatePaper],
    policy: Optional[RetryPolicy] = None,
    sleep: SleepFunc = asyncio.sleep,
    on_progress: ProgressCallback = _noop_callback,
) -> List[PersistOutcome]:
    """
    Insert-if-absent every candidate and its association with the brief.
    
    Re-running with the same candidates creates no new rows.
    
    Args:
        store: Paper store
        brief_id: Brief the candidates belong to
        candidates: Deduplicated candidates
        policy: Retry policy for each write
        sleep: Sleep used between retries
        on_progress: Progress callback
        
    Returns:
        One outcome per candidate, in input order
    """
    policy = policy or RetryPolicy(timeout=None)
    
    async def save(candidate: CandidatePaper) -> SaveResult:
        return store.save_candidate(brief_id, candidate)
    
    on_progress(ProgressStep.PERSISTING, "Saving papers...", f"{len(candidates)} papers")
    
    outcomes: List[PersistOutcome] = []
    for candidate in candidates:
        try:
            result = await call_with_retry(
                save,
                candidate,
                policy=policy,
                sleep=sleep,
                label=f"persist {candidate.external_id}",
            )
        except Exception as e:
            error = PersistenceError(candidate.external_id, e)
            logger.warning(str(error))
            outcomes.append(PersistOutcome(external_id=candidate.external_id, error=str(error)))
            continue
        
        outcomes.append(PersistOutcome(
            external_id=candidate.external_id,
            paper_id=result.paper.id,
            paper_created=result.paper_created,
            association_created=result.association_created,
        ))
    
    created = sum(1 for o in outcomes if o.paper_created)
    linked = sum(1 for o in outcomes if o.association_created)
    failed = sum(1 for o in outcomes if not o.succeeded)
    logger.info(
        f"Persisted {len(outcomes) - failed}/{len(outcomes)} candidates "
        f"({created} new papers, {linked} new associations, {failed} failed)"
    )
    return outcomes
