"""
Deduplication of candidate papers by external identifier.
"""
from typing import Dict, List

from litbrief.core.logging import get_logger
from litbrief.schemas.papers import CandidatePaper

logger = get_logger(__name__)


def deduplicate_candidates(candidates: List[CandidatePaper]) -> List[CandidatePaper]:
    """
    Collapse candidates that share an external id.
    
    The first occurrence is kept in its original position with its own
    fields; the query texts of later duplicates are merged into it so the
    record remembers every query that found it. Inputs are not modified.
    """
    by_id: Dict[str, CandidatePaper] = {}
    
    for candidate in candidates:
        existing = by_id.get(candidate.external_id)
        if existing is None:
            by_id[candidate.external_id] = candidate.model_copy(
                update={"search_queries": list(candidate.search_queries)}
            )
            continue
        for query in candidate.search_queries:
            if query not in existing.search_queries:
                existing.search_queries.append(query)
    
    removed = len(candidates) - len(by_id)
    if removed:
        logger.debug(f"Dedup: {len(candidates)} -> {len(by_id)} (removed {removed} duplicates)")
    return list(by_id.values())
