"""
Scoring Schemas

Shape of the relevancy-scoring response: {"scores": [{paperId, score, justification}]}.
"""
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field

# (label, lower bound inclusive, upper bound inclusive) as described to the model
SCORE_BANDS = [
    ("Not relevant at all", 0, 20),
    ("Slightly relevant", 21, 40),
    ("Moderately relevant", 41, 60),
    ("Highly relevant", 61, 80),
    ("Extremely relevant, directly addresses the research question", 81, 100),
]


class RelevancyScore(BaseModel):
    """
    One scored paper within a batch response.
    
    Ids are kept as strings even when the model writes an arXiv id as a
    bare JSON number (1706.03762).
    """
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )
    
    paper_id: str = Field(alias="paperId", min_length=1)
    score: float = Field(ge=0, le=100)
    justification: str = ""


class ScoreBatchResponse(BaseModel):
    """
    Top-level scoring response.
    
    Entries are kept raw here and validated one by one, so a single bad
    entry does not discard the rest of the batch.
    """
    scores: List[Any]
