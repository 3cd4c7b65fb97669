"""
LLM Client Management

Provides cached instances of LLM clients to avoid recreating
connections for every call. Uses lru_cache for thread-safe
singleton-like behavior.
"""
from functools import lru_cache
from typing import Any

from langchain_openai import ChatOpenAI

from litbrief.core.config import settings
from litbrief.schemas.scoring import ScoreBatchResponse


@lru_cache(maxsize=4)
def get_llm(
    model: str = "gpt-4o-mini",
    temperature: float = 0.0
) -> ChatOpenAI:
    """
    Get a cached LLM instance.
    
    Args:
        model: OpenAI model name (e.g., "gpt-4o-mini", "gpt-4o")
        temperature: Temperature for generation (0 = deterministic)
        
    Returns:
        Cached ChatOpenAI instance
    """
    return ChatOpenAI(
        model=model,
        temperature=temperature,
        api_key=settings.OPENAI_API_KEY,
        # Retries are handled by the pipeline's own retry policy
        max_retries=0,
    )


def get_generation_llm() -> ChatOpenAI:
    """LLM used for turning a research question into search queries."""
    return get_llm(settings.openai_model, settings.generation_temperature)


def get_scoring_llm():
    """
    LLM used for relevancy scoring, returning a parsed ScoreBatchResponse.
    
    JSON mode tolerates a fenced reply; output that is not JSON of the
    right shape raises OutputParserException.
    
    This creates a new runnable each time because with_structured_output
    returns a new object. The underlying HTTP client is still shared.
    """
    llm = get_llm(settings.openai_model, settings.scoring_temperature)
    return llm.with_structured_output(ScoreBatchResponse, method="json_mode")


def message_text(message: Any) -> str:
    """Plain text of a chat model response."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(part.get("text", ""))
            else:
                parts.append(str(part))
        return "".join(parts)
    return str(content or "")


def clear_llm_cache():
    """
    Clear the LLM client cache.
    
    Useful for testing or when you need to force re-initialization.
    """
    get_llm.cache_clear()
