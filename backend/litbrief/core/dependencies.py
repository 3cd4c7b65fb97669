"""
Dependencies

Cached providers for configuration and shared services.
Hosts and tests call these instead of constructing services directly,
so every caller shares one store, one run lock and one rate limiter.
"""
from functools import lru_cache

from litbrief.core.config import Settings
from litbrief.core.retry import RateLimiter, RetryPolicy
from litbrief.services.run_lock import RunLock
from litbrief.services.search.pipeline import BriefSearchPipeline
from litbrief.services.sources.arxiv import ArxivSource
from litbrief.services.store import PaperStore


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.
    
    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() in tests after changing the environment.
    """
    return Settings()


@lru_cache()
def get_store() -> PaperStore:
    """Get the paper store for the configured database path."""
    return PaperStore(get_settings().database_path)


@lru_cache()
def get_run_lock() -> RunLock:
    """
    Get the run lock instance.
    
    Uses lru_cache so every pipeline in the process sees the same
    in-memory registry when Redis is unavailable.
    """
    return RunLock()


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Get the limiter shared by every request to the search service."""
    return RateLimiter(get_settings().arxiv_min_interval_seconds)


@lru_cache()
def get_source() -> ArxivSource:
    config = get_settings()
    return ArxivSource(base_url=config.arxiv_api_url, timeout=config.request_timeout_seconds)


def get_pipeline() -> BriefSearchPipeline:
    """
    Get a pipeline wired to the shared services.
    
    Pipelines are cheap; the shared state lives in the cached providers above.
    """
    config = get_settings()
    return BriefSearchPipeline(
        store=get_store(),
        source=get_source(),
        run_lock=get_run_lock(),
        limiter=get_rate_limiter(),
        policy=RetryPolicy.from_settings(config),
        config=config,
    )
