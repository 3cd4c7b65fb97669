"""
Pytest fixtures and configuration for backend tests.

Provides reusable fixtures for testing the search pipeline without network
access: sample candidates, a temporary sqlite store, a scripted LLM, a
scripted search source and a fake clock.
"""
import os
import sys
from typing import Dict, List, Optional

import pytest
from langchain_core.messages import AIMessage

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are instantiated at import time, so these must be set before any
# litbrief module is imported
os.environ.setdefault("OPENAI_API_KEY", "test-key-not-real")
os.environ["REDIS_ENABLED"] = "false"


@pytest.fixture(scope="session", autouse=True)
def set_test_environment():
    """Set environment variables for testing."""
    os.environ["OPENAI_API_KEY"] = "test-key-not-real"
    os.environ["REDIS_HOST"] = "localhost"
    os.environ["REDIS_PORT"] = "6379"
    os.environ["REDIS_ENABLED"] = "false"
    yield


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLLM:
    """
    Chat model stand-in with a scripted list of replies.

    Each reply is either text (returned as an AIMessage) or an exception
    instance (raised). With a parser, text replies are parsed the way a
    structured-output model parses them. Every ainvoke() input is recorded
    in calls.
    """

    def __init__(self, replies: Optional[list] = None, parser=None):
        self.replies = list(replies or [])
        self.parser = parser
        self.calls: list = []

    async def ainvoke(self, input, **kwargs):
        self.calls.append(input)
        if not self.replies:
            raise AssertionError("FakeLLM ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if self.parser is not None:
            return self.parser.parse(reply)
        return AIMessage(content=reply)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_llm():
    """Factory for scripted LLMs: fake_llm(["reply", ValueError(), ...])."""
    return FakeLLM


@pytest.fixture
def fake_scoring_llm():
    """Factory for scripted scoring models returning ScoreBatchResponse."""
    from langchain_core.output_parsers import PydanticOutputParser
    from litbrief.schemas.scoring import ScoreBatchResponse

    def _make(replies=None):
        return FakeLLM(replies, parser=PydanticOutputParser(pydantic_object=ScoreBatchResponse))

    return _make


@pytest.fixture
def make_candidate():
    """Factory for CandidatePaper instances."""
    from litbrief.schemas.papers import CandidatePaper

    def _make(
        external_id: str,
        title: Optional[str] = None,
        query: str = "ti:test",
        year: Optional[int] = 2020,
        **fields,
    ) -> CandidatePaper:
        return CandidatePaper(
            external_id=external_id,
            title=title or f"Paper {external_id}",
            abstract=f"Abstract of {external_id}",
            authors=["Ada Lovelace", "Alan Turing"],
            year=year,
            abstract_url=f"https://arxiv.org/abs/{external_id}",
            pdf_url=f"https://arxiv.org/pdf/{external_id}",
            search_queries=[query],
            **fields,
        )

    return _make


@pytest.fixture
def sample_candidate(make_candidate):
    """The paper most people search for first."""
    return make_candidate(
        "1706.03762",
        title="Attention Is All You Need",
        query="ti:attention AND abs:transformer",
        year=2017,
    )


@pytest.fixture
def sample_candidates(make_candidate):
    """List of distinct candidates for testing."""
    return [make_candidate(f"2101.0000{i}", query="abs:graph") for i in range(5)]


@pytest.fixture
def store(tmp_path):
    """Paper store backed by a temporary sqlite file."""
    from litbrief.services.store import PaperStore

    return PaperStore(tmp_path / "test.db")


@pytest.fixture
def fake_source(fake_clock):
    """
    Factory for scripted search sources.

    results maps query text to candidates; errors maps query text to a list of
    exceptions raised on successive calls before results are returned.
    """
    from litbrief.services.sources.base import BaseSource, SearchPage

    class FakeSource(BaseSource):
        def __init__(self, results: Optional[Dict] = None, errors: Optional[Dict] = None):
            self.results = results or {}
            self.errors = {k: list(v) for k, v in (errors or {}).items()}
            self.calls: List[tuple] = []

        @property
        def name(self) -> str:
            return "FakeSource"

        async def search(self, query, max_results=100, sort_by=None, sort_order=None):
            self.calls.append((query, fake_clock()))
            pending = self.errors.get(query)
            if pending:
                raise pending.pop(0)
            papers = [
                p.model_copy(update={"search_queries": [query]})
                for p in self.results.get(query, [])
            ][:max_results]
            return SearchPage(papers=papers, total_results=len(papers))

    return FakeSource


@pytest.fixture
def no_retry_policy():
    """Retry policy with a single attempt and no timeout."""
    from litbrief.core.retry import RetryPolicy

    return RetryPolicy(max_attempts=1, base_delay=0.0, timeout=None)
