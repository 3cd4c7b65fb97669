"""
Query generation for arXiv search.

Turns a research question into a handful of arXiv queries using the
service's field-prefix syntax (ti:, abs:, au:, cat:) with an LLM.
"""
import asyncio
import re
from typing import List, Optional

from litbrief.core.exceptions import GenerationError
from litbrief.core.logging import get_logger
from litbrief.core.retry import RetryPolicy, SleepFunc, call_with_retry
from litbrief.schemas.events import ProgressStep
from litbrief.schemas.search import SearchQuery
from litbrief.services.llm import get_generation_llm, message_text
from litbrief.services.sources.query_format import BOOLEAN_OPERATORS, FIELD_PREFIXES
from .types import DEFAULT_QUERY_COUNT, ProgressCallback, _noop_callback

logger = get_logger(__name__)

# "1. ", "2) ", "- ", "* ", "• " and "Query 3: " style prefixes
_LIST_MARKER_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•]|query\s*\d*\s*[:.)-])\s*", re.IGNORECASE)


def build_generation_prompt(question: str, max_queries: int) -> str:
    prefixes = ", ".join(f"{prefix}: ({label.lower()})" for prefix, label in FIELD_PREFIXES.items())
    operators = ", ".join(BOOLEAN_OPERATORS)
    return f"""Generate {max_queries} effective arXiv search queries for the following research question.

Research question: {question}

Guidelines:
- Use arXiv field prefixes: {prefixes}
- Combine terms with the boolean operators {operators}
- Group alternatives in parentheses, e.g. abs:(transformer OR attention)
- Quote multi-word phrases, e.g. ti:"graph neural network"
- Include date constraints if applicable, e.g. submittedDate:[20200101 TO 20241231]
- Make each query approach the question from a different angle

Return exactly {max_queries} queries, one per line, without numbering or explanations."""


def parse_query_lines(text: str, max_queries: int) -> List[str]:
    """
    Extract usable query lines from a model response.
    
    Blank lines, code fences and list markers are dropped, surrounding
    quotes/backticks are stripped and duplicates are removed. At most
    max_queries lines are returned.
    """
    queries: List[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("```"):
            continue
        line = _LIST_MARKER_RE.sub("", line, count=1).strip()
        if len(line) >= 2 and line[0] == line[-1] and line[0] in "`'":
            line = line[1:-1].strip()
        if line.startswith('"') and line.endswith('"') and line.count('"') == 2:
            line = line[1:-1].strip()
        if not line or line in queries:
            continue
        queries.append(line)
        if len(queries) >= max_queries:
            break
    return queries


class QueryGenerator:
    """
    LLM-backed generator of arXiv queries.
    
    Args:
        llm: Chat model with an async ainvoke(); defaults to the configured generation model
        policy: Retry policy for the model call
        sleep: Sleep used between retries (injectable for tests)
    """
    
    def __init__(
        self,
        llm=None,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._llm = llm
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
    
    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_generation_llm()
        return self._llm
    
    async def generate(
        self,
        question: str,
        max_queries: int = DEFAULT_QUERY_COUNT,
        on_progress: ProgressCallback = _noop_callback,
    ) -> List[SearchQuery]:
        """
        Generate up to max_queries queries for a research question.
        
        Every returned query is selected and waiting. The model may return
        fewer usable lines than requested; that is logged, not an error.
        
        Raises:
            GenerationError: If the question is empty, the model call fails
                after retries, or no usable line comes back
        """
        question = question.strip()
        if not question:
            raise GenerationError("research question is empty")
        if max_queries < 1:
            raise ValueError(f"max_queries must be at least 1, got {max_queries}")
        
        on_progress(
            ProgressStep.GENERATING_QUERIES,
            "Generating search queries...",
            f"Requesting {max_queries} queries",
        )
        
        prompt = build_generation_prompt(question, max_queries)
        try:
            response = await call_with_retry(
                self.llm.ainvoke,
                prompt,
                policy=self._policy,
                sleep=self._sleep,
                label="query generation",
            )
        except Exception as e:
            logger.error(f"Query generation call failed: {e!r}")
            raise GenerationError(str(e) or e.__class__.__name__, cause=e) from e
        
        lines = parse_query_lines(message_text(response), max_queries)
        if not lines:
            raise GenerationError("the model returned no usable queries")
        if len(lines) < max_queries:
            logger.warning(f"Requested {max_queries} queries, model returned {len(lines)}")
        
        logger.info(f"Generated {len(lines)} queries")
        for line in lines:
            logger.debug(f"  {line}")
        
        return [SearchQuery(text=line) for line in lines]
    
    async def regenerate(
        self,
        question: str,
        existing: List[SearchQuery],
        on_progress: ProgressCallback = _noop_callback,
    ) -> List[SearchQuery]:
        """
        Replace the unselected queries with freshly generated ones.
        
        Selected queries are kept in place and their order is preserved; new
        queries are appended after them. The input list is not modified, and
        on failure nothing is replaced.
        
        Raises:
            GenerationError: If generation fails
        """
        kept = [q for q in existing if q.is_selected]
        replace_count = len(existing) - len(kept)
        if replace_count == 0:
            return list(existing)
        
        generated = await self.generate(question, replace_count, on_progress)
        kept_texts = {q.text for q in kept}
        return kept + [q for q in generated if q.text not in kept_texts]
