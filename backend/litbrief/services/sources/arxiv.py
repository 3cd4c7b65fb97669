"""
arXiv data source.

arXiv exposes an Atom API at export.arxiv.org/api/query.
- No API key required
- Clients must leave at least 3 seconds between requests
- Up to 2000 results per request

Uses httpx.AsyncClient for non-blocking HTTP requests and feedparser for
the Atom response. Rate limiting and retries are applied by the caller.
"""
import re
from typing import Any, Dict, List, Optional

import feedparser
import httpx

from litbrief.core.config import settings
from litbrief.core.exceptions import (
    SourceHTTPError,
    SourceParseError,
    SourceRateLimitError,
    SourceTimeoutError,
)
from litbrief.core.logging import get_logger
from litbrief.schemas.papers import CandidatePaper
from litbrief.schemas.search import SortBy, SortOrder

from .base import BaseSource, SearchPage

logger = get_logger(__name__)

_ARXIV_ID_RE = re.compile(r"arxiv\.org/abs/(?P<id>.+?)(?P<version>v\d+)?$")


class ArxivSource(BaseSource):
    """Search client for the arXiv API."""
    
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: API endpoint, defaults to settings.arxiv_api_url
            timeout: HTTP timeout in seconds
            client: Shared AsyncClient; a short-lived one is created per call otherwise
        """
        self.base_url = base_url or settings.arxiv_api_url
        self.timeout = timeout or settings.request_timeout_seconds or 30.0
        self._client = client
        self._headers = {
            "User-Agent": f"LitBrief/1.0 (mailto:{settings.API_CONTACT_EMAIL})"
        }
    
    @property
    def name(self) -> str:
        return "arXiv"
    
    async def search(
        self,
        query: str,
        max_results: int = 100,
        sort_by: SortBy = SortBy.RELEVANCE,
        sort_order: SortOrder = SortOrder.DESCENDING,
        start: int = 0,
    ) -> SearchPage:
        """
        Run one arXiv query.
        
        Args:
            query: search_query expression, e.g. "ti:attention AND abs:transformer"
            max_results: Result cap for this request
            sort_by: relevance, lastUpdatedDate or submittedDate
            sort_order: ascending or descending
            start: Offset of the first result
            
        Returns:
            SearchPage of candidates tagged with the query text
        """
        params = {
            "search_query": query,
            "start": start,
            "max_results": max_results,
            "sortBy": SortBy(sort_by).value,
            "sortOrder": SortOrder(sort_order).value,
        }
        logger.info(f"Searching arXiv: {query[:80]}")
        
        try:
            if self._client is not None:
                response = await self._client.get(self.base_url, params=params, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.base_url, params=params, headers=self._headers)
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(self.name, self.timeout) from e
        
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise SourceRateLimitError(
                self.name, int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status_code != 200:
            raise SourceHTTPError(self.name, response.status_code, response.text[:200] or None)
        
        page = parse_feed(response.text, query)
        logger.info(f"arXiv: {len(page.papers)} papers (total {page.total_results}) for {query[:50]}")
        return page


def parse_feed(xml_text: str, query: str) -> SearchPage:
    """
    Parse an arXiv Atom response.
    
    Raises:
        SourceParseError: If the feed is unreadable or arXiv reported a query error
    """
    parsed = feedparser.parse(xml_text)
    feed = parsed.get("feed", {})
    entries = parsed.get("entries", [])
    
    if parsed.get("bozo") and not entries and "opensearch_totalresults" not in feed:
        raise SourceParseError("arXiv", str(parsed.get("bozo_exception", "malformed feed")))
    
    for entry in entries:
        if "/api/errors" in entry.get("id", ""):
            raise SourceParseError("arXiv", f"query rejected: {_clean(entry.get('summary', ''))}")
    
    papers = []
    for entry in entries:
        candidate = entry_to_candidate(entry, query)
        if candidate is not None:
            papers.append(candidate)
    
    return SearchPage(
        papers=papers,
        total_results=_to_int(feed.get("opensearch_totalresults"), len(papers)),
        start_index=_to_int(feed.get("opensearch_startindex"), 0),
        items_per_page=_to_int(feed.get("opensearch_itemsperpage"), len(papers)),
    )


def entry_to_candidate(entry: Dict[str, Any], query: str) -> Optional[CandidatePaper]:
    """Convert one Atom entry to a CandidatePaper; None if it has no usable id."""
    external_id = parse_arxiv_id(entry.get("id", ""))
    if not external_id:
        return None
    
    abstract_url = ""
    pdf_url = ""
    doi = entry.get("arxiv_doi")
    for link in entry.get("links", []):
        href = ensure_https(link.get("href", ""))
        if link.get("title") == "pdf":
            pdf_url = href
        elif link.get("title") == "doi" and not doi:
            doi = re.sub(r"^https?://(dx\.)?doi\.org/", "", href)
        elif link.get("rel") == "alternate":
            abstract_url = href
    
    published = entry.get("published") or ""
    primary = entry.get("arxiv_primary_category") or {}
    title = _clean(entry.get("title", ""))
    authors = [a.get("name") for a in entry.get("authors", []) if a.get("name")]
    year = _to_int(published[:4], None)
    abstract_url = abstract_url or f"https://arxiv.org/abs/{external_id}"
    
    return CandidatePaper(
        external_id=external_id,
        title=title,
        abstract=_clean(entry.get("summary", "")),
        authors=authors,
        year=year,
        submitted_date=published or None,
        updated_date=entry.get("updated") or None,
        abstract_url=abstract_url,
        pdf_url=pdf_url or f"https://arxiv.org/pdf/{external_id}",
        doi=doi or None,
        bibtex=build_bibtex(external_id, title, authors, year, abstract_url, doi),
        primary_category=primary.get("term"),
        categories=[t.get("term") for t in entry.get("tags", []) if t.get("term")],
        comments=_clean(entry.get("arxiv_comment", "")) or None,
        journal_ref=_clean(entry.get("arxiv_journal_ref", "")) or None,
        source="arxiv",
        search_queries=[query],
    )


def parse_arxiv_id(entry_id: str) -> Optional[str]:
    """arXiv id without version: http://arxiv.org/abs/1706.03762v7 -> 1706.03762"""
    match = _ARXIV_ID_RE.search(entry_id.strip())
    if not match:
        return None
    return match.group("id")


def build_bibtex(
    arxiv_id: str,
    title: str,
    authors: List[str],
    year: Optional[int],
    url: str,
    doi: Optional[str] = None,
) -> str:
    """BibTeX @article entry for an arXiv preprint."""
    lines = [
        f"@article{{{arxiv_id},",
        f"  title={{{title}}},",
        f"  author={{{' and '.join(authors)}}},",
        f"  journal={{arXiv preprint arXiv:{arxiv_id}}},",
        f"  year={{{year or ''}}},",
        f"  url={{{url}}}",
    ]
    if doi:
        lines[-1] += ","
        lines.append(f"  doi={{{doi}}}")
    lines.append("}")
    return "\n".join(lines)


def ensure_https(url: str) -> str:
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def _clean(text: str) -> str:
    """Collapse the line breaks arXiv puts inside titles and abstracts."""
    return " ".join((text or "").split())


def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
