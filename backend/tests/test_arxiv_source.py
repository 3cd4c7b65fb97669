"""Tests for services/sources/arxiv.py - arXiv client and feed parsing."""
import httpx
import pytest

SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:opensearch="http://a9.com/-/spec/opensearch/1.1/"
      xmlns:arxiv="http://arxiv.org/schemas/atom">
  <title type="html">ArXiv Query: search_query=ti:attention</title>
  <id>http://arxiv.org/api/abc</id>
  <updated>2024-01-01T00:00:00-05:00</updated>
  <opensearch:totalResults>1542</opensearch:totalResults>
  <opensearch:startIndex>0</opensearch:startIndex>
  <opensearch:itemsPerPage>2</opensearch:itemsPerPage>
  <entry>
    <id>http://arxiv.org/abs/1706.03762v7</id>
    <updated>2023-08-02T00:41:18Z</updated>
    <published>2017-06-12T17:57:34Z</published>
    <title>Attention Is All
      You Need</title>
    <summary>  The dominant sequence transduction models are based on complex
      recurrent or convolutional neural networks.</summary>
    <author><name>Ashish Vaswani</name></author>
    <author><name>Noam Shazeer</name></author>
    <arxiv:comment>15 pages, 5 figures</arxiv:comment>
    <link href="http://arxiv.org/abs/1706.03762v7" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/1706.03762v7" rel="related" type="application/pdf"/>
    <arxiv:primary_category term="cs.CL" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.CL" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/hep-th/9901001v1</id>
    <updated>1999-01-01T00:00:00Z</updated>
    <published>1999-01-01T00:00:00Z</published>
    <title>An Old Style Identifier</title>
    <summary>Legacy ids keep their archive prefix.</summary>
    <author><name>Jane Doe</name></author>
    <arxiv:doi>10.1000/example.doi</arxiv:doi>
    <link href="http://arxiv.org/abs/hep-th/9901001v1" rel="alternate" type="text/html"/>
    <arxiv:primary_category term="hep-th" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
</feed>
"""

ERROR_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:opensearch="http://a9.com/-/spec/opensearch/1.1/">
  <opensearch:totalResults>1</opensearch:totalResults>
  <entry>
    <id>http://arxiv.org/api/errors#incorrect_id_format_for_1234</id>
    <title>Error</title>
    <summary>incorrect id format for 1234</summary>
  </entry>
</feed>
"""

EMPTY_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:opensearch="http://a9.com/-/spec/opensearch/1.1/">
  <opensearch:totalResults>0</opensearch:totalResults>
  <opensearch:startIndex>0</opensearch:startIndex>
  <opensearch:itemsPerPage>0</opensearch:itemsPerPage>
</feed>
"""


def _source(handler):
    from litbrief.services.sources.arxiv import ArxivSource
    
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ArxivSource(base_url="https://export.arxiv.org/api/query", timeout=5, client=client)


class TestParseArxivId:
    """Test external id extraction."""

    @pytest.mark.parametrize("entry_id,expected", [
        ("http://arxiv.org/abs/1706.03762v7", "1706.03762"),
        ("http://arxiv.org/abs/1706.03762", "1706.03762"),
        ("http://arxiv.org/abs/hep-th/9901001v2", "hep-th/9901001"),
        ("not an arxiv id", None),
    ])
    def test_parse(self, entry_id, expected):
        from litbrief.services.sources.arxiv import parse_arxiv_id
        
        assert parse_arxiv_id(entry_id) == expected


class TestParseFeed:
    """Test Atom feed parsing."""

    def test_maps_entries(self):
        from litbrief.services.sources.arxiv import parse_feed
        
        page = parse_feed(SAMPLE_FEED, "ti:attention")
        assert page.total_results == 1542
        assert len(page.papers) == 2
        
        paper = page.papers[0]
        assert paper.external_id == "1706.03762"
        assert paper.title == "Attention Is All You Need"
        assert paper.abstract.startswith("The dominant sequence")
        assert "\n" not in paper.abstract
        assert paper.authors == ["Ashish Vaswani", "Noam Shazeer"]
        assert paper.year == 2017
        assert paper.pdf_url == "https://arxiv.org/pdf/1706.03762v7"
        assert paper.abstract_url == "https://arxiv.org/abs/1706.03762v7"
        assert paper.primary_category == "cs.CL"
        assert paper.categories == ["cs.CL", "cs.LG"]
        assert paper.comments == "15 pages, 5 figures"
        assert paper.search_queries == ["ti:attention"]

    def test_bibtex_and_doi(self):
        from litbrief.services.sources.arxiv import parse_feed
        
        paper = parse_feed(SAMPLE_FEED, "ti:attention").papers[1]
        assert paper.external_id == "hep-th/9901001"
        assert paper.doi == "10.1000/example.doi"
        assert paper.bibtex.startswith("@article{hep-th/9901001,")
        assert "journal={arXiv preprint arXiv:hep-th/9901001}" in paper.bibtex
        assert "doi={10.1000/example.doi}" in paper.bibtex

    def test_empty_feed(self):
        from litbrief.services.sources.arxiv import parse_feed
        
        page = parse_feed(EMPTY_FEED, "ti:nothing")
        assert page.papers == []
        assert page.total_results == 0

    def test_error_entry_raises(self):
        from litbrief.core.exceptions import SourceParseError
        from litbrief.services.sources.arxiv import parse_feed
        
        with pytest.raises(SourceParseError, match="incorrect id format"):
            parse_feed(ERROR_FEED, "id:1234")


class TestArxivSearch:
    """Test HTTP behaviour of ArxivSource.search."""

    @pytest.mark.asyncio
    async def test_sends_query_params(self):
        from litbrief.schemas.search import SortBy, SortOrder
        
        seen = {}
        
        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["agent"] = request.headers.get("user-agent")
            return httpx.Response(200, text=SAMPLE_FEED)
        
        page = await _source(handler).search(
            "ti:attention", max_results=50, sort_by=SortBy.SUBMITTED, sort_order=SortOrder.ASCENDING
        )
        assert len(page.papers) == 2
        assert seen["params"] == {
            "search_query": "ti:attention",
            "start": "0",
            "max_results": "50",
            "sortBy": "submittedDate",
            "sortOrder": "ascending",
        }
        assert seen["agent"].startswith("LitBrief/")

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        from litbrief.core.exceptions import SourceRateLimitError
        
        source = _source(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))
        with pytest.raises(SourceRateLimitError) as exc_info:
            await source.search("ti:attention")
        assert exc_info.value.retry_after == 7

    @pytest.mark.asyncio
    async def test_server_error(self):
        from litbrief.core.exceptions import SourceHTTPError
        from litbrief.core.retry import is_transient_error
        
        source = _source(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(SourceHTTPError) as exc_info:
            await source.search("ti:attention")
        assert exc_info.value.status_code == 503
        assert is_transient_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        from litbrief.core.exceptions import SourceTimeoutError
        
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)
        
        with pytest.raises(SourceTimeoutError):
            await _source(handler).search("ti:attention")
