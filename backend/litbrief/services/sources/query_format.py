"""
arXiv query formatting.

Helpers for the arXiv search_query syntax: field prefixes (ti:, au:,
abs:, co:, jr:, cat:, rn:, all:), boolean operators (AND, OR, ANDNOT)
and submittedDate range expressions.
"""
import re
from datetime import date
from typing import Optional
from urllib.parse import quote

from litbrief.schemas.search import DateRange

FIELD_PREFIXES = {
    "ti": "Title",
    "au": "Author",
    "abs": "Abstract",
    "co": "Comment",
    "jr": "Journal Reference",
    "cat": "Subject Category",
    "rn": "Report Number",
    "all": "All of the above",
}

BOOLEAN_OPERATORS = ("AND", "OR", "ANDNOT")

_GROUP_RE = re.compile(r"\(([^()]*)\)")
_AND_RE = re.compile(r"\bAND\b")

_CHAR_REPLACEMENTS = str.maketrans({
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "–": "-",
    "—": "-",
})


def format_date(value: date) -> str:
    """Date in the YYYYMMDD form arXiv range expressions use."""
    return value.strftime("%Y%m%d")


def render_date_range(date_range: Optional[DateRange]) -> str:
    """submittedDate range expression, or '' when the range is open on both sides."""
    if date_range is None or date_range.is_open:
        return ""
    start = format_date(date_range.start) if date_range.start else "*"
    end = format_date(date_range.end) if date_range.end else "*"
    return f"submittedDate:[{start} TO {end}]"


def apply_date_range(query: str, date_range: Optional[DateRange]) -> str:
    """
    AND a submittedDate constraint onto a query.
    
    Queries that contain a top-level OR are parenthesised first so the
    date bound applies to every alternative.
    """
    constraint = render_date_range(date_range)
    if not constraint:
        return query
    if " OR " in _GROUP_RE.sub("", query):
        query = f"({query})"
    return f"{query} AND {constraint}"


def relax_grouped_terms(query: str) -> str:
    """
    Broaden a query by turning AND into OR inside parenthesised groups.
    
    "ti:(graph AND neural) AND abs:protein" -> "ti:(graph OR neural) AND abs:protein"
    """
    return _GROUP_RE.sub(lambda m: f"({_AND_RE.sub('OR', m.group(1))})", query)


def normalize_query(query: str) -> str:
    """Replace typographic quotes/dashes and collapse whitespace."""
    return " ".join(query.translate(_CHAR_REPLACEMENTS).split())


def search_url(query: str) -> str:
    """Browser URL showing the same search on arxiv.org."""
    return f"https://arxiv.org/search/?query={quote(query)}&searchtype=all"
