"""
Custom Exceptions

Application-specific exception classes for the literature search
pipeline. Errors are grouped by the stage that raises them so callers
can contain a failure to the smallest unit (one query, one candidate,
one scoring batch).
"""
from typing import Optional


class LitBriefError(Exception):
    """Base exception for all application errors."""
    pass


# === Search Service Errors ===

class SourceError(LitBriefError):
    """Base exception for paper-search service errors."""
    def __init__(self, source_name: str, message: str):
        self.source_name = source_name
        self.message = message
        super().__init__(f"{source_name}: {message}")


class SourceTimeoutError(SourceError):
    """Search service timed out during request."""
    def __init__(self, source_name: str, timeout_seconds: Optional[float] = None):
        if timeout_seconds:
            msg = f"Request timed out after {timeout_seconds}s"
        else:
            msg = "Request timed out"
        super().__init__(source_name, msg)
        self.timeout_seconds = timeout_seconds


class SourceRateLimitError(SourceError):
    """Search service rate limit exceeded."""
    def __init__(self, source_name: str, retry_after: Optional[int] = None):
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(source_name, msg)
        self.retry_after = retry_after


class SourceHTTPError(SourceError):
    """Search service returned an HTTP error status."""
    def __init__(self, source_name: str, status_code: int, detail: Optional[str] = None):
        msg = f"HTTP {status_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(source_name, msg)
        self.status_code = status_code


class SourceParseError(SourceError):
    """Failed to parse response from the search service."""
    def __init__(self, source_name: str, detail: Optional[str] = None):
        msg = "Failed to parse response"
        if detail:
            msg += f": {detail}"
        super().__init__(source_name, msg)


# === Pipeline Errors ===

class PipelineError(LitBriefError):
    """Base exception for search-pipeline stage errors."""
    pass


class GenerationError(PipelineError):
    """The query-generation call failed; no queries were produced."""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(f"Query generation failed: {message}")


class QueryExecutionError(PipelineError):
    """A search query exhausted its retries."""
    def __init__(self, query: str, cause: BaseException):
        self.query = query
        self.cause = cause
        detail = str(cause) or cause.__class__.__name__
        super().__init__(f"Query '{query}' failed: {detail}")


class PersistenceError(PipelineError):
    """A candidate paper could not be written to the store."""
    def __init__(self, external_id: str, cause: BaseException):
        self.external_id = external_id
        self.cause = cause
        detail = str(cause) or cause.__class__.__name__
        super().__init__(f"Could not persist paper {external_id}: {detail}")


class ScoringParseError(PipelineError):
    """A scoring batch response was not valid JSON of the expected shape."""
    def __init__(self, detail: str, batch_index: Optional[int] = None):
        self.detail = detail
        self.batch_index = batch_index
        if batch_index is not None:
            msg = f"Scoring batch {batch_index + 1} returned an unusable response: {detail}"
        else:
            msg = f"Scoring response could not be parsed: {detail}"
        super().__init__(msg)


class RunInProgressError(PipelineError):
    """Another search run is already active for the same brief."""
    def __init__(self, brief_id: str):
        self.brief_id = brief_id
        super().__init__(f"A search run is already in progress for brief {brief_id}")


class RunCancelledError(PipelineError):
    """A cancel was requested; no further request is sent for this step."""
    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Cancelled before {step}")


# === Store Errors ===

class StoreError(LitBriefError):
    """Base exception for local paper store errors."""
    pass


class RecordNotFoundError(StoreError):
    """No row matched the requested key."""
    def __init__(self, table: str, key: str):
        self.table = table
        self.key = key
        super().__init__(f"Record not found in {table} with key {key}")
