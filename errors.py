"""Exception hierarchy for the scan pipeline.

Expected failures at the fetch and classification boundaries are returned
as tagged results (see feeds.FetchResult, agents.relevance.ClassificationOutcome).
The exceptions below are raised where a job must fail so the job runtime
can retry it, or where a failure has to cross a component boundary.
"""


class ScannerError(Exception):
    """Base class for all pipeline errors."""


class TransientFetchError(ScannerError):
    """Retryable network failure: timeout, connection reset, 429 or 5xx."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MalformedFeedError(ScannerError):
    """Feed content could not be parsed or the server refused it for good."""


class CircuitOpenError(ScannerError):
    """Call rejected because the circuit for this key is open."""

    def __init__(self, key: str, retry_in: float):
        super().__init__(f"Circuit open for '{key}' (retry in {retry_in:.0f}s)")
        self.key = key
        self.retry_in = retry_in


class SourceNotFoundError(ScannerError):
    """A targeted scan named a source that does not exist."""

    def __init__(self, source_id: str):
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class ArticleNotFoundError(ScannerError):
    """A job or trigger referenced an article that does not exist."""

    def __init__(self, article_id: str):
        super().__init__(f"Article not found: {article_id}")
        self.article_id = article_id


class ClassificationError(ScannerError):
    """The classification service failed for a whole article."""


class GenerationError(ScannerError):
    """The content-generation service failed to draft posts."""


class CacheError(ScannerError):
    """The key-value cache backend failed a read or write."""


class JobTimeoutError(ScannerError):
    """A job attempt exceeded its hard timeout."""

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job {job_id} timed out after {timeout:.0f}s")
        self.job_id = job_id
        self.timeout = timeout
