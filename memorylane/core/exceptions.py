"""Exception hierarchy for memorylane."""


class MemoryLaneError(Exception):
    """Base exception for all memorylane errors."""


class ValidationError(MemoryLaneError):
    """Required input missing or malformed. Surfaced to the caller, never retried."""


class NotFoundError(MemoryLaneError):
    """Requested entity does not exist."""


class VideoNotFoundError(NotFoundError):
    """Video ID not found in the document store."""

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"Video not found: {video_id}")


class DocumentNotFoundError(NotFoundError):
    """Update or delete targeted a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document not found: {collection}/{doc_id}")


class IndexingConflictError(MemoryLaneError):
    """Indexing requested for a video whose status does not allow it."""


class IndexingStartError(MemoryLaneError):
    """Index resolution or task submission failed; the record was marked failed."""

    def __init__(self, video_id: str, reason: str):
        self.video_id = video_id
        self.reason = reason
        super().__init__(f"Indexing could not be started for video {video_id}")


class ProviderError(MemoryLaneError):
    """Remote AI provider call failed."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(ProviderError):
    """Provider kept answering 429 after all retries."""


class AnalysisParseError(MemoryLaneError):
    """Content-analysis payload could not be turned into a summary and tags."""
