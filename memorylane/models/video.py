from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from memorylane.db.document_store import StoredDocument


class IndexingStatus(str, Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({IndexingStatus.COMPLETED, IndexingStatus.FAILED, IndexingStatus.TIMEOUT})

# Written by content analysis; present iff the record is completed
CONTENT_FIELDS = ("summary", "emotionTags", "duration", "transcript", "twelveLabsMetadata", "processedAt")
EXTERNAL_ID_FIELDS = ("twelveLabsTaskId", "twelveLabsVideoId", "twelveLabsIndexId")
LIFECYCLE_FIELDS = ("indexingError", "indexingStartedAt", "indexingCompletedAt", "indexingFailedAt")


def is_terminal_status(value: Any) -> bool:
    try:
        return IndexingStatus(value).is_terminal
    except ValueError:
        return False


class VideoRecord(BaseModel):
    """One uploaded video as stored in the `videos` collection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    file_name: str | None = Field(default=None, alias="fileName")
    original_name: str | None = Field(default=None, alias="originalName")
    storage_path: str | None = Field(default=None, alias="storagePath")
    storage_url: str = Field(default="", alias="storageUrl")
    file_size: int | None = Field(default=None, alias="fileSize")
    mime_type: str | None = Field(default=None, alias="mimeType")
    uploaded_at: datetime | None = Field(default=None, alias="uploadedAt")

    indexing_status: IndexingStatus = Field(default=IndexingStatus.PENDING, alias="indexingStatus")
    twelve_labs_task_id: str | None = Field(default=None, alias="twelveLabsTaskId")
    twelve_labs_video_id: str | None = Field(default=None, alias="twelveLabsVideoId")
    twelve_labs_index_id: str | None = Field(default=None, alias="twelveLabsIndexId")
    indexing_error: str | None = Field(default=None, alias="indexingError")
    indexing_started_at: datetime | None = Field(default=None, alias="indexingStartedAt")
    indexing_completed_at: datetime | None = Field(default=None, alias="indexingCompletedAt")
    indexing_failed_at: datetime | None = Field(default=None, alias="indexingFailedAt")

    summary: str | None = None
    emotion_tags: list[str] = Field(default_factory=list, alias="emotionTags")
    duration: float | None = None
    transcript: str | None = None
    twelve_labs_metadata: dict[str, Any] | None = Field(default=None, alias="twelveLabsMetadata")
    processed_at: datetime | None = Field(default=None, alias="processedAt")

    @property
    def title(self) -> str:
        return self.original_name or self.file_name or "Untitled"

    @classmethod
    def from_document(cls, doc: StoredDocument) -> "VideoRecord":
        data = dict(doc.data)
        # Older records only carry fileName
        if not data.get("originalName") and data.get("fileName"):
            data["originalName"] = data["fileName"]
        if data.get("emotionTags") is None:
            data.pop("emotionTags", None)
        if data.get("storageUrl") is None:
            data["storageUrl"] = ""
        return cls.model_validate({**data, "id": doc.id})

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
