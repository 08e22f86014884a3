"""Upload, listing, deletion and emotion lookups for the video library."""
import logging
import re
import time
from collections import Counter
from pathlib import PurePath

from memorylane.core.exceptions import ValidationError, VideoNotFoundError
from memorylane.db.document_store import SEARCHES, SERVER_TIMESTAMP, VIDEOS, DocumentStore, Filter
from memorylane.models.video import IndexingStatus, VideoRecord
from memorylane.storage.blob import BlobStore

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "video/mp4", "video/quicktime", "video/x-msvideo", "video/webm",
    "video/mpeg", "application/octet-stream",
}
ALLOWED_EXTENSIONS = {".mp4", ".mov", ".avi", ".webm", ".mpeg", ".mkv"}

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", PurePath(name).name)


class VideoLibrary:
    def __init__(self, store: DocumentStore, blobs: BlobStore, max_upload_bytes: int = 500 * 1024 * 1024):
        self.store = store
        self.blobs = blobs
        self.max_upload_bytes = max_upload_bytes

    def validate_upload(self, filename: str | None, content_type: str | None, size: int) -> None:
        if not filename or size == 0:
            raise ValidationError("No video file provided")
        if size > self.max_upload_bytes:
            raise ValidationError(f"File too large: {size} bytes (max {self.max_upload_bytes})")
        extension = PurePath(filename).suffix.lower()
        if content_type not in ALLOWED_MIME_TYPES and extension not in ALLOWED_EXTENSIONS:
            raise ValidationError(f"Invalid file type: {content_type}. Only video files are allowed.")

    async def upload(self, filename: str | None, data: bytes, content_type: str | None) -> VideoRecord:
        self.validate_upload(filename, content_type, len(data))

        file_name = f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"
        storage_path = f"videos/{file_name}"
        logger.info(f"Uploading {filename} ({len(data)} bytes, {content_type}) to {storage_path}")

        public_url = await self.blobs.upload_file(storage_path, data, content_type)
        video_id = await self.store.create(VIDEOS, {
            "fileName": file_name,
            "originalName": filename,
            "storageUrl": public_url,
            "storagePath": storage_path,
            "uploadedAt": SERVER_TIMESTAMP,
            "fileSize": len(data),
            "mimeType": content_type,
            "indexingStatus": IndexingStatus.PENDING.value,
        })
        logger.info(f"Video record created with ID: {video_id}")
        return await self.get_video(video_id)

    async def list_videos(self, limit: int = 50) -> list[VideoRecord]:
        docs = await self.store.query(VIDEOS, order_by="uploadedAt", descending=True, limit=limit)
        return [VideoRecord.from_document(doc) for doc in docs]

    async def get_video(self, video_id: str) -> VideoRecord:
        doc = await self.store.get(VIDEOS, video_id)
        if doc is None:
            raise VideoNotFoundError(video_id)
        return VideoRecord.from_document(doc)

    async def delete_video(self, video_id: str) -> None:
        video = await self.get_video(video_id)

        if video.storage_path:
            try:
                await self.blobs.delete_file(video.storage_path)
                logger.info(f"Storage file deleted: {video.storage_path}")
            except Exception as e:
                # The record goes regardless; an orphaned blob is harmless
                logger.warning(f"Storage delete error for {video.storage_path}: {e}")

        await self.store.delete(VIDEOS, video_id)
        logger.info(f"Video record deleted: {video_id}")

    async def search_by_emotion(self, emotion: str | None, limit: int = 20) -> list[VideoRecord]:
        if not emotion or not emotion.strip():
            raise ValidationError("Emotion parameter is required")
        normalized = emotion.lower().strip()

        docs = await self.store.query(
            VIDEOS,
            [
                Filter("indexingStatus", "==", IndexingStatus.COMPLETED.value),
                Filter("emotionTags", "array_contains", normalized),
            ],
            limit=limit,
        )
        videos = [VideoRecord.from_document(doc) for doc in docs]
        logger.info(f"Found {len(videos)} videos with emotion tag: '{normalized}'")

        try:
            await self.store.create(SEARCHES, {
                "type": "emotion",
                "emotion": normalized,
                "resultCount": len(videos),
                "timestamp": SERVER_TIMESTAMP,
            })
        except Exception as e:
            logger.warning(f"Failed to record emotion search audit: {e}")
        return videos

    async def emotion_statistics(self) -> dict:
        docs = await self.store.query(
            VIDEOS, [Filter("indexingStatus", "==", IndexingStatus.COMPLETED.value)]
        )
        counts: Counter[str] = Counter()
        for doc in docs:
            for tag in doc.data.get("emotionTags") or []:
                if isinstance(tag, str) and tag.strip():
                    counts[tag.lower().strip()] += 1
        return {
            "emotions": [tag for tag, _count in counts.most_common()],
            "counts": dict(counts),
            "totalVideos": len(docs),
        }
