import json
import os

# Settings are read at import time; keep tests off real services
os.environ.setdefault("TWELVELABS_API_KEY", "test-twelvelabs-key")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("DOCUMENT_STORE", "memory")
os.environ.setdefault("REDIS_URL", "")

import pytest
from unittest.mock import AsyncMock, MagicMock

from memorylane.db.document_store import VIDEOS
from memorylane.db.memory_store import InMemoryDocumentStore
from memorylane.providers.twelvelabs import IndexingTask, SearchHit, TaskStatus


# ── Sample Test Data ───────────────────────────────────────────────────────

SAMPLE_SUMMARY = (
    "A family builds a sandcastle on a sunny beach while the kids laugh "
    "and chase the waves. Everyone shares ice cream at sunset."
)
SAMPLE_TAGS = ["joyful", "playful", "nostalgic"]

SAMPLE_ANALYSIS = {"summary": SAMPLE_SUMMARY, "emotionTags": ["Joyful", " Playful ", "nostalgic"]}

SAMPLE_GENERATED_ANALYSIS = json.dumps({
    "summary": "A short clip that seems to capture a birthday party with friends.",
    "emotionTags": ["festive", "joyful"],
})

BEACH_VIDEO = {
    "fileName": "1717000000000_beach_trip.mp4",
    "originalName": "beach_trip.mp4",
    "storageUrl": "http://localhost:8000/media/videos/1717000000000_beach_trip.mp4",
    "storagePath": "videos/1717000000000_beach_trip.mp4",
    "uploadedAt": "2024-06-01T10:00:00+00:00",
    "indexingStatus": "completed",
    "twelveLabsVideoId": "tl-beach",
    "twelveLabsIndexId": "idx-1",
    "summary": SAMPLE_SUMMARY,
    "emotionTags": SAMPLE_TAGS,
    "duration": 42.5,
}

BIRTHDAY_VIDEO = {
    "fileName": "1718000000000_birthday.mp4",
    "originalName": "birthday.mp4",
    "storageUrl": "http://localhost:8000/media/videos/1718000000000_birthday.mp4",
    "storagePath": "videos/1718000000000_birthday.mp4",
    "uploadedAt": "2024-07-15T18:30:00+00:00",
    "indexingStatus": "completed",
    "twelveLabsVideoId": "tl-birthday",
    "twelveLabsIndexId": "idx-1",
    "summary": "Grandma blows out the candles on her birthday cake surrounded by family.",
    "emotionTags": ["festive", "loving"],
    "duration": 30.0,
}

PENDING_VIDEO = {
    "fileName": "1719000000000_garden.mp4",
    "originalName": "garden.mp4",
    "storageUrl": "http://localhost:8000/media/videos/1719000000000_garden.mp4",
    "storagePath": "videos/1719000000000_garden.mp4",
    "uploadedAt": "2024-08-02T09:00:00+00:00",
    "indexingStatus": "pending",
}


def hit(video_id: str, rank: int, confidence: str | None = "high", start: float = 0.0, end: float = 5.0) -> SearchHit:
    return SearchHit(video_id=video_id, rank=rank, start=start, end=end, confidence=confidence)


# ── Mock Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def add_video(store):
    """Insert a video document and return its id."""
    async def _add(fields: dict) -> str:
        return await store.create(VIDEOS, fields)
    return _add


@pytest.fixture
def mock_twelvelabs():
    """Mock TwelveLabs client for testing without API calls."""
    client = AsyncMock()
    client.find_index = AsyncMock(return_value="idx-1")
    client.get_or_create_index = AsyncMock(return_value="idx-1")
    client.get_search_options = AsyncMock(return_value=["visual", "audio"])
    client.create_task = AsyncMock(return_value=IndexingTask(task_id="task-1", video_id="tl-vid-1"))
    client.get_task = AsyncMock(return_value=TaskStatus(status="ready"))
    client.analyze = AsyncMock(return_value=SAMPLE_ANALYSIS)
    client.retrieve_video = AsyncMock(return_value={"system_metadata": {"duration": 42.5, "width": 1920, "height": 1080}})
    client.search = AsyncMock(return_value=[])
    return client


@pytest.fixture
def mock_generator():
    """Mock text generator returning a filename-based analysis."""
    generator = AsyncMock()
    generator.generate = AsyncMock(return_value=SAMPLE_GENERATED_ANALYSIS)
    return generator


@pytest.fixture
def mock_llm():
    """Mock LangChain chat model."""
    mock = AsyncMock()
    mock_response = MagicMock()
    mock_response.content = "Here is what I found in your memories."
    mock.ainvoke = AsyncMock(return_value=mock_response)
    return mock


@pytest.fixture
def mock_redis():
    """Mock Redis client with a registered rate-limit script."""
    redis_mock = AsyncMock()
    redis_mock.get = AsyncMock(return_value=None)
    script = AsyncMock(return_value=1)
    redis_mock.register_script = MagicMock(return_value=script)
    redis_mock.aclose = AsyncMock()
    return redis_mock
