"""
Content analysis for freshly indexed videos.

Produces a summary and emotion tags from the TwelveLabs analyze endpoint,
falls back to the generative-text provider working from the filename alone,
and finally to a fixed sentence. `ContentAnalyzer.analyze` never raises.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from memorylane.core.exceptions import AnalysisParseError
from memorylane.db.document_store import VIDEOS, DocumentStore
from memorylane.models.video import VideoRecord
from memorylane.services.prompts import (
    EMOTION_VOCABULARY,
    FALLBACK_SUMMARY,
    FILENAME_ANALYSIS_PROMPT,
    VIDEO_ANALYSIS_PROMPT,
    VIDEO_ANALYSIS_SCHEMA,
)

logger = logging.getLogger(__name__)

MIN_SUMMARY_LENGTH = 10
MAX_EMOTION_TAGS = 4

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


# ── Payload parsing ────────────────────────────────────────────────────────

def parse_analysis_payload(payload: Any) -> dict:
    """Turn an analysis response into a dict.

    Accepts a raw object, a JSON string, JSON wrapped in a fenced code block,
    or any of those nested under a `data` envelope.
    """
    if isinstance(payload, dict):
        if "summary" not in payload and "data" in payload:
            return parse_analysis_payload(payload["data"])
        return payload

    if isinstance(payload, str):
        text = payload.strip()
        match = _FENCED_JSON.search(text)
        if match:
            text = match.group(1).strip()
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise AnalysisParseError(f"Analysis payload is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise AnalysisParseError("Analysis payload is not a JSON object")
        return parse_analysis_payload(parsed)

    raise AnalysisParseError(f"Unsupported analysis payload type: {type(payload).__name__}")


def normalize_emotion_tags(tags: Any) -> list[str]:
    if not isinstance(tags, list):
        return []
    normalized = [tag.lower().strip() for tag in tags if isinstance(tag, str) and tag.strip()]
    return normalized[:MAX_EMOTION_TAGS]


def extract_summary_and_tags(payload: Any) -> tuple[str, list[str]]:
    """Parse and validate; raises AnalysisParseError when the summary is unusable."""
    data = parse_analysis_payload(payload)
    summary = data.get("summary") or data.get("text")
    if not isinstance(summary, str) or len(summary.strip()) < MIN_SUMMARY_LENGTH:
        raise AnalysisParseError("Analysis summary missing or too short")
    return summary.strip(), normalize_emotion_tags(data.get("emotionTags"))


# ── Metadata ───────────────────────────────────────────────────────────────

def extract_video_metadata(info: dict | None) -> dict[str, Any]:
    """Pick duration/width/height/fps out of a video-info payload, skipping absent values."""
    if not info:
        return {}

    metadata = info.get("metadata") or {}
    system_metadata = info.get("system_metadata") or {}

    duration = None
    for source in (metadata, info, system_metadata):
        if source.get("duration") is not None:
            duration = source["duration"]
            break

    result: dict[str, Any] = {}
    dimensions = metadata or system_metadata
    for key in ("width", "height", "fps"):
        if dimensions.get(key) is not None:
            result[key] = dimensions[key]
    if duration is not None:
        result["duration"] = duration
    return result


@dataclass
class ContentAnalysis:
    summary: str
    emotion_tags: list[str]
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)
    transcript: str | None = None

    @property
    def duration(self) -> float | None:
        return self.metadata.get("duration")

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "summary": self.summary,
            "emotionTags": list(self.emotion_tags),
        }
        if self.duration is not None:
            fields["duration"] = self.duration
        if self.metadata:
            fields["twelveLabsMetadata"] = dict(self.metadata)
        if self.transcript:
            fields["transcript"] = self.transcript[:20000]
        return fields


class ContentAnalyzer:
    def __init__(self, store: DocumentStore, twelvelabs, generator):
        self.store = store
        self.twelvelabs = twelvelabs
        self.generator = generator

    async def analyze(self, video_id: str) -> ContentAnalysis:
        """Analyze an indexed video. Always returns a usable result."""
        video = await self._load(video_id)
        video_name = video.title if video else "video"
        provider_video_id = video.twelve_labs_video_id if video else None

        metadata = await self._fetch_metadata(video)

        analysis = None
        if provider_video_id:
            analysis = await self._analyze_with_provider(provider_video_id)
        if analysis is None:
            analysis = await self._analyze_from_filename(video_name)
        if analysis is None:
            logger.info(f"Using fallback summary for video {video_id}")
            analysis = ContentAnalysis(summary=FALLBACK_SUMMARY, emotion_tags=[], source="fallback")

        analysis.metadata = metadata
        return analysis

    async def _load(self, video_id: str) -> VideoRecord | None:
        # Unreadable or malformed records fall through to the name-free fallbacks
        try:
            doc = await self.store.get(VIDEOS, video_id)
            return VideoRecord.from_document(doc) if doc else None
        except Exception as e:
            logger.error(f"Failed to load video {video_id} for analysis: {e}")
            return None

    async def _fetch_metadata(self, video: VideoRecord | None) -> dict[str, Any]:
        if not video or not video.twelve_labs_index_id or not video.twelve_labs_video_id:
            return {}
        try:
            info = await self.twelvelabs.retrieve_video(video.twelve_labs_index_id, video.twelve_labs_video_id)
        except Exception as e:
            logger.warning(f"Failed to retrieve video info for {video.id}: {e}")
            return {}
        metadata = extract_video_metadata(info)
        if "duration" not in metadata:
            logger.warning(f"Could not extract video duration for {video.id}")
        return metadata

    async def _analyze_with_provider(self, provider_video_id: str) -> ContentAnalysis | None:
        try:
            payload = await self.twelvelabs.analyze(
                provider_video_id,
                VIDEO_ANALYSIS_PROMPT,
                temperature=0.3,
                max_tokens=500,
                response_format=VIDEO_ANALYSIS_SCHEMA,
            )
            summary, tags = extract_summary_and_tags(payload)
        except Exception as e:
            logger.warning(f"TwelveLabs analysis failed for {provider_video_id}, falling back: {e}")
            return None
        logger.info(f"Video analyzed - summary: {len(summary)} chars, tags: {', '.join(tags)}")
        return ContentAnalysis(summary=summary, emotion_tags=tags, source="twelvelabs")

    async def _analyze_from_filename(self, video_name: str) -> ContentAnalysis | None:
        prompt = FILENAME_ANALYSIS_PROMPT.format(
            video_name=video_name,
            vocabulary=", ".join(EMOTION_VOCABULARY),
        )
        try:
            text = await self.generator.generate(prompt)
            summary, tags = extract_summary_and_tags(text)
        except Exception as e:
            logger.error(f"Filename-based analysis failed for '{video_name}': {e}")
            return None
        logger.info(f"Video analyzed (fallback) - summary: {len(summary)} chars, tags: {', '.join(tags)}")
        return ContentAnalysis(summary=summary, emotion_tags=tags, source="generative")
