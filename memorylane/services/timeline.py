"""Monthly emotion timeline and milestone detection over completed videos."""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone

from memorylane.db.document_store import VIDEOS, DocumentStore, Filter
from memorylane.models.video import IndexingStatus, VideoRecord

logger = logging.getLogger(__name__)

MILESTONE_KEYWORDS: dict[str, list[str]] = {
    "birthday": ["birthday", "cake", "celebration", "party", "candles"],
    "vacation": ["trip", "travel", "vacation", "beach", "holiday trip", "getaway"],
    "graduation": ["graduation", "degree", "graduate", "diploma", "commencement"],
    "wedding": ["wedding", "married", "bride", "groom", "ceremony", "vows"],
    "birth": ["baby", "born", "newborn", "first steps", "infant"],
    "holiday": ["christmas", "thanksgiving", "easter", "new year", "halloween"],
}

MILESTONE_TITLES = {
    "birthday": "Birthday Celebration",
    "vacation": "Vacation Memory",
    "graduation": "Graduation Day",
    "wedding": "Wedding Moment",
    "birth": "New Addition",
    "holiday": "Holiday Memory",
}

TOP_TAGS = 6
BREAKDOWN_TAGS = 10


def detect_milestone(video: VideoRecord) -> str | None:
    text = f"{video.summary or ''} {video.transcript or ''}".lower()
    for milestone_type, keywords in MILESTONE_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return milestone_type
    return None


def build_timeline(videos: list[VideoRecord]) -> dict:
    """Aggregate videos into monthly data points, milestones and a summary."""
    by_month: dict[str, list[VideoRecord]] = defaultdict(list)
    for video in videos:
        date = video.uploaded_at or datetime.now(timezone.utc)
        by_month[f"{date.year}-{date.month:02d}"].append(video)

    data_points = []
    milestones = []
    total_duration = 0.0
    overall: Counter[str] = Counter()

    for month in sorted(by_month):
        month_videos = by_month[month]
        month_tags: Counter[str] = Counter()
        for video in month_videos:
            for tag in video.emotion_tags:
                month_tags[tag.lower().strip()] += 1
        overall.update(month_tags)

        month_duration = sum(video.duration or 0 for video in month_videos)
        total_duration += month_duration
        data_points.append({
            "date": f"{month}-01",
            "emotionTags": dict(month_tags),
            "videoCount": len(month_videos),
            "totalDuration": month_duration,
        })

        for video in month_videos:
            milestone_type = detect_milestone(video)
            if milestone_type is None:
                continue
            milestones.append({
                "id": f"milestone-{video.id}",
                "date": f"{month}-01",
                "type": milestone_type,
                "title": video.original_name or MILESTONE_TITLES[milestone_type],
                "description": video.summary or f"A special {milestone_type} moment",
                "videoId": video.id,
                "thumbnailUrl": video.storage_url or None,
                "emotion": video.emotion_tags[0] if video.emotion_tags else "joyful",
            })

    ranked = overall.most_common()
    tag_total = sum(count for _tag, count in ranked)
    breakdown = {
        tag: round(count / tag_total * 100) if tag_total else 0
        for tag, count in ranked[:BREAKDOWN_TAGS]
    }

    return {
        "dataPoints": data_points,
        "milestones": milestones,
        "summary": {
            "totalVideos": len(videos),
            "totalDuration": total_duration,
            "topEmotionTags": [tag for tag, _count in ranked[:TOP_TAGS]],
            "emotionBreakdown": breakdown,
        },
    }


class TimelineService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_timeline(self) -> dict:
        docs = await self.store.query(
            VIDEOS,
            [Filter("indexingStatus", "==", IndexingStatus.COMPLETED.value)],
            order_by="uploadedAt",
        )
        videos = [VideoRecord.from_document(doc) for doc in docs]
        timeline = build_timeline(videos)
        logger.info(
            f"Generated {len(timeline['dataPoints'])} data points, "
            f"{len(timeline['milestones'])} milestones from {len(videos)} videos"
        )
        return timeline
