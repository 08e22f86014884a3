"""
Conversational assistant over the user's video library.

For every message the selector picks which videos the reply is grounded in
(follow-up reference, explicit recency request, semantic search, and finally
the most recent uploads), builds a bounded prompt and stores the exchange.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from memorylane.core.llm_client import is_rate_limit_error
from memorylane.db.document_store import (
    CONVERSATIONS,
    SERVER_TIMESTAMP,
    VIDEOS,
    ArrayAppend,
    DocumentStore,
)
from memorylane.models.conversation import AttachedVideo, ChatIntent, ConversationRecord, Message
from memorylane.models.video import VideoRecord
from memorylane.services.prompts import (
    CHAT_PROMPT,
    GENERATION_FAILED_MESSAGE,
    HIGH_DEMAND_MESSAGE,
    MAX_HISTORY_TOKENS,
    MAX_VIDEO_CONTEXT_TOKENS,
    truncate_to_tokens,
)
from memorylane.services.search import SearchRanker

logger = logging.getLogger(__name__)

_FOLLOW_UP = re.compile(r"\b(this|that|it|those|these|that one|this one|the last one)\b", re.IGNORECASE)
_SHOW = re.compile(r"\b(show|open|play|watch)\b", re.IGNORECASE)
_GENERATE = re.compile(r"\b(create|generate|make)\b", re.IGNORECASE)
_RECENT = re.compile(r"\b(last|latest|most recent|newest)\b", re.IGNORECASE)

NO_VIDEOS_CONTEXT = "No videos available."
NO_HISTORY_CONTEXT = "No prior messages."


def is_follow_up(message: str) -> bool:
    return bool(_FOLLOW_UP.search(message))


def is_recent_request(message: str) -> bool:
    return bool(_RECENT.search(message))


def detect_intent(message: str) -> ChatIntent:
    if _SHOW.search(message):
        return ChatIntent.SHOW_VIDEO
    if _GENERATE.search(message):
        return ChatIntent.GENERATE
    return ChatIntent.SEARCH


def format_date(value: datetime | None) -> str:
    if value is None:
        return "Unknown date"
    return value.strftime("%b %d, %Y")


@dataclass
class ChatReply:
    conversation_id: str | None
    message: Message
    attached_videos: list[AttachedVideo] = field(default_factory=list)
    candidate_source: str = "recent"


class ChatContextSelector:
    def __init__(
        self,
        store: DocumentStore,
        ranker: SearchRanker,
        generator,
        *,
        max_context_videos: int = 5,
        attach_limit: int = 3,
        history_limit: int = 8,
        min_score: float = 75,
        confidence_threshold: str | None = "high",
        search_page_limit: int = 10,
        transcript_excerpt: int = 800,
    ):
        self.store = store
        self.ranker = ranker
        self.generator = generator
        self.max_context_videos = max_context_videos
        self.attach_limit = attach_limit
        self.history_limit = history_limit
        self.min_score = min_score
        self.confidence_threshold = confidence_threshold
        self.search_page_limit = search_page_limit
        self.transcript_excerpt = transcript_excerpt

    # ── Candidate selection ────────────────────────────────────────────────

    async def fetch_recent_videos(self, limit: int) -> list[VideoRecord]:
        docs = await self.store.query(VIDEOS, order_by="uploadedAt", descending=True, limit=limit)
        return [VideoRecord.from_document(doc) for doc in docs]

    async def fetch_videos_by_ids(self, ids: list[str]) -> list[VideoRecord]:
        videos = []
        for video_id in dict.fromkeys(i for i in ids if i):
            doc = await self.store.get(VIDEOS, video_id)
            if doc is not None:
                videos.append(VideoRecord.from_document(doc))
        return videos

    async def search_videos(self, message: str) -> list[VideoRecord]:
        try:
            results = await self.ranker.search(
                message,
                limit=self.search_page_limit,
                min_score=self.min_score,
                confidence_threshold=self.confidence_threshold,
            )
        except Exception as e:
            logger.warning(f"Chat search failed, using fallback context: {e}")
            return []
        videos = [result.video for result in results if result.video is not None]
        return videos[:self.max_context_videos]

    async def select_candidates(
        self,
        message: str,
        conversation: ConversationRecord | None = None,
    ) -> tuple[list[VideoRecord], str]:
        """Return the videos to ground the reply in and which rule produced them."""
        previous = conversation.last_attached_videos() if conversation else []

        if is_follow_up(message) and previous:
            videos = await self.fetch_videos_by_ids([v.id for v in previous])
            if videos:
                return videos[:self.max_context_videos], "follow_up"

        if detect_intent(message) == ChatIntent.SHOW_VIDEO and is_recent_request(message):
            videos = await self.fetch_recent_videos(1)
            if videos:
                return videos, "recent_request"

        videos = await self.search_videos(message)
        if videos:
            return videos, "search"

        return await self.fetch_recent_videos(self.max_context_videos), "recent"

    # ── Prompt assembly ────────────────────────────────────────────────────

    def build_video_context(self, videos: list[VideoRecord]) -> str:
        if not videos:
            return NO_VIDEOS_CONTEXT

        blocks = []
        for position, video in enumerate(videos[:self.max_context_videos], start=1):
            lines = [
                f"[{position}] id: {video.id}",
                f"title: {video.title}",
                f"uploadedAt: {format_date(video.uploaded_at)}",
                f"summary: {video.summary or 'No summary available.'}",
            ]
            if video.emotion_tags:
                lines.append(f"emotions: {', '.join(video.emotion_tags)}")
            if video.transcript:
                lines.append(f"transcript: {video.transcript[:self.transcript_excerpt]}")
            blocks.append("\n".join(lines))
        return truncate_to_tokens("\n\n".join(blocks), MAX_VIDEO_CONTEXT_TOKENS)

    def build_history_context(self, messages: list[Message]) -> str:
        if not messages:
            return NO_HISTORY_CONTEXT
        recent = messages[-self.history_limit:]
        text = "\n".join(
            f"{'Assistant' if m.role == 'assistant' else 'User'}: {m.content}" for m in recent
        )
        return truncate_to_tokens(text, MAX_HISTORY_TOKENS)

    def build_prompt(self, message: str, videos: list[VideoRecord], history: list[Message]) -> str:
        return CHAT_PROMPT.format(
            history=self.build_history_context(history),
            video_context=self.build_video_context(videos),
            message=message,
        )

    def attach(self, videos: list[VideoRecord], intent: ChatIntent) -> list[AttachedVideo]:
        return [
            AttachedVideo(
                id=video.id,
                title=video.title,
                uploaded_at=video.uploaded_at,
                url=video.storage_url,
                duration=video.duration,
                emotion_tags=list(video.emotion_tags),
                intent=intent,
            )
            for video in videos[:self.attach_limit]
        ]

    # ── Conversation flow ──────────────────────────────────────────────────

    async def load_conversation(self, conversation_id: str | None) -> ConversationRecord | None:
        if not conversation_id:
            return None
        doc = await self.store.get(CONVERSATIONS, conversation_id)
        if doc is None:
            return None
        return ConversationRecord.model_validate({**doc.data, "id": doc.id})

    async def generate_reply(self, prompt: str) -> str:
        try:
            return await self.generator.generate(prompt)
        except Exception as e:
            if is_rate_limit_error(e):
                logger.warning(f"Chat generation rate limited: {e}")
                return HIGH_DEMAND_MESSAGE
            logger.error(f"Chat generation failed: {e}")
            return GENERATION_FAILED_MESSAGE

    async def respond(self, message: str, conversation_id: str | None = None) -> ChatReply:
        conversation = await self.load_conversation(conversation_id)
        if conversation_id and conversation is None:
            logger.warning(f"Conversation {conversation_id} not found; starting a new one")
        history = conversation.messages if conversation else []

        intent = detect_intent(message)
        videos, source = await self.select_candidates(message, conversation)
        logger.info(f"Chat context: {len(videos)} videos via {source}")

        response_text = await self.generate_reply(self.build_prompt(message, videos, history))

        now = datetime.now(timezone.utc)
        attached = self.attach(videos, intent)
        user_message = Message(role="user", content=message, timestamp=now)
        assistant_message = Message(role="assistant", content=response_text, timestamp=now, attached_videos=attached)

        conversation_id = await self._save_exchange(
            conversation.id if conversation else None, user_message, assistant_message
        )
        return ChatReply(
            conversation_id=conversation_id,
            message=assistant_message,
            attached_videos=attached,
            candidate_source=source,
        )

    async def _save_exchange(self, conversation_id: str | None, user: Message, assistant: Message) -> str | None:
        try:
            if conversation_id is None:
                conversation_id = await self.store.create(CONVERSATIONS, {
                    "createdAt": SERVER_TIMESTAMP,
                    "messages": [],
                })
                logger.info(f"New conversation created: {conversation_id}")

            await self.store.update(CONVERSATIONS, conversation_id, {
                "messages": ArrayAppend(user.to_document(), assistant.to_document()),
                "updatedAt": SERVER_TIMESTAMP,
            })
        except Exception as e:
            # The reply is still useful without being stored
            logger.error(f"Failed to save conversation {conversation_id}: {e}")
        return conversation_id

    async def get_history(self, conversation_id: str, limit: int = 50) -> ConversationRecord:
        conversation = await self.load_conversation(conversation_id)
        if conversation is None:
            return ConversationRecord(id=conversation_id)
        conversation.messages = conversation.messages[-limit:]
        return conversation
