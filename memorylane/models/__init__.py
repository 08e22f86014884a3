from memorylane.models.conversation import AttachedVideo, ChatIntent, ConversationRecord, Message
from memorylane.models.search import SearchClip, SearchRankedResult
from memorylane.models.video import IndexingStatus, VideoRecord

__all__ = [
    "AttachedVideo",
    "ChatIntent",
    "ConversationRecord",
    "IndexingStatus",
    "Message",
    "SearchClip",
    "SearchRankedResult",
    "VideoRecord",
]
