import logging
from typing import Any

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from memorylane.core.config import settings
from memorylane.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request bodies ─────────────────────────────────────────────────────────

class SearchRequest(BaseModel):
    query: str = ""
    limit: int = Field(default=10, ge=1, le=50)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    conversation_id: str | None = Field(default=None, alias="conversationId")


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    # TwelveLabs sends `event`; older deliveries used `type`
    event: str | None = Field(default=None, validation_alias=AliasChoices("event", "type"))
    data: dict[str, Any] | None = None


# ── Helpers ────────────────────────────────────────────────────────────────

def get_services(request: Request) -> Services:
    return request.app.state.services


def client_id(request: Request) -> str:
    return request.headers.get("X-Client-Id") or (request.client.host if request.client else "anonymous")


async def enforce_rate_limit(request: Request, action: str, max_count: int) -> None:
    limiter = get_services(request).rate_limiter
    if limiter is None:
        return
    try:
        allowed = await limiter.check(client_id(request), action, max_count, settings.RATE_LIMIT_WINDOW)
    except Exception as e:
        # Redis outages must not take the API down with them
        logger.warning(f"Rate limit check failed for {action}: {e}")
        return
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")


# ── Health ─────────────────────────────────────────────────────────────────

@router.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.PROJECT_NAME}


# ── Videos ─────────────────────────────────────────────────────────────────

@router.post("/videos/upload", status_code=201)
async def upload_video(request: Request, video: UploadFile | None = File(default=None)):
    services = get_services(request)
    data = await video.read() if video is not None else b""
    record = await services.library.upload(
        video.filename if video is not None else None,
        data,
        video.content_type if video is not None else None,
    )
    return {"success": True, "video": record.to_api()}


@router.get("/videos")
async def list_videos(request: Request, limit: int = Query(default=50, ge=1, le=200)):
    videos = await get_services(request).library.list_videos(limit)
    return {"success": True, "videos": [v.to_api() for v in videos], "count": len(videos)}


@router.get("/videos/{video_id}")
async def get_video(request: Request, video_id: str):
    video = await get_services(request).library.get_video(video_id)
    return {"success": True, "video": video.to_api()}


@router.delete("/videos/{video_id}")
async def delete_video(request: Request, video_id: str):
    await get_services(request).library.delete_video(video_id)
    return {"success": True, "message": "Video deleted successfully"}


@router.post("/videos/{video_id}/index", status_code=202)
async def index_video(request: Request, video_id: str, force: bool = False):
    ticket = await get_services(request).indexing.start_indexing(video_id, force=force)
    return {
        "success": True,
        "message": "Indexing started",
        "videoId": ticket.video_id,
        "taskId": ticket.task_id,
        "twelveLabsVideoId": ticket.provider_video_id,
    }


# ── Search ─────────────────────────────────────────────────────────────────

@router.post("/search")
async def search_videos(request: Request, body: SearchRequest):
    query = body.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Search query is required")
    await enforce_rate_limit(request, "search", settings.SEARCH_RATE_LIMIT)

    results = await get_services(request).ranker.search(query, limit=body.limit)
    return {
        "success": True,
        "query": query,
        "results": [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in results],
        "count": len(results),
    }


@router.get("/search/by-emotion")
async def search_by_emotion(request: Request, emotion: str | None = None, limit: int = Query(default=20, ge=1, le=100)):
    videos = await get_services(request).library.search_by_emotion(emotion, limit)
    return {"success": True, "emotion": emotion.lower().strip(), "videos": [v.to_api() for v in videos], "count": len(videos)}


@router.get("/search/emotions")
async def emotion_statistics(request: Request):
    stats = await get_services(request).library.emotion_statistics()
    return {"success": True, **stats}


@router.get("/timeline")
async def timeline(request: Request):
    data = await get_services(request).timeline.get_timeline()
    return {"success": True, **data}


# ── Chat ───────────────────────────────────────────────────────────────────

@router.post("/chat")
async def chat(request: Request, body: ChatRequest):
    message = body.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")
    await enforce_rate_limit(request, "chat", settings.CHAT_RATE_LIMIT)

    reply = await get_services(request).chat.respond(message, body.conversation_id)
    return {
        "success": True,
        "conversationId": reply.conversation_id,
        "message": reply.message.to_document(),
        "attachedVideos": [v.model_dump(mode="json", by_alias=True, exclude_none=True) for v in reply.attached_videos],
    }


@router.get("/chat/history")
async def chat_history(
    request: Request,
    conversation_id: str | None = Query(default=None, alias="conversationId"),
    limit: int = Query(default=50, ge=1, le=200),
):
    if not conversation_id:
        raise HTTPException(status_code=400, detail="conversationId is required")
    conversation = await get_services(request).chat.get_history(conversation_id, limit)
    return {
        "success": True,
        "conversationId": conversation.id,
        "messages": [m.to_document() for m in conversation.messages],
    }


# ── Webhooks ───────────────────────────────────────────────────────────────

@router.post("/webhooks/twelvelabs")
async def twelvelabs_webhook(request: Request, payload: WebhookPayload):
    logger.info(f"TwelveLabs webhook received: {payload.event}")
    try:
        handled = await get_services(request).indexing.handle_webhook(payload.event, payload.data)
    except Exception as e:
        # Always acknowledge so TwelveLabs does not retry forever
        logger.error(f"Webhook processing error: {e}")
        handled = False
    return {"received": True, "handled": handled}


@router.get("/webhooks/twelvelabs")
async def twelvelabs_webhook_check():
    return {"status": "ok", "message": "TwelveLabs webhook endpoint is active"}
