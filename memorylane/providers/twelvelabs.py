"""
TwelveLabs API client for video indexing, analysis and search.

Thin typed wrapper over the v1.3 REST API. One instance is created by the
service container and shared by the indexing, analysis and search services.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import httpx

from memorylane.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "twelvelabs"
DEFAULT_SEARCH_OPTIONS = ["visual"]


@dataclass
class IndexingTask:
    task_id: str
    video_id: str | None


@dataclass
class TaskStatus:
    status: str
    error_message: str | None = None


@dataclass
class SearchHit:
    video_id: str
    rank: int
    start: float
    end: float
    confidence: str | None = None
    thumbnail_url: str | None = None


def _parse_hit(raw: dict, position: int) -> SearchHit:
    rank = raw.get("rank")
    confidence = raw.get("confidence")
    return SearchHit(
        video_id=raw["video_id"],
        rank=int(rank) if rank is not None else position,
        start=float(raw.get("start") or 0.0),
        end=float(raw.get("end") or 0.0),
        confidence=confidence.lower() if isinstance(confidence, str) else None,
        thumbnail_url=raw.get("thumbnail_url") or None,
    )


class TwelveLabsClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.twelvelabs.io/v1.3",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"x-api-key": api_key},
            timeout=timeout,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"TwelveLabs request failed: {e}", provider=PROVIDER) from e

        if response.status_code >= 400:
            raise ProviderError(
                f"TwelveLabs API error: {response.status_code} - {response.text}",
                provider=PROVIDER,
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    # ── Indexes ────────────────────────────────────────────────────────────

    async def list_indexes(self) -> list[dict]:
        payload = await self._request("GET", "/indexes")
        return payload.get("data") or []

    async def get_index(self, index_id: str) -> dict:
        return await self._request("GET", f"/indexes/{index_id}")

    async def create_index(self, name: str, engine: str, options: Sequence[str]) -> str:
        payload = await self._request(
            "POST",
            "/indexes",
            json={
                "index_name": name,
                "engines": [{"engine_name": engine, "engine_options": list(options)}],
            },
        )
        return payload["_id"]

    async def find_index(self, name: str) -> str | None:
        for index in await self.list_indexes():
            if index.get("index_name") == name:
                return index["_id"]
        return None

    async def get_or_create_index(self, name: str, engine: str, options: Sequence[str]) -> str:
        """Look the shared index up by name, creating it on first use."""
        index_id = await self.find_index(name)
        if index_id:
            logger.info(f"Found existing index: {index_id}")
            return index_id

        logger.info(f"Creating new index: {name}")
        index_id = await self.create_index(name, engine, options)
        logger.info(f"Created new index: {index_id}")
        return index_id

    async def get_search_options(self, index_id: str) -> list[str]:
        details = await self.get_index(index_id)
        models = details.get("models") or []
        options = (models[0].get("model_options") if models else None) or DEFAULT_SEARCH_OPTIONS
        return list(options)

    async def retrieve_video(self, index_id: str, video_id: str) -> dict:
        return await self._request("GET", f"/indexes/{index_id}/videos/{video_id}")

    # ── Tasks ──────────────────────────────────────────────────────────────

    async def create_task(self, index_id: str, video_url: str) -> IndexingTask:
        # Multipart body; (None, value) parts carry plain form fields
        payload = await self._request(
            "POST",
            "/tasks",
            files={"index_id": (None, index_id), "video_url": (None, video_url)},
        )
        return IndexingTask(task_id=payload["_id"], video_id=payload.get("video_id"))

    async def get_task(self, task_id: str) -> TaskStatus:
        payload = await self._request("GET", f"/tasks/{task_id}")
        return TaskStatus(status=payload.get("status", ""), error_message=payload.get("error_message"))

    # ── Analyze / Search ───────────────────────────────────────────────────

    async def analyze(
        self,
        video_id: str,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
        response_format: dict | None = None,
    ) -> Any:
        """Open-ended analysis. The payload may be an object, a JSON string or fenced JSON."""
        body: dict[str, Any] = {
            "video_id": video_id,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if response_format:
            body["response_format"] = response_format
        return await self._request("POST", "/analyze", json=body)

    async def search(
        self,
        index_id: str,
        query: str,
        search_options: Sequence[str],
        page_limit: int | None = None,
        threshold: str | None = None,
    ) -> list[SearchHit]:
        parts: list[tuple[str, tuple[None, str]]] = [
            ("index_id", (None, index_id)),
            ("query_text", (None, query)),
        ]
        parts.extend(("search_options", (None, option)) for option in search_options)
        if page_limit:
            parts.append(("page_limit", (None, str(page_limit))))
        if threshold:
            parts.append(("threshold", (None, threshold)))

        payload = await self._request("POST", "/search", files=parts)
        hits = [_parse_hit(raw, position) for position, raw in enumerate(payload.get("data") or [], start=1)]
        logger.info(f"Search '{query}' returned {len(hits)} clips")
        return hits

    async def aclose(self) -> None:
        await self._http.aclose()
