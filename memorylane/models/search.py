from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from memorylane.models.video import VideoRecord


class SearchClip(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start: float
    end: float
    score: float
    rank: int
    confidence: str | None = None
    thumbnail_url: str | None = Field(default=None, alias="thumbnailUrl")


class SearchRankedResult(BaseModel):
    """One video matched by a query, with all of its matching clips merged."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(alias="videoId")
    score: float
    confidence: str
    best_rank: int = Field(alias="bestRank")
    video: VideoRecord | None = None
    clips: list[SearchClip] = Field(default_factory=list)
