"""
Semantic search over the shared TwelveLabs index.

Raw per-clip hits are scored, grouped into one result per video (score is
the best clip's score), joined with the stored VideoRecord, filtered by a
minimum score and ordered best-first.
"""
import logging
from dataclasses import dataclass, field
from typing import Mapping

from memorylane.db.document_store import SEARCHES, SERVER_TIMESTAMP, VIDEOS, DocumentStore, Filter
from memorylane.models.search import SearchClip, SearchRankedResult
from memorylane.models.video import VideoRecord
from memorylane.providers.twelvelabs import SearchHit

logger = logging.getLogger(__name__)

def build_bands(high_min: float = 85, medium_min: float = 60, low_min: float = 30) -> dict[str, tuple[float, float]]:
    """Confidence bands from their floors; each band tops out one point below the next."""
    if not 0 <= low_min < medium_min < high_min <= 100:
        raise ValueError(f"Band floors must increase: low={low_min}, medium={medium_min}, high={high_min}")
    return {
        "high": (float(high_min), 100.0),
        "medium": (float(medium_min), float(high_min) - 1),
        "low": (float(low_min), float(medium_min) - 1),
    }


DEFAULT_BANDS = build_bands()


@dataclass(frozen=True)
class ScoringConfig:
    bands: Mapping[str, tuple[float, float]] = field(default_factory=lambda: dict(DEFAULT_BANDS))
    band_rank_step: float = 3.0
    rank_step: float = 5.0


def confidence_to_score(confidence: str, rank: int, config: ScoringConfig = ScoringConfig()) -> float:
    """Score a clip inside its confidence band; each rank step below the top costs `band_rank_step`."""
    low, high = config.bands[confidence]
    penalty = min((rank - 1) * config.band_rank_step, high - low)
    return max(low, high - penalty)


def rank_to_score(rank: int, config: ScoringConfig = ScoringConfig()) -> float:
    """Linear decay for hits that only carry an ordinal rank."""
    return max(0.0, 100.0 - (rank - 1) * config.rank_step)


def classify_score(score: float, config: ScoringConfig = ScoringConfig()) -> str:
    for label, (low, _high) in sorted(config.bands.items(), key=lambda item: item[1][0], reverse=True):
        if score >= low:
            return label
    return "none"


class SearchRanker:
    def __init__(
        self,
        store: DocumentStore,
        twelvelabs,
        *,
        index_name: str,
        min_score: float = 50,
        scoring: ScoringConfig | None = None,
    ):
        self.store = store
        self.twelvelabs = twelvelabs
        self.index_name = index_name
        self.min_score = min_score
        self.scoring = scoring or ScoringConfig()

    def score_hit(self, hit: SearchHit, rank_in_video: int) -> float:
        if hit.confidence in self.scoring.bands:
            return confidence_to_score(hit.confidence, rank_in_video, self.scoring)
        return rank_to_score(hit.rank, self.scoring)

    async def _lookup_video(self, provider_video_id: str) -> VideoRecord | None:
        docs = await self.store.query(
            VIDEOS, [Filter("twelveLabsVideoId", "==", provider_video_id)], limit=1
        )
        return VideoRecord.from_document(docs[0]) if docs else None

    async def rank(self, hits: list[SearchHit], min_score: float) -> list[SearchRankedResult]:
        """Group hits by video, keep each video's best clip score and filter by `min_score`."""
        grouped: dict[str, SearchRankedResult] = {}

        for hit in sorted(hits, key=lambda h: h.rank):
            result = grouped.get(hit.video_id)
            if result is None:
                # Metadata lookups stay sequential, one per distinct video
                result = SearchRankedResult(
                    video_id=hit.video_id,
                    score=0.0,
                    confidence="none",
                    best_rank=hit.rank,
                    video=await self._lookup_video(hit.video_id),
                )
                grouped[hit.video_id] = result

            score = self.score_hit(hit, rank_in_video=len(result.clips) + 1)
            result.clips.append(SearchClip(
                start=hit.start,
                end=hit.end,
                score=score,
                rank=hit.rank,
                confidence=hit.confidence,
                thumbnail_url=hit.thumbnail_url,
            ))
            if score > result.score:
                result.score = score
                result.confidence = hit.confidence or classify_score(score, self.scoring)
            result.best_rank = min(result.best_rank, hit.rank)

        results = [r for r in grouped.values() if r.score >= min_score]
        results.sort(key=lambda r: (-r.score, r.best_rank))
        return results

    async def search(
        self,
        query: str,
        limit: int = 10,
        min_score: float | None = None,
        confidence_threshold: str | None = None,
    ) -> list[SearchRankedResult]:
        logger.info(f"Searching for: '{query}'")
        threshold = self.min_score if min_score is None else min_score

        index_id = await self.twelvelabs.find_index(self.index_name)
        if index_id is None:
            logger.info(f"Index '{self.index_name}' not found, returning empty results")
            results: list[SearchRankedResult] = []
        else:
            search_options = await self.twelvelabs.get_search_options(index_id)
            logger.info(f"Using search options: {', '.join(search_options)}")
            hits = await self.twelvelabs.search(
                index_id,
                query,
                search_options=search_options,
                page_limit=limit,
                threshold=confidence_threshold,
            )
            results = await self.rank(hits, threshold)

        logger.info(f"Found {len(results)} results for query: '{query}'")
        await self._record_search(query, len(results))
        return results

    async def _record_search(self, query: str, result_count: int) -> None:
        try:
            await self.store.create(SEARCHES, {
                "query": query,
                "resultCount": result_count,
                "timestamp": SERVER_TIMESTAMP,
            })
        except Exception as e:
            logger.warning(f"Failed to record search audit for '{query}': {e}")
