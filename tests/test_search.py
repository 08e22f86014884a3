import pytest
from unittest.mock import AsyncMock, patch

from memorylane.db.document_store import SEARCHES
from memorylane.services.search import (
    ScoringConfig,
    SearchRanker,
    build_bands,
    classify_score,
    confidence_to_score,
    rank_to_score,
)
from tests.conftest import BEACH_VIDEO, BIRTHDAY_VIDEO, hit


def make_ranker(store, twelvelabs, min_score=50):
    return SearchRanker(store, twelvelabs, index_name="My Index (Default)", min_score=min_score)


class TestScoring:
    def test_band_top_of_range(self):
        assert confidence_to_score("high", 1) == 100
        assert confidence_to_score("medium", 1) == 84
        assert confidence_to_score("low", 1) == 59

    def test_band_rank_penalty(self):
        assert confidence_to_score("high", 2) == 97
        assert confidence_to_score("medium", 3) == 78

    def test_band_floor(self):
        assert confidence_to_score("high", 50) == 85
        assert confidence_to_score("low", 100) == 30

    def test_rank_only(self):
        assert rank_to_score(1) == 100
        assert rank_to_score(3) == 90
        assert rank_to_score(40) == 0

    def test_configurable_steps(self):
        config = ScoringConfig(band_rank_step=1, rank_step=10)
        assert confidence_to_score("high", 3, config) == 98
        assert rank_to_score(3, config) == 80

    def test_bands_from_floors(self):
        bands = build_bands(90, 70, 40)
        assert bands == {"high": (90.0, 100.0), "medium": (70.0, 89.0), "low": (40.0, 69.0)}

        config = ScoringConfig(bands=bands)
        assert confidence_to_score("medium", 1, config) == 89
        assert classify_score(85, config) == "medium"

    def test_bands_must_increase(self):
        with pytest.raises(ValueError):
            build_bands(60, 60, 30)
        with pytest.raises(ValueError):
            build_bands(85, 60, -1)

    def test_classify(self):
        assert classify_score(90) == "high"
        assert classify_score(70) == "medium"
        assert classify_score(40) == "low"
        assert classify_score(10) == "none"


@pytest.mark.asyncio
class TestRanking:
    """Test grouping, thresholding and ordering of raw clips."""

    async def test_beach_trip_scenario(self, store, add_video, mock_twelvelabs):
        beach_id = await add_video({**BEACH_VIDEO, "twelveLabsVideoId": "video-a"})
        await add_video({**BIRTHDAY_VIDEO, "twelveLabsVideoId": "video-b"})
        hits = [
            hit("video-a", 1, "high"),
            hit("video-a", 2, "medium"),
            hit("video-a", 3, "low"),
            hit("video-b", 1, "low"),
        ]
        ranker = make_ranker(store, mock_twelvelabs)

        results = await ranker.rank(hits, min_score=50)

        assert [r.video_id for r in results] == ["video-a", "video-b"]
        video_a, video_b = results
        assert video_a.score == 100
        assert video_a.confidence == "high"
        assert len(video_a.clips) == 3
        assert [c.score for c in video_a.clips] == [100, 81, 53]
        assert video_a.video.id == beach_id
        assert video_b.score == 59

    async def test_low_band_dropped_above_threshold(self, store, mock_twelvelabs):
        ranker = make_ranker(store, mock_twelvelabs)

        results = await ranker.rank([hit("video-a", 1, "high"), hit("video-b", 1, "low")], min_score=60)
        assert [r.video_id for r in results] == ["video-a"]

    async def test_group_score_is_max_not_first(self, store, mock_twelvelabs):
        ranker = make_ranker(store, mock_twelvelabs)
        hits = [hit("video-a", 1, "low"), hit("video-a", 2, "high")]

        results = await ranker.rank(hits, min_score=0)
        assert len(results) == 1
        assert results[0].score == 97
        assert results[0].confidence == "high"
        assert results[0].best_rank == 1

    async def test_threshold_keeps_everything_at_or_above(self, store, mock_twelvelabs):
        ranker = make_ranker(store, mock_twelvelabs)
        hits = [hit(f"video-{rank}", rank, confidence=None) for rank in range(1, 21)]

        results = await ranker.rank(hits, min_score=50)
        assert [r.score for r in results] == [rank_to_score(rank) for rank in range(1, 12)]
        assert all(r.score >= 50 for r in results)

    async def test_ties_broken_by_provider_rank(self, store, mock_twelvelabs):
        ranker = make_ranker(store, mock_twelvelabs)
        hits = [hit("video-late", 4, "high"), hit("video-early", 2, "high")]

        results = await ranker.rank(hits, min_score=0)
        assert [r.video_id for r in results] == ["video-early", "video-late"]

    async def test_unknown_video_kept_with_null_record(self, store, mock_twelvelabs):
        ranker = make_ranker(store, mock_twelvelabs)

        results = await ranker.rank([hit("not-in-store", 1, "high")], min_score=0)
        assert results[0].video is None
        assert len(results[0].clips) == 1

    async def test_metadata_looked_up_once_per_video(self, store, add_video, mock_twelvelabs):
        await add_video({**BEACH_VIDEO, "twelveLabsVideoId": "video-a"})
        ranker = make_ranker(store, mock_twelvelabs)

        with patch.object(store, "query", wraps=store.query) as query:
            await ranker.rank([hit("video-a", 1), hit("video-a", 2), hit("video-a", 3)], min_score=0)
        assert query.await_count == 1


@pytest.mark.asyncio
class TestSearch:
    async def test_search_passes_options_and_audits(self, store, add_video, mock_twelvelabs):
        await add_video(BEACH_VIDEO)
        mock_twelvelabs.search = AsyncMock(return_value=[hit("tl-beach", 1, "high")])
        ranker = make_ranker(store, mock_twelvelabs)

        results = await ranker.search("beach trip", limit=7)

        assert len(results) == 1
        assert results[0].video.title == "beach_trip.mp4"
        mock_twelvelabs.search.assert_awaited_once_with(
            "idx-1", "beach trip", search_options=["visual", "audio"], page_limit=7, threshold=None,
        )
        audits = await store.query(SEARCHES)
        assert len(audits) == 1
        assert audits[0].data["query"] == "beach trip"
        assert audits[0].data["resultCount"] == 1
        assert "timestamp" in audits[0].data

    async def test_min_score_override(self, store, mock_twelvelabs):
        mock_twelvelabs.search = AsyncMock(return_value=[hit("video-a", 1, "medium")])
        ranker = make_ranker(store, mock_twelvelabs)

        assert len(await ranker.search("beach", min_score=75)) == 1
        assert await ranker.search("beach", min_score=85, confidence_threshold="high") == []
        assert mock_twelvelabs.search.call_args.kwargs["threshold"] == "high"

    async def test_missing_index_returns_empty(self, store, mock_twelvelabs):
        mock_twelvelabs.find_index = AsyncMock(return_value=None)
        ranker = make_ranker(store, mock_twelvelabs)

        assert await ranker.search("beach") == []
        mock_twelvelabs.search.assert_not_called()

    async def test_audit_failure_does_not_fail_search(self, store, mock_twelvelabs):
        mock_twelvelabs.search = AsyncMock(return_value=[hit("video-a", 1, "high")])
        ranker = make_ranker(store, mock_twelvelabs)

        with patch.object(store, "create", AsyncMock(side_effect=Exception("db down"))):
            results = await ranker.search("beach")
        assert len(results) == 1

    async def test_provider_error_propagates(self, store, mock_twelvelabs):
        mock_twelvelabs.search = AsyncMock(side_effect=Exception("search unavailable"))
        ranker = make_ranker(store, mock_twelvelabs)

        with pytest.raises(Exception, match="search unavailable"):
            await ranker.search("beach")
