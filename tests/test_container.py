import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from memorylane.core.config import Settings
from memorylane.db.memory_store import InMemoryDocumentStore
from memorylane.services.container import build_services
from memorylane.services.indexing import AsyncioPollDispatcher


def make_settings(**overrides):
    return Settings(TWELVELABS_API_KEY="k", GROQ_API_KEY="k", DOCUMENT_STORE="memory", REDIS_URL="", **overrides)


class TestBuildServices:
    def test_defaults_to_inprocess_polling(self, mock_twelvelabs, mock_generator):
        services = build_services(make_settings(), twelvelabs=mock_twelvelabs, generator=mock_generator)

        assert isinstance(services.store, InMemoryDocumentStore)
        assert isinstance(services.dispatcher, AsyncioPollDispatcher)
        assert services.dispatcher.machine is services.indexing
        assert services.rate_limiter is None
        assert services.chat.ranker is services.ranker

    def test_scoring_and_thresholds_from_settings(self, mock_twelvelabs, mock_generator):
        settings = make_settings(SCORE_BAND_RANK_STEP=1, SEARCH_MIN_SCORE=40, CHAT_MIN_SCORE=80)

        services = build_services(settings, twelvelabs=mock_twelvelabs, generator=mock_generator)

        assert services.ranker.scoring.band_rank_step == 1
        assert services.ranker.min_score == 40
        assert services.chat.min_score == 80

    def test_band_floors_from_settings(self, mock_twelvelabs, mock_generator):
        settings = make_settings(SCORE_HIGH_MIN=90, SCORE_MEDIUM_MIN=70)

        services = build_services(settings, twelvelabs=mock_twelvelabs, generator=mock_generator)

        assert services.ranker.scoring.bands["high"] == (90.0, 100.0)
        assert services.ranker.scoring.bands["medium"] == (70.0, 89.0)
        assert services.ranker.scoring.bands["low"] == (30.0, 69.0)

    def test_celery_dispatcher(self, mock_twelvelabs, mock_generator):
        from memorylane.workers.tasks import CeleryPollDispatcher

        services = build_services(
            make_settings(INDEXING_POLL_BACKEND="celery"), twelvelabs=mock_twelvelabs, generator=mock_generator
        )
        assert isinstance(services.dispatcher, CeleryPollDispatcher)

        with patch("memorylane.workers.tasks.poll_indexing_task") as task:
            services.dispatcher("video-1", "task-1")
        task.delay.assert_called_once_with("video-1", "task-1")


@pytest.mark.asyncio
class TestServicesLifecycle:
    async def test_aclose_releases_clients(self, mock_twelvelabs, mock_generator):
        limiter = MagicMock()
        limiter.close = AsyncMock()
        services = build_services(
            make_settings(), twelvelabs=mock_twelvelabs, generator=mock_generator, rate_limiter=limiter
        )

        await services.aclose()

        mock_twelvelabs.aclose.assert_awaited_once()
        limiter.close.assert_awaited_once()
