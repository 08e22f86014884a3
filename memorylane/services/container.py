"""
Wires every client and service from settings.

The process entry point (FastAPI lifespan or Celery worker) owns the
returned Services object and must `aclose()` it on shutdown. Tests pass
fakes for any collaborator.
"""
import logging
from dataclasses import dataclass

from memorylane.core.config import Settings
from memorylane.core.llm_client import TextGenerator, build_llm
from memorylane.db.document_store import DocumentStore
from memorylane.db.redis_client import RateLimiter
from memorylane.providers.twelvelabs import TwelveLabsClient
from memorylane.services.analysis import ContentAnalyzer
from memorylane.services.chat import ChatContextSelector
from memorylane.services.indexing import AsyncioPollDispatcher, IndexingStateMachine, PollDispatcher
from memorylane.services.library import VideoLibrary
from memorylane.services.search import ScoringConfig, SearchRanker, build_bands
from memorylane.services.timeline import TimelineService
from memorylane.storage.blob import BlobStore, LocalBlobStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: DocumentStore
    blobs: BlobStore
    twelvelabs: TwelveLabsClient
    generator: TextGenerator
    analyzer: ContentAnalyzer
    indexing: IndexingStateMachine
    ranker: SearchRanker
    chat: ChatContextSelector
    library: VideoLibrary
    timeline: TimelineService
    dispatcher: PollDispatcher
    rate_limiter: RateLimiter | None = None

    async def aclose(self) -> None:
        if isinstance(self.dispatcher, AsyncioPollDispatcher):
            await self.dispatcher.shutdown()
        await self.twelvelabs.aclose()
        await self.store.close()
        if self.rate_limiter is not None:
            await self.rate_limiter.close()


def build_store(settings: Settings) -> DocumentStore:
    if settings.DOCUMENT_STORE == "memory":
        from memorylane.db.memory_store import InMemoryDocumentStore
        logger.warning("Using in-memory document store; data is lost on restart")
        return InMemoryDocumentStore()

    from memorylane.db.persistence import SqlDocumentStore
    from memorylane.db.postgres import create_engine, create_session_factory
    engine = create_engine(settings.POSTGRES_URL)
    return SqlDocumentStore(create_session_factory(engine), engine=engine)


def build_dispatcher(settings: Settings) -> PollDispatcher:
    if settings.INDEXING_POLL_BACKEND == "celery":
        from memorylane.workers.tasks import CeleryPollDispatcher
        return CeleryPollDispatcher()
    return AsyncioPollDispatcher()


def build_services(
    settings: Settings,
    *,
    store: DocumentStore | None = None,
    blobs: BlobStore | None = None,
    twelvelabs=None,
    generator=None,
    dispatcher: PollDispatcher | None = None,
    rate_limiter: RateLimiter | None = None,
) -> Services:
    store = store or build_store(settings)
    blobs = blobs or LocalBlobStore(settings.MEDIA_ROOT, settings.PUBLIC_MEDIA_URL)
    twelvelabs = twelvelabs or TwelveLabsClient(
        api_key=settings.TWELVELABS_API_KEY,
        base_url=settings.TWELVELABS_BASE_URL,
        timeout=settings.TWELVELABS_TIMEOUT,
    )
    generator = generator or TextGenerator(
        build_llm(settings.GROQ_API_KEY, settings.GROQ_MODEL, settings.GROQ_TEMPERATURE),
        max_retries=settings.LLM_MAX_RETRIES,
    )
    dispatcher = dispatcher or build_dispatcher(settings)
    if rate_limiter is None and settings.REDIS_URL:
        from memorylane.db.redis_client import create_redis
        rate_limiter = RateLimiter(create_redis(settings.REDIS_URL))

    scoring = ScoringConfig(
        bands=build_bands(settings.SCORE_HIGH_MIN, settings.SCORE_MEDIUM_MIN, settings.SCORE_LOW_MIN),
        band_rank_step=settings.SCORE_BAND_RANK_STEP,
        rank_step=settings.SCORE_RANK_STEP,
    )
    analyzer = ContentAnalyzer(store, twelvelabs, generator)
    indexing = IndexingStateMachine(
        store,
        twelvelabs,
        analyzer,
        dispatcher,
        index_name=settings.TWELVELABS_INDEX_NAME,
        engine_name=settings.TWELVELABS_ENGINE,
        engine_options=tuple(settings.TWELVELABS_ENGINE_OPTIONS),
        poll_interval=settings.INDEXING_POLL_INTERVAL,
        max_attempts=settings.INDEXING_MAX_ATTEMPTS,
    )
    if isinstance(dispatcher, AsyncioPollDispatcher):
        dispatcher.bind(indexing)

    ranker = SearchRanker(
        store,
        twelvelabs,
        index_name=settings.TWELVELABS_INDEX_NAME,
        min_score=settings.SEARCH_MIN_SCORE,
        scoring=scoring,
    )
    chat = ChatContextSelector(
        store,
        ranker,
        generator,
        min_score=settings.CHAT_MIN_SCORE,
        confidence_threshold=settings.CHAT_CONFIDENCE_THRESHOLD or None,
        search_page_limit=settings.SEARCH_PAGE_LIMIT,
    )

    return Services(
        settings=settings,
        store=store,
        blobs=blobs,
        twelvelabs=twelvelabs,
        generator=generator,
        analyzer=analyzer,
        indexing=indexing,
        ranker=ranker,
        chat=chat,
        library=VideoLibrary(store, blobs, settings.MAX_UPLOAD_BYTES),
        timeline=TimelineService(store),
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
    )
