"""
Indexing lifecycle for uploaded videos.

pending -> indexing -> completed | failed | timeout

`start_indexing` submits a TwelveLabs task and hands the poll loop to a
dispatcher so the HTTP request can return right after submission. The poll
loop and the webhook receiver both finish a video through `complete`/`fail`,
which only write while the record is not yet terminal: whichever arrives
first wins and the other becomes a no-op.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from memorylane.core.exceptions import IndexingConflictError, IndexingStartError, VideoNotFoundError
from memorylane.db.document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    VIDEOS,
    DocumentStore,
    Filter,
)
from memorylane.models.video import (
    CONTENT_FIELDS,
    EXTERNAL_ID_FIELDS,
    LIFECYCLE_FIELDS,
    IndexingStatus,
    VideoRecord,
    is_terminal_status,
)
from memorylane.services.analysis import ContentAnalyzer

logger = logging.getLogger(__name__)

READY_STATUSES = {"ready", "completed"}
FAILED_STATUSES = {"failed"}
WEBHOOK_COMPLETED_EVENTS = {"task.ready", "task.completed"}
WEBHOOK_FAILED_EVENTS = {"task.failed"}


@dataclass
class IndexingTicket:
    video_id: str
    task_id: str
    provider_video_id: str | None
    index_id: str


def _not_terminal(data: Mapping[str, Any]) -> bool:
    return not is_terminal_status(data.get("indexingStatus"))


def format_wait(seconds: float) -> str:
    """Human-readable polling budget, e.g. "5 minutes" or "90 seconds"."""
    seconds = int(seconds)
    if seconds >= 60 and seconds % 60 == 0:
        minutes = seconds // 60
        unit = "minute" if minutes == 1 else "minutes"
        return f"{minutes} {unit}"
    unit = "second" if seconds == 1 else "seconds"
    return f"{seconds} {unit}"


# ── Poll dispatchers ───────────────────────────────────────────────────────

PollDispatcher = Callable[[str, str], None]


class AsyncioPollDispatcher:
    """Runs each poll loop as a detached asyncio task keyed by its task id."""

    def __init__(self):
        self.machine: "IndexingStateMachine | None" = None
        self._tasks: dict[str, asyncio.Task] = {}

    def bind(self, machine: "IndexingStateMachine") -> None:
        self.machine = machine

    def __call__(self, video_id: str, task_id: str) -> None:
        if self.machine is None:
            raise RuntimeError("AsyncioPollDispatcher is not bound to a state machine")
        task = asyncio.create_task(self.machine.run_poll_loop(video_id, task_id), name=f"poll:{task_id}")
        self._tasks[task_id] = task
        task.add_done_callback(lambda t: self._on_done(task_id, t))

    def _on_done(self, task_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(task_id, None)
        if task.cancelled():
            logger.info(f"Poll loop for task {task_id} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Poll loop for task {task_id} crashed: {error!r}")

    @property
    def active(self) -> list[str]:
        return list(self._tasks)

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.wait()


# ── State machine ──────────────────────────────────────────────────────────

class IndexingStateMachine:
    def __init__(
        self,
        store: DocumentStore,
        twelvelabs,
        analyzer: ContentAnalyzer,
        dispatcher: PollDispatcher,
        *,
        index_name: str,
        engine_name: str = "marengo2.7",
        engine_options: tuple[str, ...] = ("visual", "audio"),
        poll_interval: float = 5.0,
        max_attempts: int = 60,
    ):
        self.store = store
        self.twelvelabs = twelvelabs
        self.analyzer = analyzer
        self.dispatcher = dispatcher
        self.index_name = index_name
        self.engine_name = engine_name
        self.engine_options = tuple(engine_options)
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    async def _load(self, video_id: str) -> VideoRecord:
        doc = await self.store.get(VIDEOS, video_id)
        if doc is None:
            raise VideoNotFoundError(video_id)
        return VideoRecord.from_document(doc)

    # ── Start ──────────────────────────────────────────────────────────────

    async def start_indexing(self, video_id: str, force: bool = False) -> IndexingTicket:
        video = await self._load(video_id)
        status = video.indexing_status

        if status == IndexingStatus.INDEXING:
            raise IndexingConflictError("Video is already being indexed")
        if status != IndexingStatus.PENDING and not force:
            raise IndexingConflictError(
                f"Video indexing is {status.value}. Use force=true to re-index."
            )

        if force and status != IndexingStatus.PENDING:
            await self.reset(video_id)

        logger.info(f"Starting TwelveLabs indexing for: {video.title}")
        try:
            index_id = await self.twelvelabs.get_or_create_index(
                self.index_name, self.engine_name, self.engine_options
            )
            await self.store.update(VIDEOS, video_id, {
                "indexingStatus": IndexingStatus.INDEXING.value,
                "twelveLabsIndexId": index_id,
                "indexingStartedAt": SERVER_TIMESTAMP,
            })
            task = await self.twelvelabs.create_task(index_id, video.storage_url)
            await self.store.update(VIDEOS, video_id, {
                "twelveLabsTaskId": task.task_id,
                "twelveLabsVideoId": task.video_id,
            })
        except Exception as e:
            logger.error(f"Indexing could not be started for {video_id}: {e}")
            await self._record_start_failure(video_id, str(e))
            raise IndexingStartError(video_id, str(e)) from e

        logger.info(f"Task created: {task.task_id} (TwelveLabs video {task.video_id})")
        self.dispatcher(video_id, task.task_id)
        return IndexingTicket(
            video_id=video_id,
            task_id=task.task_id,
            provider_video_id=task.video_id,
            index_id=index_id,
        )

    async def reset(self, video_id: str) -> None:
        """Return a video to pending, clearing external ids and derived content."""
        fields: dict[str, Any] = {"indexingStatus": IndexingStatus.PENDING.value}
        for key in (*EXTERNAL_ID_FIELDS, *CONTENT_FIELDS, *LIFECYCLE_FIELDS):
            fields[key] = DELETE_FIELD
        await self.store.update(VIDEOS, video_id, fields)
        logger.info(f"Video {video_id} reset to pending for re-indexing")

    async def _record_start_failure(self, video_id: str, message: str) -> None:
        try:
            await self.store.update(VIDEOS, video_id, {
                "indexingStatus": IndexingStatus.FAILED.value,
                "indexingError": message,
                "indexingFailedAt": SERVER_TIMESTAMP,
            })
        except Exception as db_err:
            logger.error(f"Failed to update error status for {video_id}: {db_err}")

    # ── Poll loop ──────────────────────────────────────────────────────────

    async def _still_tracking(self, video_id: str, task_id: str) -> bool:
        doc = await self.store.get(VIDEOS, video_id)
        if doc is None:
            logger.info(f"Video {video_id} was deleted; stopping poll for task {task_id}")
            return False
        status = doc.data.get("indexingStatus")
        if is_terminal_status(status) or status == IndexingStatus.PENDING.value:
            return False
        if doc.data.get("twelveLabsTaskId") not in (None, task_id):
            logger.info(f"Video {video_id} was re-indexed; abandoning task {task_id}")
            return False
        return True

    async def run_poll_loop(self, video_id: str, task_id: str) -> None:
        """Poll the task until it settles, times out or the record moves on."""
        logger.info(f"Starting polling for task: {task_id}")

        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.poll_interval)

            if attempt % 10 == 0:
                logger.info(f"Polling attempt {attempt}/{self.max_attempts} for task {task_id}")

            # Status checks and terminal writes share one retry budget
            try:
                if not await self._still_tracking(video_id, task_id):
                    return
                task = await self.twelvelabs.get_task(task_id)
                logger.debug(f"Task {task_id} status: {task.status}")

                if task.status in READY_STATUSES:
                    logger.info(f"Indexing completed for video: {video_id}")
                    await self.complete(video_id)
                    return
                if task.status in FAILED_STATUSES:
                    logger.error(f"Indexing failed for video: {video_id}")
                    await self.fail(video_id, task.error_message or "Indexing failed")
                    return
            except Exception as e:
                logger.error(f"Polling error for {video_id}: {e}")
                if attempt >= self.max_attempts:
                    await self._fail_quietly(video_id, f"Polling error: {e}")
                    return

        logger.error(f"Polling timeout for video: {video_id}")
        await self._fail_quietly(
            video_id,
            f"Polling timeout after {format_wait(self.poll_interval * self.max_attempts)}",
            status=IndexingStatus.TIMEOUT,
        )

    async def _fail_quietly(
        self,
        video_id: str,
        message: str,
        status: IndexingStatus = IndexingStatus.FAILED,
    ) -> None:
        try:
            await self.fail(video_id, message, status=status)
        except Exception as db_err:
            logger.error(f"Failed to record {status.value} for {video_id}: {db_err}")

    # ── Terminal transitions ───────────────────────────────────────────────

    async def complete(self, video_id: str) -> bool:
        """Analyze and mark completed. No-op when the record is already terminal."""
        doc = await self.store.get(VIDEOS, video_id)
        if doc is None or not _not_terminal(doc.data):
            return False

        analysis = await self.analyzer.analyze(video_id)
        fields = {
            **analysis.to_fields(),
            "indexingStatus": IndexingStatus.COMPLETED.value,
            "indexingCompletedAt": SERVER_TIMESTAMP,
            "processedAt": SERVER_TIMESTAMP,
            "indexingError": DELETE_FIELD,
        }
        applied = await self.store.update_if(VIDEOS, video_id, fields, _not_terminal)
        if applied:
            logger.info(f"Video data extracted and saved for: {video_id} (via {analysis.source})")
        return applied

    async def fail(
        self,
        video_id: str,
        message: str,
        status: IndexingStatus = IndexingStatus.FAILED,
    ) -> bool:
        """Record a terminal failure. No-op when the record is already terminal."""
        applied = await self.store.update_if(VIDEOS, video_id, {
            "indexingStatus": status.value,
            "indexingError": message,
            "indexingFailedAt": SERVER_TIMESTAMP,
        }, _not_terminal)
        if applied:
            logger.info(f"Video {video_id} marked as {status.value}: {message}")
        return applied

    # ── Webhook ────────────────────────────────────────────────────────────

    async def find_by_provider_video_id(self, provider_video_id: str) -> str | None:
        docs = await self.store.query(
            VIDEOS, [Filter("twelveLabsVideoId", "==", provider_video_id)], limit=1
        )
        return docs[0].id if docs else None

    async def handle_webhook(self, event: str | None, data: Mapping[str, Any] | None) -> bool:
        """Apply an indexing notification. Returns True if a transition was written."""
        data = data or {}
        provider_video_id = data.get("video_id")

        if event not in WEBHOOK_COMPLETED_EVENTS | WEBHOOK_FAILED_EVENTS:
            logger.info(f"Unhandled webhook event type: {event}")
            return False
        if not provider_video_id:
            logger.error("Missing video_id in webhook data")
            return False

        video_id = await self.find_by_provider_video_id(provider_video_id)
        if video_id is None:
            logger.error(f"Video not found for TwelveLabs ID: {provider_video_id}")
            return False

        if event in WEBHOOK_COMPLETED_EVENTS:
            return await self.complete(video_id)
        return await self.fail(video_id, data.get("error_message") or "Indexing failed via webhook")
