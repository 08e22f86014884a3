import asyncio
import logging

from memorylane.core.celery_app import celery_app
from memorylane.core.config import settings

logger = logging.getLogger(__name__)

_task_loop = None
_services = None


def run_async(coro):
    """Utility to run async functions in synchronous Celery tasks.

    Reuses a single event loop per worker thread to avoid
    'Event loop is closed' errors with pooled async connections.
    """
    global _task_loop
    if _task_loop is None or _task_loop.is_closed():
        _task_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_task_loop)
    return _task_loop.run_until_complete(coro)


def get_services():
    """Build the worker's own service graph once per process."""
    global _services
    if _services is None:
        from memorylane.services.container import build_services
        # The worker runs poll loops itself; it never dispatches new ones
        _services = build_services(settings, dispatcher=lambda video_id, task_id: None)
    return _services


@celery_app.task(name="memorylane.poll_indexing")
def poll_indexing_task(video_id: str, task_id: str):
    """Run one video's indexing poll loop to completion inside the worker."""
    logger.info(f"Worker polling task {task_id} for video {video_id}")
    run_async(get_services().indexing.run_poll_loop(video_id, task_id))
    return {"video_id": video_id, "task_id": task_id}


class CeleryPollDispatcher:
    """Hands poll loops to the Celery worker pool instead of the web process."""

    def __call__(self, video_id: str, task_id: str) -> None:
        poll_indexing_task.delay(video_id, task_id)
