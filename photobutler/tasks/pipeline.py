"""Asynchronous generation-task pipeline.

``TaskPipeline`` owns the per-task state machine::

    PENDING -> PROCESSING -> COMPLETED | FAILED
                   ^                       |
                   +------ retry_task -----+

Creation is synchronous from the caller's point of view; each run executes
as a detached asyncio task. Provider failures never fail a task: the run is
handed to the fallback simulator instead. Persistence is a best-effort mirror
and every call to it is isolated from task state.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import itertools
import logging
import uuid
from typing import Any, Coroutine

import httpx

from photobutler.config.settings import Settings, get_settings
from photobutler.db.persistence import NullTaskPersistence, TaskPersistence
from photobutler.imggen.generator_client import ImageGeneratorClient
from photobutler.metrics.prometheus_exporter import (
    generation_fallback_total,
    generation_tasks_created_total,
    generation_tasks_finished_total,
)
from photobutler.storage.images import ImageStorage
from photobutler.tasks.errors import (
    DownloadUnavailable,
    ProviderError,
    StorageError,
    TaskCancelled,
    TaskNotRetryable,
    TemplateNotFound,
)
from photobutler.tasks.models import DownloadFile, Task, TaskPage, TaskStatus, TaskWithTemplate, utcnow
from photobutler.tasks.simulator import FallbackSimulator
from photobutler.tasks.store import InMemoryTaskStore, TaskStore
from photobutler.templates.catalog import DirectoryTemplateCatalog, Template
from photobutler.workers.cleanup import remove_expired_media, schedule_upload_cleanup

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
CANCELLED_MESSAGE = "Task cancelled"


class TaskPipeline:
    """Creates generation tasks and drives them to a terminal state."""

    def __init__(
        self,
        catalog: DirectoryTemplateCatalog,
        storage: ImageStorage,
        generator: ImageGeneratorClient | None = None,
        persistence: TaskPersistence | None = None,
        store: TaskStore | None = None,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._storage = storage
        self._generator = generator
        self._persistence = persistence or NullTaskPersistence()
        self._store = store or InMemoryTaskStore()
        self._http = http_client
        self._running: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._cancel_requested: set[str] = set()
        self._sequence = itertools.count(1)
        self._order: dict[str, int] = {}
        self._simulator = FallbackSimulator(
            storage,
            self._update_status,
            delay=self._settings.simulation_step_delay,
            is_cancelled=self._is_cancel_requested,
        )

    # public operations

    async def warm_up(self) -> int:
        """Load persisted tasks into the store; returns how many were added.

        Waits a bounded number of short intervals for persistence to come up,
        then proceeds memory-only.
        """

        for _ in range(self._settings.persistence_warmup_retries):
            if self._persistence.is_available():
                break
            await asyncio.sleep(self._settings.persistence_warmup_interval)
        if not self._persistence.is_available():
            logger.info("Database not available after waiting, using memory-only storage")
            return 0

        try:
            tasks = await self._persistence.load_all()
        except Exception:  # persistence failures never reach callers
            logger.exception("Error loading tasks from database")
            return 0

        loaded = 0
        for task in reversed(tasks):
            if task.id in self._store:
                continue
            self._store.set(task)
            self._order[task.id] = next(self._sequence)
            loaded += 1
        logger.info("Loaded %s tasks from database", loaded)
        return loaded

    async def create_task(
        self,
        template_id: str,
        image_bytes: bytes,
        filename: str,
        custom_prompt: str | None = None,
        owner_id: str = "anonymous",
    ) -> Task:
        """Store a new PENDING task and schedule its run without awaiting it.

        Raises ``TemplateNotFound`` or ``StorageError``; in both cases nothing is stored.
        """

        template = await self._catalog.get_template_by_id(template_id)
        if template is None:
            raise TemplateNotFound(template_id)

        task_id = str(uuid.uuid4())
        original_ref = await self._storage.write_upload(
            self._storage.upload_name(task_id, filename),
            image_bytes,
        )

        now = utcnow()
        task = Task(
            id=task_id,
            owner_id=owner_id or "anonymous",
            template_id=template_id,
            original_image_ref=original_ref,
            custom_prompt=custom_prompt or None,
            created_at=now,
            updated_at=now,
        )
        self._store.set(task)
        self._order[task_id] = next(self._sequence)
        self._persist(task)
        generation_tasks_created_total.inc()

        self._schedule(task_id)
        logger.info("Task created: %s", task_id)
        return task.snapshot()

    async def get_task(self, task_id: str) -> TaskWithTemplate | None:
        task = self._store.get(task_id)
        if task is None:
            return None
        template = await self._catalog.get_template_by_id(task.template_id)
        return TaskWithTemplate(task=task.snapshot(), template=template)

    async def list_tasks(self, owner_id: str | None = None, page: int = 1, limit: int = 20) -> TaskPage:
        """Return tasks newest first, optionally filtered by owner, joined with templates."""

        tasks = self._store.list()
        if owner_id:
            tasks = [task for task in tasks if task.owner_id == owner_id]
        tasks.sort(key=lambda task: (task.created_at, self._order.get(task.id, 0)), reverse=True)

        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        start = (page - 1) * limit
        selected = tasks[start:start + limit]

        templates: dict[str, Template | None] = {}
        items: list[TaskWithTemplate] = []
        for task in selected:
            if task.template_id not in templates:
                templates[task.template_id] = await self._catalog.get_template_by_id(task.template_id)
            items.append(TaskWithTemplate(task=task.snapshot(), template=templates[task.template_id]))
        return TaskPage(tasks=items, total=len(tasks), page=page, limit=limit)

    async def delete_task(self, task_id: str) -> bool:
        """Remove a task, its images and its persisted record.

        File cleanup is best-effort; the deletion succeeds regardless.
        """

        task = self._store.get(task_id)
        if task is None:
            return False

        self._store.delete(task_id)
        self._order.pop(task_id, None)
        running = self._running.pop(task_id, None)
        if running is not None and not running.done():
            running.cancel()
        self._cancel_requested.discard(task_id)

        for ref in (task.original_image_ref, task.generated_image_ref):
            await self._storage.delete_ref(ref)

        self._spawn(self._delete_record(task_id), f"deletion of task {task_id}")
        logger.info("Task deleted: %s", task_id)
        return True

    async def retry_task(self, task_id: str) -> Task | None:
        """Re-run a task that failed or was interrupted.

        Returns ``None`` for unknown ids and raises ``TaskNotRetryable`` for a
        completed task or one with an active run.
        """

        task = self._store.get(task_id)
        if task is None:
            return None
        if self._is_running(task_id):
            raise TaskNotRetryable(f"Task {task_id} is still processing")
        if task.status is TaskStatus.COMPLETED:
            raise TaskNotRetryable(f"Task {task_id} is already completed")

        snapshot = self._update_status(task_id, TaskStatus.PENDING, 0, clear_error=True)
        self._schedule(task_id)
        logger.info("Task %s re-submitted for processing", task_id)
        return snapshot

    def cancel_task(self, task_id: str) -> bool:
        """Request cancellation of an active run.

        The flag is checked between stages; an in-flight provider call is
        allowed to finish first.
        """

        if not self._is_running(task_id):
            return False
        self._cancel_requested.add(task_id)
        logger.info("Cancellation requested for task %s", task_id)
        return True

    async def prepare_download(self, task_id: str) -> DownloadFile | None:
        """Locate the generated image of a task and name it for download.

        Returns ``None`` for unknown ids and raises ``DownloadUnavailable`` when
        the image is not stored locally.
        """

        task = self._store.get(task_id)
        if task is None:
            return None
        path = self._storage.path_for_ref(task.generated_image_ref)
        if path is None or not task.generated_image_ref.startswith("/uploads/generated/"):
            raise DownloadUnavailable(f"No generated image available for task {task_id}")
        if not await asyncio.to_thread(path.is_file):
            raise DownloadUnavailable(f"Generated image file not found for task {task_id}")

        filename = f"PhotoButler_{task_id[:8]}_{utcnow().date().isoformat()}.jpg"
        logger.info("Prepared download %s for task %s", filename, task_id)
        return DownloadFile(path=path, filename=filename)

    async def storage_stats(self) -> dict[str, dict[str, int]]:
        return await asyncio.to_thread(self._storage.stats)

    async def cleanup_storage(self, max_age_hours: float = 24) -> int:
        """Remove expired temporary media; returns the number of deleted files."""

        return await remove_expired_media(self._storage, max_age_hours)

    async def join(self) -> None:
        """Wait until every run and best-effort side effect has finished."""

        while True:
            pending = [job for job in (*self._running.values(), *self._background) if not job.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding work; interrupted tasks can be retried later."""

        pending = [job for job in (*self._running.values(), *self._background) if not job.done()]
        for job in pending:
            job.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._running.clear()

    # orchestration

    def _is_running(self, task_id: str) -> bool:
        job = self._running.get(task_id)
        return job is not None and not job.done()

    def _is_cancel_requested(self, task_id: str) -> bool:
        return task_id in self._cancel_requested

    def _schedule(self, task_id: str) -> bool:
        if self._is_running(task_id):
            logger.warning("Task %s already has an active run; not scheduling another", task_id)
            return False
        self._running[task_id] = asyncio.create_task(self._process(task_id), name=f"generate-{task_id}")
        return True

    async def _process(self, task_id: str) -> None:
        try:
            await self._run(task_id)
        except TaskCancelled:
            logger.info("Task %s cancelled", task_id)
            self._update_status(task_id, TaskStatus.FAILED, 0, error_message=CANCELLED_MESSAGE)
        except Exception as exc:  # every processing error becomes a FAILED state
            logger.exception("Error processing task %s", task_id)
            self._update_status(
                task_id,
                TaskStatus.FAILED,
                0,
                error_message=str(exc) or exc.__class__.__name__,
            )
        finally:
            self._cancel_requested.discard(task_id)
            if self._running.get(task_id) is asyncio.current_task():
                del self._running[task_id]

    async def _run(self, task_id: str) -> None:
        task = self._advance(task_id, 10)

        template = await self._catalog.get_template_by_id(task.template_id)
        if template is None:
            raise TemplateNotFound(task.template_id)

        self._check_cancelled(task_id)
        image_bytes = await self._storage.read_ref(task.original_image_ref)
        task = self._advance(task_id, 30)

        prompt = (task.custom_prompt or "").strip() or template.prompt
        logger.info("Starting AI generation for task %s with prompt %.100s", task_id, prompt)
        task = self._advance(task_id, 50)

        try:
            result_url = await self._call_provider(image_bytes, prompt)
        except ProviderError as exc:
            logger.warning(
                "AI generation failed for task %s: %s (%s); falling back to simulation",
                task_id,
                exc,
                exc.user_message,
            )
            generation_fallback_total.labels(reason=exc.kind.value).inc()
            await self._simulator.run(task)
            return

        self._advance(task_id, 90)
        generated_ref = await self._store_result(task_id, result_url)
        self._check_cancelled(task_id)
        self._update_status(task_id, TaskStatus.COMPLETED, 100, generated_image_ref=generated_ref)
        logger.info("Task completed successfully: %s", task_id)

    def _advance(self, task_id: str, progress: int) -> Task:
        self._check_cancelled(task_id)
        task = self._update_status(task_id, TaskStatus.PROCESSING, progress)
        if task is None:
            raise TaskCancelled(f"Task {task_id} no longer exists")
        return task

    def _check_cancelled(self, task_id: str) -> None:
        if task_id in self._cancel_requested:
            raise TaskCancelled(task_id)

    async def _call_provider(self, image_bytes: bytes, prompt: str) -> str:
        if self._generator is None:
            raise ProviderError("Image generation provider is not configured")
        try:
            result = await self._generator.generate(image_bytes, prompt)
        except Exception as exc:  # a raising adapter is handled like a failed result
            raise ProviderError(str(exc) or exc.__class__.__name__) from exc
        if not result.success:
            raise ProviderError(result.error or "AI generation failed", result.error_kind)
        if not result.result_url:
            raise ProviderError("No image URL returned from AI service")
        return result.result_url

    async def _store_result(self, task_id: str, url: str) -> str:
        """Copy the provider result into local storage; on failure keep the remote URL."""

        if url.startswith("/uploads/"):
            return url
        try:
            payload = self._decode_data_url(url) if url.startswith("data:") else await self._download(url)
            ref = await self._storage.write_generated(self._storage.generated_name(task_id), payload)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.CookieConflict, StorageError, ValueError) as exc:
            logger.error("Failed to download generated image for task %s: %s", task_id, exc)
            return url

        if self._settings.cleanup_original_images:
            self._spawn(
                schedule_upload_cleanup(self._storage, task_id, self._settings.cleanup_delay_minutes),
                f"upload cleanup of task {task_id}",
            )
        return ref

    async def _download(self, url: str) -> bytes:
        if self._http is not None:
            response = await self._http.get(url)
        else:
            async with httpx.AsyncClient(timeout=self._settings.download_timeout, follow_redirects=True) as client:
                response = await client.get(url)
        response.raise_for_status()
        return response.content

    @staticmethod
    def _decode_data_url(url: str) -> bytes:
        header, _, encoded = url.partition(",")
        if not encoded or ";base64" not in header:
            raise ValueError("Unsupported data URL")
        return base64.b64decode(encoded, validate=True)

    # state transitions

    def _update_status(
        self,
        task_id: str,
        status: TaskStatus,
        progress: int | None = None,
        generated_image_ref: str | None = None,
        error_message: str | None = None,
        *,
        clear_error: bool = False,
    ) -> Task | None:
        """Apply a transition to the stored task and mirror it best-effort.

        Returns a snapshot of the updated task, or ``None`` for unknown ids.
        """

        task = self._store.get(task_id)
        if task is None:
            return None

        previous = task.status
        now = utcnow()
        if progress is not None:
            if previous is TaskStatus.PROCESSING and status is TaskStatus.PROCESSING and progress < task.progress:
                logger.debug("Ignoring progress regression for task %s: %s < %s", task_id, progress, task.progress)
            else:
                task.progress = max(0, min(100, progress))
        task.status = status

        if status is TaskStatus.COMPLETED:
            if generated_image_ref:
                task.generated_image_ref = generated_image_ref
        else:
            task.generated_image_ref = None

        if clear_error:
            task.error_message = None
        if error_message:
            task.error_message = error_message

        if status.is_terminal and not previous.is_terminal:
            task.completed_at = now
            generation_tasks_finished_total.labels(status=status.value).inc()
        task.updated_at = now

        self._store.set(task)
        self._persist(task)
        return task.snapshot()

    # best-effort side effects

    def _persist(self, task: Task) -> None:
        self._spawn(self._save_record(task.snapshot()), f"save of task {task.id}")

    async def _save_record(self, task: Task) -> None:
        if self._persistence.is_available():
            await self._persistence.save(task)

    async def _delete_record(self, task_id: str) -> None:
        if self._persistence.is_available():
            await self._persistence.delete(task_id)

    def _spawn(self, work: Coroutine[Any, Any, Any], description: str) -> None:
        job = asyncio.create_task(work)
        self._background.add(job)
        job.add_done_callback(functools.partial(self._finish_background, description))

    def _finish_background(self, description: str, job: asyncio.Task[Any]) -> None:
        self._background.discard(job)
        if job.cancelled():
            return
        exc = job.exception()
        if exc is not None:
            logger.error("Best-effort %s failed", description, exc_info=exc)
