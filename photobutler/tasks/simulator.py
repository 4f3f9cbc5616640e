"""Deterministic stand-in for the provider, used when generation fails."""

from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import Callable, Sequence

from PIL import Image

from photobutler.storage.images import ImageStorage
from photobutler.tasks.errors import StorageError, TaskCancelled
from photobutler.tasks.models import Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_STEPS = (60, 70, 80, 90, 100)

# 1x1 baseline JPEG, last-resort placeholder when Pillow cannot encode one.
MINIMAL_JPEG = bytes.fromhex(
    "ffd8ffe000104a46494600010101004800480000ffdb004300080606070605080707070909080a0c140d0c0b"
    "0b0c1912130f141d1a1f1e1d1a1c1c20242e2720222c231c1c2837292c30313434341f27393d38323c2e3334"
    "32ffc00011080001000101011100021101031101ffc40014000100000000000000000000000000000008ffc4"
    "0014100100000000000000000000000000000000ffda000c03010002110311003f008a00ffd9"
)

StatusUpdater = Callable[..., Task | None]


def synthesize_placeholder(size: tuple[int, int] = (512, 512)) -> bytes:
    """Render a neutral grey JPEG."""

    buffer = BytesIO()
    Image.new("RGB", size, color=(200, 200, 200)).save(buffer, format="JPEG", quality=80)
    return buffer.getvalue()


class FallbackSimulator:
    """Walks a task through fixed progress steps and completes it with a placeholder."""

    def __init__(
        self,
        storage: ImageStorage,
        update_status: StatusUpdater,
        *,
        steps: Sequence[int] = DEFAULT_PROGRESS_STEPS,
        delay: float = 0.5,
        is_cancelled: Callable[[str], bool] | None = None,
    ) -> None:
        self._storage = storage
        self._update_status = update_status
        self._steps = tuple(sorted(steps))
        self._delay = delay
        self._is_cancelled = is_cancelled or (lambda _task_id: False)

    async def run(self, task: Task) -> Task | None:
        """Complete ``task`` without the provider.

        Intermediate steps are PROCESSING updates; the final 100 is the
        COMPLETED transition. Only cancellation escapes as an exception.
        """

        logger.info("Using simulation fallback for task %s", task.id)
        for progress in self._steps:
            await asyncio.sleep(self._delay)
            if self._is_cancelled(task.id):
                raise TaskCancelled(task.id)
            if progress >= 100:
                break
            self._update_status(task.id, TaskStatus.PROCESSING, progress)

        generated_ref = await self._write_placeholder(task)
        completed = self._update_status(task.id, TaskStatus.COMPLETED, 100, generated_image_ref=generated_ref)
        logger.info("Task completed with simulation: %s", task.id)
        return completed

    async def _write_placeholder(self, task: Task) -> str:
        name = self._storage.generated_name(task.id)
        own_original = self._storage.path_for_ref(task.original_image_ref)

        if own_original is not None and own_original.exists():
            source = own_original
        else:
            source = self._storage.find_placeholder_source()
        if source is not None:
            try:
                ref = await self._storage.copy_to_generated(source, name)
                logger.info("Created placeholder image by copying %s", source.name)
                return ref
            except StorageError:
                logger.warning("Could not copy %s as placeholder", source, exc_info=True)

        try:
            payload = await asyncio.to_thread(synthesize_placeholder)
        except (OSError, ValueError):
            logger.warning("Could not render placeholder, using embedded JPEG", exc_info=True)
            payload = MINIMAL_JPEG
        try:
            return await self._storage.write_generated(name, payload)
        except StorageError:
            logger.error("Could not write placeholder for task %s; reusing original image", task.id)
            return task.original_image_ref
