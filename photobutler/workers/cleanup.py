"""Cleanup tasks for processed uploads and stale temporary media."""

from __future__ import annotations

import asyncio
import logging

from photobutler.storage.images import ImageStorage

logger = logging.getLogger(__name__)


async def schedule_upload_cleanup(storage: ImageStorage, task_id: str, delay_minutes: float) -> int:
    """Wait ``delay_minutes`` and delete the task's original upload.

    Returns the number of deleted files.
    """

    logger.info("Original upload of task %s will be removed in %s minutes", task_id, delay_minutes)
    await asyncio.sleep(delay_minutes * 60)
    return await asyncio.to_thread(storage.remove_uploads_for, [task_id])


async def remove_expired_media(storage: ImageStorage, max_age_hours: float = 24) -> int:
    """Delete temporary files older than ``max_age_hours``."""

    return await asyncio.to_thread(storage.cleanup_temp_files, max_age_hours)
