"""Wiring of the default pipeline from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from photobutler.config.settings import Settings
from photobutler.db.persistence import NullTaskPersistence, SqlTaskPersistence, TaskPersistence
from photobutler.db.session import build_engine
from photobutler.imggen.generator_client import ImageGeneratorClient
from photobutler.storage.images import ImageStorage
from photobutler.tasks.pipeline import TaskPipeline
from photobutler.templates.catalog import DirectoryTemplateCatalog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    """Objects created at startup and released at shutdown."""

    pipeline: TaskPipeline
    storage: ImageStorage
    persistence: TaskPersistence
    generator: ImageGeneratorClient | None = None

    async def close(self) -> None:
        await self.pipeline.shutdown()
        await self.persistence.close()
        if self.generator is not None:
            await self.generator.close()


async def build_services(settings: Settings) -> Services:
    """Create storage, persistence and the provider client, then warm the store."""

    storage = ImageStorage(Path(settings.storage_root))
    catalog = DirectoryTemplateCatalog(Path(settings.templates_dir), Path(settings.prompt_file))

    persistence: TaskPersistence = NullTaskPersistence()
    if settings.database_enabled:
        sql_persistence = SqlTaskPersistence(build_engine(settings.database_url))
        await sql_persistence.initialize()
        persistence = sql_persistence

    generator: ImageGeneratorClient | None = None
    try:
        generator = ImageGeneratorClient(settings)
    except RuntimeError as exc:
        logger.warning("%s Generation will use the simulation fallback.", exc)

    pipeline = TaskPipeline(
        catalog,
        storage,
        generator,
        persistence,
        settings=settings,
    )
    await pipeline.warm_up()
    return Services(pipeline=pipeline, storage=storage, persistence=persistence, generator=generator)
