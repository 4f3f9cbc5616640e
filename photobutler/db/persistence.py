"""Best-effort durable mirror of the live task store."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from photobutler.db.models import TaskRecord
from photobutler.db.session import build_session_factory, init_db
from photobutler.tasks.models import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskPersistence(ABC):
    """Interface for task persistence backends.

    Implementations may raise; the pipeline isolates every call so a failure
    never reaches task state.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` once the backend can accept reads and writes."""

    @abstractmethod
    async def save(self, task: Task) -> None:
        """Insert or replace the record for ``task``."""

    @abstractmethod
    async def delete(self, task_id: str) -> None:
        """Remove the record for ``task_id`` if present."""

    @abstractmethod
    async def load_all(self) -> list[Task]:
        """Return every stored task, newest first."""

    async def close(self) -> None:
        """Release underlying resources."""


class NullTaskPersistence(TaskPersistence):
    """Persistence that is never available; the pipeline runs memory-only."""

    def is_available(self) -> bool:
        return False

    async def save(self, task: Task) -> None:
        return None

    async def delete(self, task_id: str) -> None:
        return None

    async def load_all(self) -> list[Task]:
        return []


def task_to_record(task: Task) -> TaskRecord:
    return TaskRecord(
        id=task.id,
        user_id=task.owner_id,
        template_id=task.template_id,
        original_image_url=task.original_image_ref,
        generated_image_url=task.generated_image_ref,
        status=task.status.value,
        progress=task.progress,
        custom_prompt=task.custom_prompt,
        error_message=task.error_message,
        created_at=task.created_at.isoformat(),
        updated_at=task.updated_at.isoformat(),
        completed_at=task.completed_at.isoformat() if task.completed_at else None,
    )


def _parse_timestamp(value: str) -> datetime:
    # records written by other clients may carry a trailing "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_task(record: TaskRecord) -> Task:
    return Task(
        id=record.id,
        owner_id=record.user_id,
        template_id=record.template_id,
        original_image_ref=record.original_image_url,
        generated_image_ref=record.generated_image_url,
        status=TaskStatus(record.status),
        progress=record.progress,
        custom_prompt=record.custom_prompt,
        error_message=record.error_message,
        created_at=_parse_timestamp(record.created_at),
        updated_at=_parse_timestamp(record.updated_at),
        completed_at=_parse_timestamp(record.completed_at) if record.completed_at else None,
    )


class SqlTaskPersistence(TaskPersistence):
    """Mirrors tasks into a relational table through SQLAlchemy's async API."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = build_session_factory(engine)
        self._available = False
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> bool:
        """Create the schema; on failure the service continues without a database."""

        try:
            await init_db(self._engine)
        except (SQLAlchemyError, OSError):
            logger.exception("Database initialization failed; continuing without persistence")
            self._available = False
            return False
        self._available = True
        logger.info("Database initialized successfully")
        return True

    def is_available(self) -> bool:
        return self._available

    async def save(self, task: Task) -> None:
        if not self._available:
            return
        async with self._write_lock, self._sessions() as session:
            await session.merge(task_to_record(task))
            await session.commit()
        logger.debug("Task saved to database: %s", task.id)

    async def delete(self, task_id: str) -> None:
        if not self._available:
            return
        async with self._write_lock, self._sessions() as session:
            await session.execute(delete(TaskRecord).where(TaskRecord.id == task_id))
            await session.commit()
        logger.debug("Task deleted from database: %s", task_id)

    async def load_all(self) -> list[Task]:
        if not self._available:
            return []
        async with self._sessions() as session:
            result = await session.execute(select(TaskRecord).order_by(TaskRecord.created_at.desc()))
            records = result.scalars().all()
        tasks: list[Task] = []
        for record in records:
            try:
                tasks.append(record_to_task(record))
            except ValueError:
                logger.warning("Skipping malformed task record %s", record.id)
        return tasks

    async def health_check(self) -> bool:
        if not self._available:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    async def close(self) -> None:
        self._available = False
        await self._engine.dispose()
