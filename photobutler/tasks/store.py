"""Task store abstraction holding the authoritative live task state."""

from __future__ import annotations

from abc import ABC, abstractmethod

from photobutler.tasks.models import Task


class TaskStore(ABC):
    """Interface any live task store must satisfy."""

    @abstractmethod
    def get(self, task_id: str) -> Task | None:
        """Return the canonical task object or ``None``."""

    @abstractmethod
    def set(self, task: Task) -> None:
        """Insert or replace a task."""

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        """Remove a task, returning ``True`` when it existed."""

    @abstractmethod
    def list(self) -> list[Task]:
        """Return every stored task in no particular order."""

    def __contains__(self, task_id: object) -> bool:
        return isinstance(task_id, str) and self.get(task_id) is not None


class InMemoryTaskStore(TaskStore):
    """Process-local dictionary keyed by task id."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def set(self, task: Task) -> None:
        self._tasks[task.id] = task

    def delete(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def list(self) -> list[Task]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)
