"""Domain objects describing generation tasks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from photobutler.templates.catalog import Template


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Finite states of a generation task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass(slots=True)
class Task:
    """One user-initiated generation request and its lifecycle state."""

    id: str
    owner_id: str
    template_id: str
    original_image_ref: str
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    generated_image_ref: str | None = None
    custom_prompt: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def snapshot(self) -> Task:
        """Return a detached copy safe to hand out of the store."""

        return replace(self)

    def to_dict(self) -> dict[str, object]:
        """Serialise the task using the public field names and ISO timestamps."""

        return {
            "id": self.id,
            "userId": self.owner_id,
            "templateId": self.template_id,
            "originalImageUrl": self.original_image_ref,
            "generatedImageUrl": self.generated_image_ref,
            "status": self.status.value,
            "progress": self.progress,
            "customPrompt": self.custom_prompt,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(slots=True)
class TaskWithTemplate:
    """Read-side view joining a task snapshot with its template metadata."""

    task: Task
    template: Template | None = None


@dataclass(slots=True)
class TaskPage:
    """Paginated listing of tasks."""

    tasks: list[TaskWithTemplate]
    total: int
    page: int
    limit: int


@dataclass(slots=True)
class DownloadFile:
    """Generated image prepared for download under a user-facing file name."""

    path: Path
    filename: str
    media_type: str = "image/jpeg"
