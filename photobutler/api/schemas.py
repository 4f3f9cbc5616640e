"""Response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from photobutler.tasks.models import Task, TaskPage, TaskWithTemplate
from photobutler.templates.catalog import Template


class TemplateOut(BaseModel):
    """Template metadata attached to task responses."""

    id: str
    name: str
    preview_url: str = Field(serialization_alias="previewUrl")
    prompt: str
    category: str | None = None

    @classmethod
    def from_template(cls, template: Template) -> TemplateOut:
        return cls(
            id=template.id,
            name=template.name,
            preview_url=template.preview_url,
            prompt=template.prompt,
            category=template.category,
        )


class TaskOut(BaseModel):
    """Public representation of a generation task."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(serialization_alias="userId")
    template_id: str = Field(serialization_alias="templateId")
    original_image_url: str = Field(serialization_alias="originalImageUrl")
    generated_image_url: str | None = Field(default=None, serialization_alias="generatedImageUrl")
    status: str
    progress: int
    custom_prompt: str | None = Field(default=None, serialization_alias="customPrompt")
    error_message: str | None = Field(default=None, serialization_alias="errorMessage")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    completed_at: datetime | None = Field(default=None, serialization_alias="completedAt")
    template: TemplateOut | None = None

    @classmethod
    def from_task(cls, task: Task, template: Template | None = None) -> TaskOut:
        return cls(
            id=task.id,
            user_id=task.owner_id,
            template_id=task.template_id,
            original_image_url=task.original_image_ref,
            generated_image_url=task.generated_image_ref,
            status=task.status.value,
            progress=task.progress,
            custom_prompt=task.custom_prompt,
            error_message=task.error_message,
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
            template=TemplateOut.from_template(template) if template else None,
        )

    @classmethod
    def from_view(cls, view: TaskWithTemplate) -> TaskOut:
        return cls.from_task(view.task, view.template)


class TaskData(BaseModel):
    task: TaskOut


class TaskListData(BaseModel):
    tasks: list[TaskOut]
    total: int
    page: int
    limit: int

    @classmethod
    def from_page(cls, page: TaskPage) -> TaskListData:
        return cls(
            tasks=[TaskOut.from_view(view) for view in page.tasks],
            total=page.total,
            page=page.page,
            limit=page.limit,
        )


class TaskResponse(BaseModel):
    success: bool
    data: TaskData | None = None
    error: str | None = None


class TaskListResponse(BaseModel):
    success: bool
    data: TaskListData | None = None
    error: str | None = None


class DeleteResponse(BaseModel):
    success: bool
    error: str | None = None


class DirectoryStats(BaseModel):
    files: int
    size_bytes: int = Field(serialization_alias="sizeBytes")


class StorageStatsResponse(BaseModel):
    success: bool
    data: dict[str, DirectoryStats] | None = None
    error: str | None = None


class CleanupData(BaseModel):
    files_deleted: int = Field(serialization_alias="filesDeleted")


class CleanupResponse(BaseModel):
    success: bool
    data: CleanupData | None = None
    error: str | None = None
