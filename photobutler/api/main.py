"""FastAPI entrypoint and HTTP routes."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse

from photobutler.api.schemas import (
    CleanupData,
    CleanupResponse,
    DeleteResponse,
    DirectoryStats,
    StorageStatsResponse,
    TaskData,
    TaskListData,
    TaskListResponse,
    TaskOut,
    TaskResponse,
)
from photobutler.bootstrap import build_services
from photobutler.config.settings import get_settings
from photobutler.monitoring.logging import configure_logging
from photobutler.tasks.errors import DownloadUnavailable, StorageError, TaskNotRetryable, TemplateNotFound
from photobutler.tasks.pipeline import TaskPipeline


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(pipeline: TaskPipeline | None = None) -> FastAPI:
    """Initialise the FastAPI application.

    When ``pipeline`` is given it is used as-is; otherwise the default
    services are built from settings during startup.
    """

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if pipeline is not None:
            yield
            return
        configure_logging()
        services = await build_services(settings)
        app.state.pipeline = services.pipeline
        cleanup = asyncio.create_task(services.pipeline.cleanup_storage())
        try:
            yield
        finally:
            cleanup.cancel()
            await services.close()

    app = FastAPI(
        title="PhotoButler API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    def _pipeline(request: Request) -> TaskPipeline:
        return request.app.state.pipeline

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.post("/api/tasks", response_model=TaskResponse, tags=["tasks"])
    async def create_task(
        request: Request,
        image: UploadFile = File(...),
        template_id: str = Form(..., alias="templateId"),
        custom_prompt: str | None = Form(default=None, alias="customPrompt"),
        user_id: str | None = Form(default=None, alias="userId"),
    ):
        payload = await image.read()
        if not payload:
            return _error(status.HTTP_400_BAD_REQUEST, "Image file is required")
        try:
            task = await _pipeline(request).create_task(
                template_id,
                payload,
                image.filename or "upload.jpg",
                custom_prompt=custom_prompt,
                owner_id=user_id or "anonymous",
            )
        except TemplateNotFound as exc:
            return _error(status.HTTP_404_NOT_FOUND, str(exc))
        except StorageError as exc:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        return TaskResponse(success=True, data=TaskData(task=TaskOut.from_task(task)))

    @app.get("/api/tasks/{task_id}", response_model=TaskResponse, tags=["tasks"])
    async def get_task(task_id: str, request: Request):
        view = await _pipeline(request).get_task(task_id)
        if view is None:
            return _error(status.HTTP_404_NOT_FOUND, "Task not found")
        return TaskResponse(success=True, data=TaskData(task=TaskOut.from_view(view)))

    @app.get("/api/tasks", response_model=TaskListResponse, tags=["tasks"])
    async def list_tasks(
        request: Request,
        user_id: str | None = Query(default=None, alias="userId"),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ):
        result = await _pipeline(request).list_tasks(user_id, page, limit)
        return TaskListResponse(success=True, data=TaskListData.from_page(result))

    @app.delete("/api/tasks/{task_id}", response_model=DeleteResponse, tags=["tasks"])
    async def delete_task(task_id: str, request: Request):
        if not await _pipeline(request).delete_task(task_id):
            return _error(status.HTTP_404_NOT_FOUND, "Task not found")
        return DeleteResponse(success=True)

    @app.post("/api/tasks/{task_id}/retry", response_model=TaskResponse, tags=["tasks"])
    async def retry_task(task_id: str, request: Request):
        try:
            task = await _pipeline(request).retry_task(task_id)
        except TaskNotRetryable as exc:
            return _error(status.HTTP_409_CONFLICT, str(exc))
        if task is None:
            return _error(status.HTTP_404_NOT_FOUND, "Task not found")
        return TaskResponse(success=True, data=TaskData(task=TaskOut.from_task(task)))

    @app.post("/api/tasks/{task_id}/cancel", response_model=DeleteResponse, tags=["tasks"])
    async def cancel_task(task_id: str, request: Request):
        current = _pipeline(request)
        if await current.get_task(task_id) is None:
            return _error(status.HTTP_404_NOT_FOUND, "Task not found")
        if not current.cancel_task(task_id):
            return _error(status.HTTP_409_CONFLICT, "Task is not processing")
        return DeleteResponse(success=True)

    @app.get("/api/tasks/{task_id}/download", tags=["tasks"])
    async def download_task_image(task_id: str, request: Request):
        try:
            prepared = await _pipeline(request).prepare_download(task_id)
        except DownloadUnavailable as exc:
            return _error(status.HTTP_404_NOT_FOUND, str(exc))
        if prepared is None:
            return _error(status.HTTP_404_NOT_FOUND, "Task not found")
        return FileResponse(prepared.path, media_type=prepared.media_type, filename=prepared.filename)

    @app.get("/api/maintenance/stats", response_model=StorageStatsResponse, tags=["maintenance"])
    async def storage_stats(request: Request):
        stats = await _pipeline(request).storage_stats()
        data = {name: DirectoryStats(**values) for name, values in stats.items()}
        return StorageStatsResponse(success=True, data=data)

    @app.post("/api/maintenance/cleanup", response_model=CleanupResponse, tags=["maintenance"])
    async def force_cleanup(
        request: Request,
        max_age_hours: float = Query(default=24, ge=0, alias="maxAgeHours"),
    ):
        deleted = await _pipeline(request).cleanup_storage(max_age_hours)
        return CleanupResponse(success=True, data=CleanupData(files_deleted=deleted))

    return app


app = create_app()
