"""Shared fixtures for pipeline tests."""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import pytest

from photobutler.config.settings import Settings
from photobutler.imggen.generator_client import GenerationResult
from photobutler.storage.images import ImageStorage
from photobutler.tasks.models import Task
from photobutler.tasks.pipeline import TaskPipeline
from photobutler.tasks.store import InMemoryTaskStore
from photobutler.templates.catalog import DirectoryTemplateCatalog

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-payload\xff\xd9"
GENERATED_BYTES = b"\xff\xd8\xff\xe0generated\xff\xd9"
GENERATED_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(GENERATED_BYTES).decode("ascii")


class FakeGenerator:
    """Generation client double recording its calls."""

    def __init__(
        self,
        result: GenerationResult | None = None,
        exc: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.result = result or GenerationResult(success=True, result_url=GENERATED_DATA_URL)
        self.exc = exc
        self.gate = gate
        self.calls: list[tuple[bytes, str]] = []

    async def generate(self, image_bytes: bytes, prompt: str) -> GenerationResult:
        self.calls.append((image_bytes, prompt))
        if self.gate is not None:
            await self.gate.wait()
        if self.exc is not None:
            raise self.exc
        return self.result

    async def wait_for_call(self) -> None:
        while not self.calls:
            await asyncio.sleep(0)


class RecordingStore(InMemoryTaskStore):
    """In-memory store that keeps every (status, progress) pair it receives."""

    def __init__(self) -> None:
        super().__init__()
        self.history: dict[str, list[tuple[str, int]]] = {}

    def set(self, task: Task) -> None:
        self.history.setdefault(task.id, []).append((task.status.value, task.progress))
        super().set(task)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_enabled=False,
        simulation_step_delay=0,
        persistence_warmup_retries=2,
        persistence_warmup_interval=0,
    )


@pytest.fixture
def catalog(tmp_path: Path) -> DirectoryTemplateCatalog:
    images = tmp_path / "image"
    images.mkdir()
    (images / "watercolor.jpg").write_bytes(JPEG_BYTES)
    (images / "noir.png").write_bytes(b"\x89PNG preview")
    (images / "placeholder.png").write_bytes(b"\x89PNG placeholder")
    prompt_file = tmp_path / "prompt.txt"
    prompt_file.write_text(
        "# styles\n1. watercolor: Repaint the photo as a soft watercolor\n2. noir：High contrast black and white\n",
        encoding="utf-8",
    )
    return DirectoryTemplateCatalog(images, prompt_file)


@pytest.fixture
def storage(tmp_path: Path) -> ImageStorage:
    return ImageStorage(tmp_path / "storage")


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def pipeline(
    catalog: DirectoryTemplateCatalog,
    storage: ImageStorage,
    generator: FakeGenerator,
    store: RecordingStore,
    settings: Settings,
) -> TaskPipeline:
    return TaskPipeline(catalog, storage, generator, store=store, settings=settings)
