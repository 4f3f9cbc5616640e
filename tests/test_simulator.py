"""Tests for the fallback simulator used when the provider is unavailable."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import pytest_mock

from photobutler.storage.images import ImageStorage
from photobutler.tasks.errors import StorageError, TaskCancelled
from photobutler.tasks.models import Task, TaskStatus
from photobutler.tasks.simulator import MINIMAL_JPEG, FallbackSimulator, synthesize_placeholder


class StatusRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[TaskStatus, int | None, dict[str, Any]]] = []

    def __call__(self, task_id: str, status: TaskStatus, progress: int | None = None, **kwargs: Any) -> Task | None:
        self.calls.append((status, progress, kwargs))
        return None


def _task(storage: ImageStorage, task_id: str = "t1") -> Task:
    return Task(
        id=task_id,
        owner_id="u1",
        template_id="watercolor",
        original_image_ref=storage.upload_ref(f"{task_id}_original.jpg"),
        status=TaskStatus.PROCESSING,
        progress=50,
    )


@pytest.mark.asyncio
async def test_run_steps_progress_and_completes(tmp_path: Path) -> None:
    storage = ImageStorage(tmp_path)
    await storage.write_upload("t1_original.jpg", b"original-bytes")
    recorder = StatusRecorder()
    simulator = FallbackSimulator(storage, recorder, delay=0)

    await simulator.run(_task(storage))

    assert [(status, progress) for status, progress, _ in recorder.calls] == [
        (TaskStatus.PROCESSING, 60),
        (TaskStatus.PROCESSING, 70),
        (TaskStatus.PROCESSING, 80),
        (TaskStatus.PROCESSING, 90),
        (TaskStatus.COMPLETED, 100),
    ]
    assert recorder.calls[-1][2] == {"generated_image_ref": "/uploads/generated/t1_generated.jpg"}
    assert storage.generated_path("t1_generated.jpg").read_bytes() == b"original-bytes"


@pytest.mark.asyncio
async def test_placeholder_uses_another_upload_when_own_is_missing(tmp_path: Path) -> None:
    storage = ImageStorage(tmp_path)
    await storage.write_upload("other_original.png", b"other-bytes")
    simulator = FallbackSimulator(storage, StatusRecorder(), delay=0)

    await simulator.run(_task(storage))

    assert storage.generated_path("t1_generated.jpg").read_bytes() == b"other-bytes"


@pytest.mark.asyncio
async def test_placeholder_is_rendered_without_uploads(tmp_path: Path) -> None:
    storage = ImageStorage(tmp_path)
    simulator = FallbackSimulator(storage, StatusRecorder(), delay=0)

    await simulator.run(_task(storage))

    payload = storage.generated_path("t1_generated.jpg").read_bytes()
    assert payload.startswith(b"\xff\xd8")
    assert payload.endswith(b"\xff\xd9")


@pytest.mark.asyncio
async def test_embedded_jpeg_used_when_rendering_fails(tmp_path: Path, mocker: pytest_mock.MockerFixture) -> None:
    storage = ImageStorage(tmp_path)
    mocker.patch("photobutler.tasks.simulator.synthesize_placeholder", side_effect=OSError("encoder missing"))
    simulator = FallbackSimulator(storage, StatusRecorder(), delay=0)

    await simulator.run(_task(storage))

    assert storage.generated_path("t1_generated.jpg").read_bytes() == MINIMAL_JPEG


@pytest.mark.asyncio
async def test_original_reference_reused_when_nothing_can_be_written(
    tmp_path: Path,
    mocker: pytest_mock.MockerFixture,
) -> None:
    storage = ImageStorage(tmp_path)
    mocker.patch.object(storage, "write_generated", side_effect=StorageError("disk full"))
    recorder = StatusRecorder()
    simulator = FallbackSimulator(storage, recorder, delay=0)
    task = _task(storage)

    await simulator.run(task)

    assert recorder.calls[-1][2] == {"generated_image_ref": task.original_image_ref}


@pytest.mark.asyncio
async def test_cancellation_is_checked_between_steps(tmp_path: Path) -> None:
    storage = ImageStorage(tmp_path)
    recorder = StatusRecorder()
    simulator = FallbackSimulator(
        storage,
        recorder,
        delay=0,
        is_cancelled=lambda task_id: len(recorder.calls) >= 2,
    )

    with pytest.raises(TaskCancelled):
        await simulator.run(_task(storage))

    assert [progress for _, progress, _ in recorder.calls] == [60, 70]
    assert not storage.generated_path("t1_generated.jpg").exists()


def test_synthesized_placeholder_is_jpeg() -> None:
    payload = synthesize_placeholder((8, 8))

    assert payload[:2] == b"\xff\xd8"


def test_minimal_jpeg_is_complete() -> None:
    assert MINIMAL_JPEG[:2] == b"\xff\xd8"
    assert MINIMAL_JPEG[-2:] == b"\xff\xd9"
