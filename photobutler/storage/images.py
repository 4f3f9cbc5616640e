"""Filesystem storage for uploaded originals and generated images."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from pathlib import Path, PurePosixPath
from typing import Iterable

from photobutler.tasks.errors import StorageError

logger = logging.getLogger(__name__)

UPLOADS_DIR = "uploads/originals"
GENERATED_DIR = "uploads/generated"
TEMP_DIR = "uploads/temp"
PLACEHOLDER_SUFFIXES = (".jpg", ".png")


class ImageStorage:
    """Addresses original and generated images by task id under a root folder."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self.directories = {
            "uploads": root / UPLOADS_DIR,
            "generated": root / GENERATED_DIR,
            "temp": root / TEMP_DIR,
        }
        for directory in self.directories.values():
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def uploads_dir(self) -> Path:
        return self.directories["uploads"]

    @property
    def generated_dir(self) -> Path:
        return self.directories["generated"]

    @staticmethod
    def upload_name(task_id: str, filename: str) -> str:
        """Return the stored file name of a task's original upload."""

        extension = PurePosixPath(filename).suffix.lower() or ".jpg"
        return f"{task_id}_original{extension}"

    @staticmethod
    def generated_name(task_id: str) -> str:
        return f"{task_id}_generated.jpg"

    @staticmethod
    def upload_ref(name: str) -> str:
        return f"/{UPLOADS_DIR}/{name}"

    @staticmethod
    def generated_ref(name: str) -> str:
        return f"/{GENERATED_DIR}/{name}"

    def upload_path(self, name: str) -> Path:
        return self.uploads_dir / name

    def generated_path(self, name: str) -> Path:
        return self.generated_dir / name

    def path_for_ref(self, ref: str | None) -> Path | None:
        """Resolve a stored image reference into a local path.

        Remote URLs and references outside the managed folders return ``None``.
        """

        if not ref:
            return None
        for prefix, directory in ((UPLOADS_DIR, self.uploads_dir), (GENERATED_DIR, self.generated_dir)):
            marker = f"/{prefix}/"
            if ref.startswith(marker):
                name = PurePosixPath(ref[len(marker):]).name
                return directory / name if name else None
        return None

    async def write_upload(self, name: str, data: bytes) -> str:
        """Persist an uploaded original and return its reference."""

        await self._write(self.upload_path(name), data)
        logger.info("Saved original image %s", name)
        return self.upload_ref(name)

    async def read_upload(self, name: str) -> bytes:
        path = self.upload_path(name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Original image not found: {path}") from exc

    async def read_ref(self, ref: str) -> bytes:
        """Read the bytes behind a local image reference."""

        path = self.path_for_ref(ref)
        if path is None:
            raise StorageError(f"Image reference is not stored locally: {ref}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Image not found: {path}") from exc

    async def write_generated(self, name: str, data: bytes) -> str:
        """Persist a generated image and return its reference."""

        await self._write(self.generated_path(name), data)
        logger.info("Saved generated image %s", name)
        return self.generated_ref(name)

    async def copy_to_generated(self, source: Path, name: str) -> str:
        target = self.generated_path(name)
        try:
            await asyncio.to_thread(shutil.copyfile, source, target)
        except OSError as exc:
            raise StorageError(f"Failed to copy {source} to {target}") from exc
        return self.generated_ref(name)

    async def _write(self, path: Path, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_file, path, data)
        except OSError as exc:
            raise StorageError(f"Failed to write image {path}") from exc

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def find_placeholder_source(self, exclude: Path | None = None) -> Path | None:
        """Return any existing JPEG or PNG upload usable as a stand-in image."""

        try:
            candidates = sorted(
                path
                for path in self.uploads_dir.iterdir()
                if path.is_file() and path.suffix.lower() in PLACEHOLDER_SUFFIXES
            )
        except OSError:
            logger.warning("Could not read uploads directory for placeholder")
            return None
        for path in candidates:
            if path != exclude:
                return path
        return None

    async def delete_ref(self, ref: str | None) -> bool:
        """Remove the file behind a local reference; I/O errors are logged, not raised."""

        path = self.path_for_ref(ref)
        if path is None:
            return False
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError:
            logger.warning("Failed to delete image %s", path, exc_info=True)
            return False
        return True

    def remove_uploads_for(self, task_ids: Iterable[str]) -> int:
        """Delete original uploads belonging to the given tasks."""

        prefixes = tuple(task_ids)
        if not prefixes:
            return 0
        deleted = 0
        try:
            for path in self.uploads_dir.iterdir():
                if path.is_file() and path.name.startswith(prefixes):
                    path.unlink(missing_ok=True)
                    deleted += 1
        except OSError:
            logger.exception("Error cleaning up uploads")
        logger.info("Cleaned up %s processed upload files", deleted)
        return deleted

    def cleanup_temp_files(self, max_age_hours: float = 24) -> int:
        """Delete temporary files older than ``max_age_hours``."""

        threshold = time.time() - max_age_hours * 3600
        deleted = 0
        try:
            for path in self.directories["temp"].iterdir():
                if path.is_file() and path.stat().st_mtime < threshold:
                    path.unlink(missing_ok=True)
                    deleted += 1
        except OSError:
            logger.exception("Error cleaning up temp files")
        logger.info("Cleaned up %s temporary files", deleted)
        return deleted

    def stats(self) -> dict[str, dict[str, int]]:
        """Return file count and total size per managed directory."""

        result: dict[str, dict[str, int]] = {}
        for name, directory in self.directories.items():
            files = 0
            size = 0
            try:
                for path in directory.iterdir():
                    if path.is_file():
                        files += 1
                        size += path.stat().st_size
            except OSError:
                files, size = 0, 0
            result[name] = {"files": files, "size_bytes": size}
        return result
