"""Read-only catalog of visual-style templates backed by a directory of previews."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"}
PLACEHOLDER_PREVIEW = "/images/placeholder.png"

_PROMPT_LINE = re.compile(r"^\d+\.\s*([^：:]+)[：:]\s*(.+)$")


@dataclass(frozen=True, slots=True)
class Template:
    """Visual style a user can pick for generation."""

    id: str
    name: str
    prompt: str
    preview_url: str = PLACEHOLDER_PREVIEW
    category: str | None = None


def parse_prompts(text: str) -> dict[str, str]:
    """Parse ``N. name: prompt`` lines into a name to prompt mapping."""

    prompts: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _PROMPT_LINE.match(stripped)
        if match:
            prompts[match.group(1).strip()] = match.group(2).strip()
    return prompts


class DirectoryTemplateCatalog:
    """Templates are preview images in a folder, prompts come from a text file."""

    def __init__(self, images_dir: Path, prompt_file: Path) -> None:
        self._images_dir = images_dir
        self._prompt_file = prompt_file

    async def list_templates(self) -> list[Template]:
        """Return all templates, re-reading the folder on every call."""

        return await asyncio.to_thread(self._load)

    async def get_template_by_id(self, template_id: str) -> Template | None:
        """Return the template with the given id or ``None``."""

        for template in await self.list_templates():
            if template.id == template_id:
                return template
        return None

    def _load(self) -> list[Template]:
        prompts = self._read_prompts()
        templates: list[Template] = []
        for path in self._preview_files():
            templates.append(
                Template(
                    id=path.stem,
                    name=path.stem,
                    prompt=prompts.get(path.stem, ""),
                    preview_url=f"/images/{quote(path.name)}",
                ),
            )
        return templates

    def _preview_files(self) -> list[Path]:
        if not self._images_dir.is_dir():
            logger.warning("Template image directory not found: %s", self._images_dir)
            return []
        return sorted(
            path
            for path in self._images_dir.iterdir()
            if path.is_file()
            and path.suffix.lower() in IMAGE_EXTENSIONS
            and path.name != "placeholder.png"
        )

    def _read_prompts(self) -> dict[str, str]:
        if not self._prompt_file.exists():
            logger.warning("Prompt file not found: %s", self._prompt_file)
            return {}
        try:
            return parse_prompts(self._prompt_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError):
            logger.exception("Failed to read prompt file %s", self._prompt_file)
            return {}
