"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised project settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./data/photo-butler.db"
    database_enabled: bool = True

    storage_root: str = "."
    templates_dir: str = "../image"
    prompt_file: str = "../prompt/prompt.txt"

    provider_api_key: str = ""
    provider_base_url: str = "https://ark.cn-beijing.volces.com/api/v3"
    provider_image_model: str = "doubao-seedream-4-5-251128"
    provider_image_size: str = "2K"
    request_timeout: float = 180.0
    poll_interval: float = 2.0
    max_wait: float = 180.0
    download_timeout: float = 60.0

    simulation_step_delay: float = 0.5
    cleanup_original_images: bool = False
    cleanup_delay_minutes: float = 60.0
    persistence_warmup_retries: int = 10
    persistence_warmup_interval: float = 0.1


def _build_settings() -> Settings:
    _load_env_file()

    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/photo-butler.db"),
        database_enabled=_env_flag("DATABASE_ENABLED", True),
        storage_root=os.getenv("STORAGE_ROOT", "."),
        templates_dir=os.getenv("TEMPLATES_DIR", "../image"),
        prompt_file=os.getenv("PROMPT_FILE", "../prompt/prompt.txt"),
        provider_api_key=os.getenv("DOUBAO_API_KEY", ""),
        provider_base_url=os.getenv("DOUBAO_API_URL", "https://ark.cn-beijing.volces.com/api/v3"),
        provider_image_model=os.getenv("DOUBAO_IMAGE_MODEL", "doubao-seedream-4-5-251128"),
        provider_image_size=os.getenv("DOUBAO_IMAGE_SIZE", "2K"),
        request_timeout=float(os.getenv("DOUBAO_REQUEST_TIMEOUT", "180")),
        poll_interval=float(os.getenv("DOUBAO_POLL_INTERVAL", "2")),
        max_wait=float(os.getenv("DOUBAO_MAX_WAIT", "180")),
        download_timeout=float(os.getenv("DOWNLOAD_TIMEOUT", "60")),
        simulation_step_delay=float(os.getenv("SIMULATION_STEP_DELAY", "0.5")),
        cleanup_original_images=_env_flag("CLEANUP_ORIGINAL_IMAGES", False),
        cleanup_delay_minutes=float(os.getenv("CLEANUP_DELAY_MINUTES", "60")),
        persistence_warmup_retries=int(os.getenv("PERSISTENCE_WARMUP_RETRIES", "10")),
        persistence_warmup_interval=float(os.getenv("PERSISTENCE_WARMUP_INTERVAL", "0.1")),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
