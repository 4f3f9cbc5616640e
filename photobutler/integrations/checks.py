"""Connectivity checks for the image provider and the task database."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from photobutler.config.settings import get_settings
from photobutler.db.persistence import SqlTaskPersistence
from photobutler.db.session import build_engine
from photobutler.imggen.generator_client import ImageGeneratorClient


@dataclass(slots=True)
class IntegrationCheckResult:
    """Structured result describing the integration check outcome."""

    name: str
    success: bool
    message: str


async def _run_check(
    name: str,
    factory: Callable[[], Awaitable[bool]],
    success_message: str,
) -> IntegrationCheckResult:
    try:
        result = await factory()
    except Exception as exc:  # pragma: no cover - defensive branch
        return IntegrationCheckResult(name=name, success=False, message=str(exc))

    if result:
        return IntegrationCheckResult(name=name, success=True, message=success_message)
    return IntegrationCheckResult(
        name=name,
        success=False,
        message="Service responded with non-success status.",
    )


async def check_provider() -> IntegrationCheckResult:
    """Ping the Doubao image API and return the result."""

    async def _ping() -> bool:
        client = ImageGeneratorClient()
        try:
            return await client.ping()
        finally:
            await client.close()

    return await _run_check(
        name="Doubao",
        factory=_ping,
        success_message="Doubao image API is reachable.",
    )


async def check_database() -> IntegrationCheckResult:
    """Open the configured database and run a trivial query."""

    async def _ping() -> bool:
        persistence = SqlTaskPersistence(build_engine(get_settings().database_url))
        try:
            if not await persistence.initialize():
                return False
            return await persistence.health_check()
        finally:
            await persistence.close()

    return await _run_check(
        name="Database",
        factory=_ping,
        success_message="Task database is reachable.",
    )


async def run_all_checks() -> list[IntegrationCheckResult]:
    """Execute all integration checks concurrently."""

    return list(await asyncio.gather(check_provider(), check_database()))
