"""Tests for external integration connectivity helpers."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_mock

from photobutler.config.settings import get_settings
from photobutler.integrations.checks import check_database, check_provider, run_all_checks


@pytest.fixture(autouse=True)
def _setup_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DOUBAO_API_KEY", "test-doubao")
    monkeypatch.setenv("DOUBAO_API_URL", "https://doubao.test/api/v3")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'check.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_check_provider_success(mocker: pytest_mock.MockerFixture) -> None:
    client_mock = mocker.patch("photobutler.integrations.checks.ImageGeneratorClient", autospec=True)
    instance = client_mock.return_value
    instance.ping = mocker.AsyncMock(return_value=True)
    instance.close = mocker.AsyncMock(return_value=None)

    result = await check_provider()

    assert result.success
    instance.ping.assert_awaited_once()
    instance.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_check_provider_failure(mocker: pytest_mock.MockerFixture) -> None:
    client_mock = mocker.patch("photobutler.integrations.checks.ImageGeneratorClient", autospec=True)
    instance = client_mock.return_value
    instance.ping = mocker.AsyncMock(return_value=False)
    instance.close = mocker.AsyncMock(return_value=None)

    result = await check_provider()

    assert not result.success
    assert "non-success" in result.message.lower()


@pytest.mark.asyncio
async def test_check_provider_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOUBAO_API_KEY", "")
    get_settings.cache_clear()

    result = await check_provider()

    assert not result.success
    assert "api key" in result.message.lower()


@pytest.mark.asyncio
async def test_check_database_against_sqlite_file() -> None:
    result = await check_database()

    assert result.success
    assert result.name == "Database"


@pytest.mark.asyncio
async def test_run_all_checks_reports_each_integration(mocker: pytest_mock.MockerFixture) -> None:
    client_mock = mocker.patch("photobutler.integrations.checks.ImageGeneratorClient", autospec=True)
    instance = client_mock.return_value
    instance.ping = mocker.AsyncMock(return_value=True)
    instance.close = mocker.AsyncMock(return_value=None)

    results = await run_all_checks()

    assert [result.name for result in results] == ["Doubao", "Database"]
    assert all(result.success for result in results)
