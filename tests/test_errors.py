"""Tests for provider error classification."""

from __future__ import annotations

import pytest

from photobutler.tasks.errors import (
    USER_MESSAGES,
    ProviderError,
    ProviderErrorKind,
    TemplateNotFound,
    classify_provider_error,
)


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("429 rate limited", ProviderErrorKind.RATE_LIMIT),
        ("Rate limit exceeded", ProviderErrorKind.RATE_LIMIT),
        ("Request timeout", ProviderErrorKind.TIMEOUT),
        ("operation timed out", ProviderErrorKind.TIMEOUT),
        ("Network unreachable", ProviderErrorKind.NETWORK),
        ("Failed to connect", ProviderErrorKind.NETWORK),
        ("content policy violation", ProviderErrorKind.GENERIC),
    ],
)
def test_classify_provider_error(message: str, kind: ProviderErrorKind) -> None:
    assert classify_provider_error(message) is kind


def test_provider_error_prefers_explicit_kind() -> None:
    error = ProviderError("429 rate limited", ProviderErrorKind.TIMEOUT)

    assert error.kind is ProviderErrorKind.TIMEOUT
    assert error.user_message == USER_MESSAGES[ProviderErrorKind.TIMEOUT]


def test_template_not_found_message() -> None:
    error = TemplateNotFound("does-not-exist")

    assert error.template_id == "does-not-exist"
    assert str(error) == "Template not found: does-not-exist"
