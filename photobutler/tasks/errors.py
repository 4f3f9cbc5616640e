"""Error taxonomy for the generation-task pipeline."""

from __future__ import annotations

from enum import Enum


class PipelineError(RuntimeError):
    """Base class for errors raised by the task pipeline."""


class TemplateNotFound(PipelineError):
    """Raised when a template id does not resolve in the catalog."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class StorageError(PipelineError):
    """Raised when image bytes cannot be written or read."""


class TaskNotRetryable(PipelineError):
    """Raised when a retry is requested for a task that cannot be re-run."""


class TaskCancelled(PipelineError):
    """Raised between stages of a run once cancellation has been requested."""


class DownloadUnavailable(PipelineError):
    """Raised when a task has no locally stored generated image to hand out."""


class ProviderErrorKind(str, Enum):
    """User-facing categories of provider failures."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    GENERIC = "generic"


USER_MESSAGES: dict[ProviderErrorKind, str] = {
    ProviderErrorKind.RATE_LIMIT: "The service is busy, please try again later.",
    ProviderErrorKind.TIMEOUT: "Generation timed out, please retry.",
    ProviderErrorKind.NETWORK: "Network connection failed, please check the network.",
    ProviderErrorKind.GENERIC: "AI generation failed.",
}


class ProviderError(PipelineError):
    """Raised when the image-generation provider cannot produce a result."""

    def __init__(self, message: str, kind: ProviderErrorKind | None = None) -> None:
        self.kind = kind or classify_provider_error(message)
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


def classify_provider_error(message: str) -> ProviderErrorKind:
    """Map a raw provider error message onto a user-facing category."""

    lowered = message.lower()
    if "429" in lowered or "rate limit" in lowered:
        return ProviderErrorKind.RATE_LIMIT
    if "timeout" in lowered or "timed out" in lowered:
        return ProviderErrorKind.TIMEOUT
    if "network" in lowered or "connect" in lowered:
        return ProviderErrorKind.NETWORK
    return ProviderErrorKind.GENERIC
