"""
Custom exceptions for the studio, providing a structured error hierarchy.

Gateway failures all derive from KieError so callers can catch the whole
family in one place while still branching on the specific cause.
"""

from typing import Any, Dict, List, Optional


class StudioBaseException(Exception):
    """Base exception for all custom exceptions in this package."""

    pass


class ConfigurationError(StudioBaseException):
    """Raised for errors in configuration, like missing keys or invalid values."""

    pass


class APIError(StudioBaseException):
    """Raised for errors related to external API interactions."""

    pass


class KieError(APIError):
    """Base class for every failure raised by the KIE gateway layer."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}


class GatewayUnavailable(KieError):
    """The gateway could not be reached or answered with an error status."""

    pass


class AllCandidatesFailed(GatewayUnavailable):
    """Every URL in a candidate list failed."""

    def __init__(self, attempted_urls: List[str], failures: Optional[List[Any]] = None):
        self.attempted_urls = list(attempted_urls)
        self.failures = list(failures or [])
        super().__init__(
            f"All endpoint candidates failed: [{', '.join(self.attempted_urls)}]",
            details={
                "attempted_urls": self.attempted_urls,
                "failures": [str(f) for f in self.failures],
            },
        )


class MissingCredential(KieError, ConfigurationError):
    """No API key could be resolved for a gateway call."""

    def __init__(self, message: str = "KIE API key not configured"):
        super().__init__(message)


class UpstreamReportedFailure(KieError):
    """The provider explicitly reported a failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        super().__init__(message, details={"status_code": status_code, "body": body})
        self.status_code = status_code
        self.body = body


class MalformedResponse(KieError):
    """Success status, but none of the expected fields were present."""

    def __init__(self, message: str, body: Any = None):
        super().__init__(f"{message}: {body!r}", details={"body": body})
        self.body = body


class GenerationTimeout(KieError):
    """A poll loop ran out of wall-clock budget."""

    def __init__(self, waited_seconds: float):
        super().__init__(
            f"generation timed out after {waited_seconds:g}s",
            details={"waited_seconds": waited_seconds},
        )
        self.waited_seconds = waited_seconds


class UnsupportedModelMode(KieError):
    """The model has no route registered for the requested mode."""

    def __init__(self, model: str, is_image_mode: bool):
        super().__init__(
            f"Unsupported model or mode: {model} (image={is_image_mode})",
            details={"model": model, "is_image_mode": is_image_mode},
        )
        self.model = model
        self.is_image_mode = is_image_mode


class TaskNotFound(KieError):
    """The task store has no record for the requested id."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", details={"task_id": task_id})
        self.task_id = task_id


class PosterGenerationFailed(KieError):
    """Every round of a batched image generation failed."""

    def __init__(self, failures: List[Any]):
        self.failures = list(failures)
        super().__init__(
            "All generation attempts failed",
            details={"failures": [str(f) for f in self.failures]},
        )
