"""
Core types and data models for the KIE gateway layer

Every gateway helper takes a GatewayConfig explicitly; nothing in this
package reads credentials from process-wide state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp

from studio.config import (
    DEFAULT_CHAT_MODEL,
    DEFAULT_KIE_API_BASE,
    DEFAULT_REQUEST_TIMEOUT_S,
)


class TaskStatus(Enum):
    """Canonical lifecycle states of a generation task"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PROCESSING


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings passed to every KIE helper"""
    credential: str
    origin: str = DEFAULT_KIE_API_BASE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S
    default_chat_model: str = DEFAULT_CHAT_MODEL

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin", self.origin.rstrip("/"))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GatewayConfig":
        """Build from a load_config() mapping; missing keys fall back to defaults."""
        return cls(
            credential=config.get("KIE_API_KEY") or "",
            origin=config.get("KIE_API_BASE") or DEFAULT_KIE_API_BASE,
            request_timeout=float(config.get("KIE_REQUEST_TIMEOUT_S") or DEFAULT_REQUEST_TIMEOUT_S),
            default_chat_model=config.get("KIE_CHAT_MODEL") or DEFAULT_CHAT_MODEL,
        )

    def with_credential(self, credential: str) -> "GatewayConfig":
        return replace(self, credential=credential)

    def url(self, path: str) -> str:
        return f"{self.origin}{path}"

    def __repr__(self) -> str:
        # Keep the key out of tracebacks and log lines
        return (
            f"GatewayConfig(origin={self.origin!r}, request_timeout={self.request_timeout}, "
            f"default_chat_model={self.default_chat_model!r}, credential_set={bool(self.credential)})"
        )


@dataclass
class GenerationRequest:
    """Provider-agnostic generation parameters"""
    prompt: str
    aspect_ratio: str = "9:16"
    duration_seconds: int = 8
    image_urls: List[str] = field(default_factory=list)
    quality: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_image_mode(self) -> bool:
        return bool(self.image_urls)


@dataclass(frozen=True)
class NormalizedStatus:
    """The only task status shape callers ever see"""
    status: TaskStatus
    progress: float = 0.0
    result_url: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the dashboard API"""
        return {
            "status": self.status.value,
            "progress": self.progress,
            "resultUrl": self.result_url,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class RequestSpec:
    """One logical HTTP request, replayed against each candidate URL"""
    method: str
    headers: Dict[str, str]
    timeout: float
    json: Any = None
    # Multipart bodies are single-use in aiohttp, so build one per attempt
    form_factory: Optional[Callable[[], aiohttp.FormData]] = None


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    status_code: int
    body: Any
    url: str


@dataclass(frozen=True)
class AttemptFailure:
    """Why a single candidate was abandoned"""
    url: str
    reason: str
    status_code: Optional[int] = None
    body_snippet: Optional[str] = None

    def __str__(self) -> str:
        status = f" ({self.status_code})" if self.status_code is not None else ""
        snippet = f": {self.body_snippet}" if self.body_snippet else ""
        return f"{self.url}{status} {self.reason}{snippet}"


@dataclass(frozen=True)
class ImageTask:
    """An image job id paired with the route family that must poll it"""
    task_id: str
    record_base: str


@dataclass
class VideoTask:
    """Task record owned by the external task store"""
    id: str
    model: str
    prompt: str
    provider_task_id: Optional[str] = None
    model_path: Optional[str] = None
    source_type: str = "text"
    input_image_url: Optional[str] = None
    aspect_ratio: str = "9:16"
    duration_seconds: int = 8
    status: TaskStatus = TaskStatus.PROCESSING
    progress: float = 0.0
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    account_id: Optional[str] = None
    prompt_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.id,
            "kieTaskId": self.provider_task_id,
            "status": self.status.value,
            "progress": self.progress,
            "resultUrl": self.result_url,
            "errorMessage": self.error_message,
            "model": self.model,
            "prompt": self.prompt,
            "createdAt": self.created_at,
        }
