"""
KIE Gateway Client

One coroutine per gateway capability. Volatile or legacy routes go through
the endpoint prober with a list of candidates; the stable OpenAI-compatible
chat route is called directly and fails loudly.

All helpers are stateless: each takes a GatewayConfig, opens its own HTTP
session for the duration of the call and closes it on return, so
concurrent calls with different credentials never interfere.
"""

from __future__ import annotations

import asyncio
from time import monotonic
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from studio.exceptions import (
    AllCandidatesFailed,
    GatewayUnavailable,
    GenerationTimeout,
    MalformedResponse,
    MissingCredential,
    UpstreamReportedFailure,
)
from studio.util.logging import get_logger
from .models import strip_veo_task_id, tag_veo_task_id
from .prober import fetch_json, try_endpoints
from .status import dig, extract_result_urls, normalize_status, unwrap_data
from .types import GatewayConfig, ImageTask, RequestSpec, TaskStatus

logger = get_logger(__name__)

IMAGE_POLL_INTERVAL_S = 2.0
IMAGE_MAX_WAIT_S = 120.0

TASK_ID_PATHS: Tuple[Tuple[Any, ...], ...] = (
    ("data", "taskId"),
    ("data", "task_id"),
    ("taskId",),
    ("task_id",),
    ("data", "id"),
)

# Resolved against payload["data"] (or the payload when there is no data)
UPLOAD_URL_KEYS = ("url", "fileUrl", "file_url", "downloadUrl", "result_url")
IMAGE_TASK_ID_KEYS = ("taskId", "task_id", "id")

BALANCE_TIMEOUT_S = 10.0
BALANCE_PATHS: Tuple[Tuple[Any, ...], ...] = (
    ("balance",),
    ("credits",),
    ("data", "balance"),
    ("data", "credits"),
)

IMAGE_ROUTES: Tuple[Tuple[str, str], ...] = (
    ("/api/v1/gpt-image/generate", "/api/v1/gpt-image"),
    ("/api/v1/images/generate", "/api/v1/images"),
    ("/api/v1/image/generate", "/api/v1/image"),
    ("/api/v1/jobs/createTask", "/api/v1/jobs"),
)


def _headers(config: GatewayConfig, json_body: bool = True) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {config.credential}",
        "Accept": "application/json",
    }
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def require_credential(config: GatewayConfig) -> None:
    """Refuse to touch the network without an API key."""
    if not config.credential:
        raise MissingCredential()


def _as_id(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    return None


def extract_task_id(payload: Any) -> Optional[str]:
    """First task id found across the known creation response shapes."""
    for path in TASK_ID_PATHS:
        task_id = _as_id(dig(payload, path))
        if task_id:
            return task_id
    return None


def extract_upload_url(payload: Any) -> Optional[str]:
    data = unwrap_data(payload)
    for key in UPLOAD_URL_KEYS:
        value = dig(data, (key,))
        if isinstance(value, str) and value:
            return value
    return None


def _extract_image_task_id(payload: Any) -> Optional[str]:
    data = unwrap_data(payload)
    for key in IMAGE_TASK_ID_KEYS:
        task_id = _as_id(dig(data, (key,)))
        if task_id:
            return task_id
    return _as_id(dig(payload, ("taskId",)))


def _unique(urls: Sequence[str]) -> List[str]:
    """Drop repeated candidates so no URL is attempted twice."""
    return list(dict.fromkeys(urls))


# ---------------------------------------------------------------------------
# Task creation
# ---------------------------------------------------------------------------


async def create_generic_task(
    config: GatewayConfig, model_path: str, task_input: Dict[str, Any]
) -> str:
    """
    Create a generation task through the Market createTask route.

    Args:
        config: Connection settings
        model_path: Route slug, e.g. "sora-2/text-to-video"
        task_input: Freeform input payload (prompt, aspect_ratio, ...)

    Returns:
        The upstream task id

    Raises:
        MissingCredential, AllCandidatesFailed, MalformedResponse
    """
    require_credential(config)
    spec = RequestSpec(
        method="POST",
        headers=_headers(config),
        timeout=config.request_timeout,
        json={"model": model_path, "input": task_input},
    )
    result = await try_endpoints([config.url("/api/v1/jobs/createTask")], spec)

    task_id = extract_task_id(result.body)
    if not task_id:
        raise MalformedResponse("KIE createTask: missing taskId", body=result.body)

    logger.info(
        f"Created task {task_id} for {model_path}",
        extra={"event": "kie.task.created", "detail": {"model_path": model_path, "task_id": task_id}},
    )
    return task_id


async def create_veo_task(config: GatewayConfig, params: Dict[str, Any]) -> str:
    """
    Submit a Veo generation request.

    Returns:
        The task id tagged with the veo prefix, so status polls can be
        routed to the Veo record-info endpoints later
    """
    require_credential(config)
    spec = RequestSpec(
        method="POST",
        headers=_headers(config),
        timeout=config.request_timeout,
        json=params,
    )
    candidates = [
        config.url("/api/v1/veo/generate"),
        config.url("/api/v1/veo/create"),
    ]
    result = await try_endpoints(candidates, spec)

    task_id = extract_task_id(result.body)
    if not task_id:
        raise MalformedResponse("KIE Veo: missing taskId", body=result.body)

    tagged = tag_veo_task_id(task_id)
    logger.info(
        f"Created Veo task {tagged} via {result.url}",
        extra={"event": "kie.task.created", "detail": {"route": result.url, "task_id": tagged}},
    )
    return tagged


# ---------------------------------------------------------------------------
# Status polling
# ---------------------------------------------------------------------------


async def _poll(config: GatewayConfig, candidates: Sequence[str]) -> Any:
    spec = RequestSpec(
        method="GET",
        headers=_headers(config, json_body=False),
        timeout=config.request_timeout,
    )
    result = await try_endpoints(_unique(candidates), spec)
    return result.body


async def poll_generic_task(config: GatewayConfig, task_id: str) -> Any:
    """Poll the generic Market record-info routes; returns the raw JSON."""
    require_credential(config)
    encoded = quote(task_id, safe="")
    return await _poll(
        config,
        [
            config.url(f"/api/v1/jobs/recordInfo?taskId={encoded}"),
            config.url(f"/api/v1/jobs/record-info?taskId={encoded}"),
        ],
    )


async def poll_veo_task(config: GatewayConfig, task_id: str) -> Any:
    """
    Poll a Veo task. Veo-specific routes come first: the generic routes
    also answer for Veo ids but may return partial data.
    """
    require_credential(config)
    encoded = quote(strip_veo_task_id(task_id), safe="")
    return await _poll(
        config,
        [
            config.url(f"/api/v1/veo/record-info?taskId={encoded}"),
            config.url(f"/api/v1/veo/recordInfo?taskId={encoded}"),
            config.url(f"/api/v1/jobs/recordInfo?taskId={encoded}"),
            config.url(f"/api/v1/jobs/record-info?taskId={encoded}"),
        ],
    )


# ---------------------------------------------------------------------------
# File upload
# ---------------------------------------------------------------------------


async def upload_file(config: GatewayConfig, data: bytes, filename: str) -> str:
    """
    Upload raw bytes (typically a reference image) to KIE file hosting.

    Returns:
        The publicly reachable URL of the uploaded file

    Raises:
        AllCandidatesFailed: If no candidate accepted the upload or none
            answered with a recognisable URL
    """
    require_credential(config)

    def build_form() -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type="application/octet-stream")
        return form

    spec = RequestSpec(
        method="POST",
        headers=_headers(config, json_body=False),
        timeout=config.request_timeout,
        form_factory=build_form,
    )
    candidates = [
        config.url("/api/v1/files/upload"),
        config.url("/api/v1/file/upload"),
        config.url("/api/v1/upload"),
    ]
    result = await try_endpoints(
        candidates, spec, accept=lambda body: extract_upload_url(body) is not None
    )
    file_url = extract_upload_url(result.body)

    logger.info(
        f"Uploaded {filename} ({len(data)} bytes)",
        extra={"event": "kie.upload.complete", "detail": {"route": result.url, "url": file_url}},
    )
    return file_url


# ---------------------------------------------------------------------------
# Account balance
# ---------------------------------------------------------------------------


def extract_balance(payload: Any) -> Optional[float]:
    """First numeric balance across the known response shapes, or None."""
    for path in BALANCE_PATHS:
        value = dig(payload, path)
        if value is None or isinstance(value, bool):
            continue
        try:
            balance = float(value)
        except (TypeError, ValueError, OverflowError):
            continue
        if balance == balance:  # NaN
            return balance
    return None


async def get_balance(config: GatewayConfig) -> Optional[float]:
    """
    Look up the remaining credit balance of the configured key.

    Returns:
        The balance, or None when no candidate route reports one. The
        dashboard treats an unknown balance as "not shown", not as an error.

    Raises:
        MissingCredential: No API key
    """
    require_credential(config)
    spec = RequestSpec(
        method="GET",
        headers=_headers(config, json_body=False),
        timeout=min(config.request_timeout, BALANCE_TIMEOUT_S),
    )
    candidates = [
        config.url("/api/v1/balance"),
        config.url("/api/v1/account/balance"),
        config.url("/api/v1/user/balance"),
    ]
    try:
        result = await try_endpoints(
            candidates, spec, accept=lambda body: extract_balance(body) is not None
        )
    except AllCandidatesFailed as e:
        logger.warning(
            "⚠ KIE balance unavailable on every route",
            extra={"event": "kie.balance.unavailable", "detail": e.details},
        )
        return None

    balance = extract_balance(result.body)
    logger.debug(
        f"KIE balance: {balance:g}",
        extra={"event": "kie.balance", "detail": {"route": result.url, "balance": balance}},
    )
    return balance


# ---------------------------------------------------------------------------
# Chat completions (OpenAI-compatible)
# ---------------------------------------------------------------------------


async def chat_completion(
    config: GatewayConfig,
    messages: List[Dict[str, Any]],
    model: Optional[str] = None,
) -> str:
    """
    Send a non-streaming chat completion and return the assistant text.

    The route is stable and documented, so it is called directly rather
    than probed. Messages may use plain string content or OpenAI-style
    content parts ({"type": "text"} / {"type": "image_url"}).

    Raises:
        MissingCredential: No API key
        GatewayUnavailable: Transport error or timeout
        UpstreamReportedFailure: Non-2xx answer
        MalformedResponse: No choices[0].message.content in the answer
    """
    require_credential(config)
    url = config.url("/v1/chat/completions")
    spec = RequestSpec(
        method="POST",
        headers=_headers(config),
        timeout=config.request_timeout,
        json={
            "model": model or config.default_chat_model,
            "messages": messages,
            "stream": False,
        },
    )

    try:
        async with aiohttp.ClientSession() as session:
            result = await fetch_json(session, url, spec)
    except asyncio.TimeoutError as e:
        raise GatewayUnavailable(
            f"KIE chat/completions timed out after {config.request_timeout:g}s",
            details={"url": url},
        ) from e
    except aiohttp.ClientError as e:
        raise GatewayUnavailable(
            f"KIE chat/completions transport error: {e}", details={"url": url}
        ) from e

    if not result.ok:
        raise UpstreamReportedFailure(
            f"KIE chat/completions failed ({result.status_code})",
            status_code=result.status_code,
            body=result.body,
        )

    content = dig(result.body, ("choices", 0, "message", "content"))
    if not isinstance(content, str):
        raise MalformedResponse("KIE chat/completions: unexpected response shape", body=result.body)
    return content


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------


async def generate_image_task(config: GatewayConfig, body: Dict[str, Any]) -> ImageTask:
    """
    Submit an image generation request.

    Each candidate route belongs to a family of polling routes; the winning
    candidate's record base is returned with the id so the poller queries
    the same family.
    """
    require_credential(config)
    spec = RequestSpec(
        method="POST",
        headers=_headers(config),
        timeout=config.request_timeout,
        json=body,
    )
    record_bases = {config.url(route): base for route, base in IMAGE_ROUTES}
    result = await try_endpoints(
        list(record_bases),
        spec,
        accept=lambda payload: _extract_image_task_id(payload) is not None,
    )

    task = ImageTask(
        task_id=_extract_image_task_id(result.body),
        record_base=record_bases[result.url],
    )
    logger.info(
        f"Created image task {task.task_id} ({task.record_base})",
        extra={"event": "kie.image.created", "detail": {"task_id": task.task_id, "record_base": task.record_base}},
    )
    return task


async def poll_image_task(config: GatewayConfig, record_base: str, task_id: str) -> Any:
    """Poll an image task within its record-base family; returns the raw JSON."""
    require_credential(config)
    encoded = quote(task_id, safe="")
    return await _poll(
        config,
        [
            config.url(f"{record_base}/recordInfo?taskId={encoded}"),
            config.url(f"{record_base}/record-info?taskId={encoded}"),
            config.url(f"/api/v1/jobs/recordInfo?taskId={encoded}"),
        ],
    )


async def wait_for_image_result(
    config: GatewayConfig,
    record_base: str,
    task_id: str,
    max_wait: float = IMAGE_MAX_WAIT_S,
    poll_interval: float = IMAGE_POLL_INTERVAL_S,
) -> List[str]:
    """
    Poll an image task until it completes, fails or runs out of time.

    Args:
        max_wait: Wall-clock budget in seconds
        poll_interval: Fixed sleep between polls in seconds

    Returns:
        Every result URL of the completed task

    Raises:
        UpstreamReportedFailure: The provider reported the task failed
        MalformedResponse: Completed without any result URL
        GenerationTimeout: max_wait elapsed while still processing
    """
    start = monotonic()
    polls = 0

    while monotonic() - start < max_wait:
        payload = await poll_image_task(config, record_base, task_id)
        polls += 1
        status = normalize_status(payload)

        if status.status is TaskStatus.COMPLETED:
            urls = extract_result_urls(payload)
            if not urls:
                raise MalformedResponse("Image completed but no URLs found in response", body=payload)
            logger.info(
                f"Image task {task_id} completed after {polls} polls",
                extra={"event": "kie.image.completed", "detail": {"task_id": task_id, "urls": len(urls)}},
            )
            return urls

        if status.status is TaskStatus.FAILED:
            raise UpstreamReportedFailure(
                status.error_message or "Image generation failed", body=payload
            )

        logger.debug(
            f"Image task {task_id} still processing (poll {polls})",
            extra={"event": "kie.image.poll", "detail": {"task_id": task_id, "progress": status.progress}},
        )
        await asyncio.sleep(poll_interval)

    logger.warning(
        f"Image task {task_id} timed out after {max_wait:g}s ({polls} polls)",
        extra={"event": "kie.image.timeout", "detail": {"task_id": task_id, "polls": polls}},
    )
    raise GenerationTimeout(max_wait)
