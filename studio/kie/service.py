"""
Video task routing

Decides, per model family, which gateway operations create and poll a
video task, and keeps the application's task records in step with the
normalized upstream status. Persistence belongs to the caller: this module
only talks to it through the TaskStore protocol.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Dict, Optional, Protocol

from studio.exceptions import KieError, TaskNotFound, UnsupportedModelMode
from studio.util.logging import get_logger
from . import client
from .models import is_veo_model, map_aspect_ratio, resolve_path
from .prompts import inject_brand_constraints
from .status import normalize_status
from .types import GatewayConfig, GenerationRequest, NormalizedStatus, TaskStatus, VideoTask

logger = get_logger(__name__)


class TaskStore(Protocol):
    def create(self, task: VideoTask) -> VideoTask: ...

    def get(self, task_id: str) -> Optional[VideoTask]: ...

    def update(self, task_id: str, fields: Dict[str, Any]) -> Optional[VideoTask]: ...


def build_veo_params(model: str, request: GenerationRequest, prompt: str) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "prompt": prompt,
        "model": model,
        "aspectRatio": map_aspect_ratio(request.aspect_ratio),
        "duration": request.duration_seconds,
        "imageUrls": list(request.image_urls),
    }
    params.update(request.extra)
    return params


def build_generic_input(request: GenerationRequest, prompt: str) -> Dict[str, Any]:
    task_input: Dict[str, Any] = {
        "prompt": prompt,
        "aspect_ratio": map_aspect_ratio(request.aspect_ratio),
        "duration": request.duration_seconds,
    }
    if request.image_urls:
        task_input["input_image_url"] = request.image_urls[0]
    if request.quality:
        task_input["quality"] = request.quality
    task_input.update(request.extra)
    return task_input


async def create_video_task(
    config: GatewayConfig,
    model: str,
    request: GenerationRequest,
    prompt: Optional[str] = None,
) -> str:
    """
    Create the upstream task for a model key and return its provider id.

    Raises:
        UnsupportedModelMode: Non-Veo model without a route for this mode
    """
    prompt = request.prompt if prompt is None else prompt
    if is_veo_model(model):
        return await client.create_veo_task(config, build_veo_params(model, request, prompt))

    model_path = resolve_path(model, request.is_image_mode)
    if model_path is None:
        raise UnsupportedModelMode(model, request.is_image_mode)
    return await client.create_generic_task(config, model_path, build_generic_input(request, prompt))


async def poll_video(config: GatewayConfig, model: str, provider_task_id: str) -> NormalizedStatus:
    """Poll through the family's record-info routes and normalize the answer."""
    if is_veo_model(model):
        payload = await client.poll_veo_task(config, provider_task_id)
    else:
        payload = await client.poll_generic_task(config, provider_task_id)
    return normalize_status(payload)


async def submit_video(
    config: GatewayConfig,
    store: TaskStore,
    model: str,
    request: GenerationRequest,
    task_id: Optional[str] = None,
    apply_brand: bool = True,
    account_id: Optional[str] = None,
    prompt_id: Optional[str] = None,
) -> VideoTask:
    """
    Start a video generation and persist the task record.

    Configuration problems (missing key, unsupported model/mode) are raised
    before anything is stored. Gateway failures are stored as a failed task
    so the history view can show them, then re-raised.
    """
    client.require_credential(config)

    is_image = request.is_image_mode
    model_path = resolve_path(model, is_image)
    if model_path is None and not is_veo_model(model):
        raise UnsupportedModelMode(model, is_image)

    task = VideoTask(
        id=task_id or str(uuid.uuid4()),
        model=model,
        prompt=request.prompt,
        model_path=model_path,
        source_type="image" if is_image else "text",
        input_image_url=request.image_urls[0] if request.image_urls else None,
        aspect_ratio=map_aspect_ratio(request.aspect_ratio),
        duration_seconds=request.duration_seconds,
        account_id=account_id,
        prompt_id=prompt_id,
    )
    prompt = inject_brand_constraints(request.prompt) if apply_brand else request.prompt

    try:
        task.provider_task_id = await create_video_task(config, model, request, prompt)
    except KieError as e:
        task.status = TaskStatus.FAILED
        task.error_message = str(e)
        store.create(task)
        logger.error(
            f"Video generation failed for task {task.id}: {e}",
            extra={"event": "kie.video.submit_failed", "detail": {"task_id": task.id, "model": model, **e.details}},
        )
        raise

    stored = store.create(task)
    logger.info(
        f"Video task {task.id} submitted ({model} → {task.provider_task_id})",
        extra={
            "event": "kie.video.submitted",
            "detail": {"task_id": task.id, "model": model, "provider_task_id": task.provider_task_id},
        },
    )
    return stored


async def refresh_video_status(
    config: GatewayConfig, store: TaskStore, task_id: str
) -> VideoTask:
    """
    Bring a stored task up to date with the gateway.

    Terminal tasks and tasks that never reached the gateway are returned as
    stored. A failed poll leaves the record untouched and returns a copy
    carrying the poll error, so the caller can show it without persisting.
    """
    task = store.get(task_id)
    if task is None:
        raise TaskNotFound(task_id)

    if task.status.is_terminal or not task.provider_task_id:
        return task

    try:
        normalized = await poll_video(config, task.model, task.provider_task_id)
    except KieError as e:
        logger.warning(
            f"Failed to poll gateway for task {task_id}: {e}",
            extra={"event": "kie.video.poll_failed", "detail": {"task_id": task_id, **e.details}},
        )
        return replace(task, error_message=f"Poll error: {e}")

    updated = store.update(
        task_id,
        {
            "status": normalized.status,
            "progress": normalized.progress,
            "result_url": normalized.result_url,
            "error_message": normalized.error_message,
        },
    )
    if normalized.status.is_terminal:
        logger.info(
            f"Video task {task_id} {normalized.status.value}",
            extra={"event": "kie.video.terminal", "detail": {"task_id": task_id, **normalized.to_dict()}},
        )
    return updated or task
