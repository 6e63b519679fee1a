"""
KIE model registry and provider dispatch helpers

Centralises every model key the studio supports through the gateway. Each
entry carries the text-to-video and image-to-video route slugs (None when
the mode is unsupported).

Family detection is a case-insensitive prefix test on the model string.
That is brittle, but the naming convention is the only stable contract the
gateway offers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

VEO_TASK_PREFIX = "veo_"

_RATIO_RE = re.compile(r"^\d+:\d+$")
_PIXEL_RATIOS = {
    "720x1280": "9:16",
    "1280x720": "16:9",
    "1024x1024": "1:1",
}
DEFAULT_ASPECT_RATIO = "16:9"


@dataclass(frozen=True)
class ModelSpec:
    key: str
    label: str
    engine: str
    text_to_video_path: str
    image_to_video_path: Optional[str] = None

    @property
    def supports_image_mode(self) -> bool:
        return self.image_to_video_path is not None


MODELS: Dict[str, ModelSpec] = {
    spec.key: spec
    for spec in (
        ModelSpec("veo3", "Veo 3", "google", "veo3/text-to-video"),
        ModelSpec("veo3_fast", "Veo 3 Fast", "google", "veo3_fast/text-to-video"),
        ModelSpec("sora2", "Sora 2", "openai", "sora-2/text-to-video", "sora-2/image-to-video"),
        ModelSpec(
            "sora2_pro", "Sora 2 Pro", "openai",
            "sora-2-pro/text-to-video", "sora-2-pro/image-to-video",
        ),
        ModelSpec(
            "kling26", "Kling 2.6", "kuaishou",
            "kling-2.6/text-to-video", "kling-2.6/image-to-video",
        ),
    )
}


def resolve_path(model_key: str, is_image_mode: bool) -> Optional[str]:
    """
    Look up the gateway route slug for a model key and generation mode.

    Returns:
        The slug (e.g. "sora-2/text-to-video") or None when the model is
        unknown or the mode is not available for it. None is a user-facing
        "unsupported combination", not a system fault.
    """
    spec = MODELS.get(model_key)
    if spec is None:
        return None
    return spec.image_to_video_path if is_image_mode else spec.text_to_video_path


def list_models() -> List[ModelSpec]:
    """Flat model list for selection UIs, in registry order."""
    return list(MODELS.values())


def is_veo_model(model: str) -> bool:
    return (model or "").lower().startswith("veo")


def is_sora_model(model: str) -> bool:
    return (model or "").lower().startswith("sora")


def is_kling_model(model: str) -> bool:
    return (model or "").lower().startswith("kling")


def tag_veo_task_id(task_id: str) -> str:
    """Prefix a provider id so later polls route to the Veo endpoints."""
    return task_id if task_id.startswith(VEO_TASK_PREFIX) else f"{VEO_TASK_PREFIX}{task_id}"


def strip_veo_task_id(task_id: str) -> str:
    """Remove one leading Veo tag (any case) before talking to the gateway."""
    if task_id[: len(VEO_TASK_PREFIX)].lower() == VEO_TASK_PREFIX:
        return task_id[len(VEO_TASK_PREFIX):]
    return task_id


def map_aspect_ratio(value: Optional[str]) -> str:
    """
    Map pixel-dimension strings (e.g. "720x1280") to the ratio strings the
    gateway expects, passing through values already formatted as ratios.
    """
    v = (value or "").strip()
    if not v:
        return DEFAULT_ASPECT_RATIO
    if v in _PIXEL_RATIOS:
        return _PIXEL_RATIOS[v]
    if _RATIO_RE.match(v):
        return v
    if v.lower() == "auto":
        return "Auto"
    return DEFAULT_ASPECT_RATIO
