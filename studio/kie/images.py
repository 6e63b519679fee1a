"""
Poster generation

Turns a poster brief (copy lines, reference images, layout) into one image
prompt and runs it through the gateway's image routes as a small batch.
Rounds are independent: a failed round is logged and skipped, and only a
batch where every round failed is an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from studio.exceptions import KieError, PosterGenerationFailed
from studio.util.logging import get_logger
from . import client
from .prompts import DEFAULT_BRAND, BrandConstraints
from .types import GatewayConfig

logger = get_logger(__name__)

MAX_BATCH = 4
DEFAULT_RESOLUTION = 1024

# width, height as fractions of the resolution
_SIZE_FACTORS = {
    "1:1": (1.0, 1.0),
    "2:3": (2 / 3, 1.0),
    "3:4": (3 / 4, 1.0),
    "9:16": (9 / 16, 1.0),
    "16:9": (1.0, 9 / 16),
    "4:3": (1.0, 3 / 4),
}


@dataclass
class PosterRequest:
    """Everything the poster form collects"""
    description: str = ""
    main_text: str = ""
    sub_text: str = ""
    extra_lines: List[str] = field(default_factory=list)
    # (filename, bytes): product shot, background, then extra references
    images: List[Tuple[str, bytes]] = field(default_factory=list)
    aspect_ratio: str = "1:1"
    resolution: int = DEFAULT_RESOLUTION
    batch_count: int = 1


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def poster_size(aspect_ratio: str, resolution: int = DEFAULT_RESOLUTION) -> str:
    """Pixel size string for the image routes; unknown ratios render square."""
    res = resolution if resolution and resolution > 0 else DEFAULT_RESOLUTION
    w, h = _SIZE_FACTORS.get(aspect_ratio, (1.0, 1.0))
    return f"{_round_half_up(res * w)}x{_round_half_up(res * h)}"


def build_poster_prompt(request: PosterRequest, brand: BrandConstraints = DEFAULT_BRAND) -> str:
    labelled = [("Main title", request.main_text), ("Subtitle", request.sub_text)]
    labelled += [(f"Text line {i}", line) for i, line in enumerate(request.extra_lines[:3], start=1)]
    text_parts = [f"{label}: {value}" for label, value in labelled if value]

    sections = [
        request.description or "Generate a professional product poster",
        "Text to include:\n" + "\n".join(text_parts) if text_parts else "",
        f"Aspect ratio: {request.aspect_ratio}",
        "Style: Professional product photography, clean layout, modern design",
        f"Brand: {brand.primary_color} accent, {brand.theme}, premium aesthetic",
    ]
    return "\n\n".join(s for s in sections if s)


async def generate_poster(
    config: GatewayConfig,
    request: PosterRequest,
    max_wait: float = client.IMAGE_MAX_WAIT_S,
    poll_interval: float = client.IMAGE_POLL_INTERVAL_S,
    brand: Optional[BrandConstraints] = None,
) -> List[str]:
    """
    Upload references, then run up to MAX_BATCH generate-and-wait rounds.

    Returns:
        Every image URL produced, in round order

    Raises:
        MissingCredential: No API key
        AllCandidatesFailed: A reference image could not be uploaded
        PosterGenerationFailed: No round produced an image
    """
    client.require_credential(config)

    image_urls = [await client.upload_file(config, data, name) for name, data in request.images]
    body = {
        "prompt": build_poster_prompt(request, brand or DEFAULT_BRAND),
        "image_urls": image_urls,
        "size": poster_size(request.aspect_ratio, request.resolution),
        "n": 1,
    }

    rounds = min(max(request.batch_count, 1), MAX_BATCH)
    results: List[str] = []
    failures: List[KieError] = []

    for i in range(rounds):
        try:
            task = await client.generate_image_task(config, body)
            urls = await client.wait_for_image_result(
                config, task.record_base, task.task_id, max_wait=max_wait, poll_interval=poll_interval
            )
        except KieError as e:
            failures.append(e)
            logger.warning(
                f"⚠ Poster batch {i} failed: {e}",
                extra={"event": "kie.poster.round_failed", "detail": {"round": i, **e.details}},
            )
            continue
        results.extend(urls)

    if not results:
        raise PosterGenerationFailed(failures)

    logger.info(
        f"Poster batch produced {len(results)} images ({len(failures)}/{rounds} rounds failed)",
        extra={"event": "kie.poster.completed", "detail": {"images": len(results), "failed_rounds": len(failures)}},
    )
    return results
