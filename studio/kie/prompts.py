"""
Brand constraints and prompt polishing

Every generated video must follow the brand guidelines, so the constraint
block is appended to the operator's prompt before submission. Polishing
asks the gateway's chat model to rewrite a prompt for a given engine;
generation asks it for a batch of new brand-compliant prompts as JSON.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from studio.exceptions import MalformedResponse
from studio.util.logging import get_logger
from .client import chat_completion
from .types import GatewayConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class BrandConstraints:
    forbidden: Tuple[str, ...] = (
        "NO human faces visible",
        "NO people (full body or partial)",
        "NO hands or fingers clearly shown",
        "NO external brand logos",
        "NO price tags or text overlays on screen",
    )
    focus: str = "Deep focus F/11+, entire frame sharp, no bokeh"
    motion: str = "Constant subtle motion, no static frames"
    style: str = "Hyper-realistic textures, premium product UGC aesthetic"
    min_cuts: int = 4
    duration_seconds: int = 8
    aspect_ratio: str = "9:16"
    primary_color: str = "#0066CC"
    theme: str = "blue-white minimalist"
    negative_prompts: Tuple[str, ...] = (
        "faces", "people", "hands", "fingers", "text overlays",
        "subtitles", "price tags", "watermarks", "blur", "bokeh",
        "cartoon", "low-res", "extra logos",
    )

    def summary(self) -> str:
        """One-line brand context for system prompts."""
        return (
            f"Primary color: {self.primary_color}. Theme: {self.theme}. "
            f"Forbidden: {'; '.join(self.forbidden)}. Style: {self.style}."
        )


DEFAULT_BRAND = BrandConstraints()

_POLISH_ROLES = {
    "veo": (
        "You are a video prompt engineer for Google VEO. Enhance the user's prompt to be "
        "more cinematic and detailed. Include camera movements, lighting descriptions, "
        "and temporal progression."
    ),
    "sora": (
        "You are a video prompt engineer for OpenAI Sora. Enhance the user's prompt with "
        "rich visual detail, camera angles, lighting, and scene composition. Focus on "
        "cinematic storytelling."
    ),
    "kling": (
        "You are a video prompt engineer for Kling AI. Enhance the user's prompt with "
        "detailed visual descriptions, motion guidance, and atmosphere."
    ),
    "image": (
        "You are an image prompt engineer. Enhance the user's prompt for professional "
        "product photography. Include composition, lighting, color palette, and mood details."
    ),
}


def inject_brand_constraints(prompt: str, brand: BrandConstraints = DEFAULT_BRAND) -> str:
    """Append the brand constraint block to a user prompt."""
    block = [
        "",
        "--- BRAND CONSTRAINTS ---",
        "",
        "FORBIDDEN:",
        *(f"  - {item}" for item in brand.forbidden),
        "",
        "REQUIRED STYLE:",
        f"  - Focus: {brand.focus}",
        f"  - Motion: {brand.motion}",
        f"  - Style: {brand.style}",
        f"  - Minimum cuts: {brand.min_cuts}",
        "",
        "NEGATIVE PROMPTS:",
        f"  {', '.join(brand.negative_prompts)}",
        "",
        "--- END CONSTRAINTS ---",
    ]
    return f"{prompt.strip()}\n" + "\n".join(block)


def build_negative_prompt(
    user_negatives: Optional[Iterable[str]] = None,
    brand: BrandConstraints = DEFAULT_BRAND,
) -> List[str]:
    """Brand negatives followed by user negatives, deduplicated case-insensitively."""
    merged = list(brand.negative_prompts)
    seen = {n.lower() for n in merged}
    for neg in user_negatives or ():
        cleaned = neg.strip()
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            merged.append(cleaned)
    return merged


def build_polish_messages(
    prompt: str,
    model_hint: str = "veo",
    image_url: Optional[str] = None,
    brand: BrandConstraints = DEFAULT_BRAND,
) -> List[Dict[str, Any]]:
    role = _POLISH_ROLES.get(model_hint, _POLISH_ROLES["veo"])
    system = f"{role} {brand.summary()} Output ONLY the enhanced prompt, nothing else."

    if image_url:
        user: Dict[str, Any] = {
            "role": "user",
            "content": [
                {
                    "type": "text",
                    "text": f"Analyze this image and enhance the following prompt based on what you see:\n\n{prompt}",
                },
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }
    else:
        user = {"role": "user", "content": prompt}

    return [{"role": "system", "content": system}, user]


async def polish_prompt(
    config: GatewayConfig,
    prompt: str,
    model_hint: str = "veo",
    image_url: Optional[str] = None,
    model: Optional[str] = None,
) -> str:
    """Rewrite a prompt for the given engine through the chat route."""
    messages = build_polish_messages(prompt, model_hint, image_url)
    polished = await chat_completion(config, messages, model)
    return polished.strip()


_FENCE_RE = re.compile(r"```(?:json)?\s*")

PROMPT_FIELDS = (
    "title", "description", "category", "style", "camera", "lighting",
    "setting", "duration_seconds", "aspect_ratio", "cuts", "motion", "keywords",
)


def build_generation_messages(
    brief: str,
    category: str = "coffee",
    count: int = 5,
    lang: str = "en",
    brand: BrandConstraints = DEFAULT_BRAND,
) -> List[Dict[str, Any]]:
    """System + user messages asking the chat model for a JSON array of video prompts."""
    language = "Chinese (中文)" if lang == "cn" else "English"
    constraints = json.dumps(asdict(brand), indent=2, ensure_ascii=False)
    system = "\n".join([
        "You are an expert video prompt engineer for a premium coffee brand.",
        "Your job is to generate video generation prompts for commercial coffee advertising content.",
        "",
        "BRAND CONSTRAINTS:",
        constraints,
        "",
        "RULES:",
        f"- Generate exactly {count} unique video prompts",
        *(f"- {rule}" for rule in brand.forbidden),
        "- Focus on product shots, coffee pouring, steam, textures, ingredients, environments",
        f"- {brand.style}",
        f"- Default aspect ratio: {brand.aspect_ratio}",
        f"- Default duration: {brand.duration_seconds} seconds with minimum {brand.min_cuts} cuts",
        f"- {brand.focus}",
        f"- {brand.motion}",
        f"- Language: {language}",
        "",
        "OUTPUT FORMAT:",
        f"Return a JSON array of objects with the keys: {', '.join(PROMPT_FIELDS)}.",
        f'Use "category": "{category}", "duration_seconds": {brand.duration_seconds}, '
        f'"aspect_ratio": "{brand.aspect_ratio}" and at least {brand.min_cuts} "cuts".',
        "Return ONLY the JSON array, no markdown formatting, no code blocks.",
    ])
    user = f"Generate {count} video prompts.\nCategory: {category}\nBrief: {brief}"
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def parse_prompt_list(reply: str) -> List[Any]:
    """
    Parse the chat model's reply as a JSON array, tolerating markdown fences.

    Raises:
        MalformedResponse: Not JSON, or JSON that is not an array; the raw
            reply is attached as the body
    """
    cleaned = _FENCE_RE.sub("", reply).strip()
    try:
        prompts = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        raise MalformedResponse("Failed to parse AI response as JSON", body=reply) from e
    if not isinstance(prompts, list):
        raise MalformedResponse("AI response is not an array", body=reply)
    return prompts


async def generate_prompts(
    config: GatewayConfig,
    brief: str,
    category: str = "coffee",
    count: int = 5,
    lang: str = "en",
    model: Optional[str] = None,
) -> List[Any]:
    """
    Ask the chat model for `count` brand-compliant video prompts.

    Raises:
        ValueError: Empty brief
        MalformedResponse: The reply is not a JSON array
    """
    if not brief or not brief.strip():
        raise ValueError("brief is required")

    reply = await chat_completion(config, build_generation_messages(brief, category, count, lang), model)
    prompts = parse_prompt_list(reply)
    logger.info(
        f"Generated {len(prompts)} prompts ({category})",
        extra={"event": "kie.prompts.generated", "detail": {"category": category, "requested": count, "received": len(prompts)}},
    )
    return prompts
