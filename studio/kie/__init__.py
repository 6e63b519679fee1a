"""
KIE Gateway Layer - Multi-provider generation through one unstable API

Core components:
- prober: multi-candidate endpoint discovery
- client: one coroutine per gateway capability
- status: canonical status normalization across providers
- models: model registry, route resolution and family detection
- service: per-family task routing and task-record refresh
- credentials: account/setting/environment key resolution
- prompts: brand constraints, prompt polishing and generation
- images: batched poster generation

Usage:
    from studio.config import load_config
    from studio.kie import GatewayConfig, GenerationRequest, submit_video

    config = GatewayConfig.from_config(load_config())
    task = await submit_video(config, store, "sora2", GenerationRequest(prompt="..."))
"""

from .client import (
    chat_completion,
    create_generic_task,
    create_veo_task,
    generate_image_task,
    get_balance,
    poll_generic_task,
    poll_image_task,
    poll_veo_task,
    upload_file,
    wait_for_image_result,
)
from .credentials import Account, AccountStore, SettingsProvider, resolve_gateway_config
from .models import (
    MODELS,
    ModelSpec,
    is_kling_model,
    is_sora_model,
    is_veo_model,
    map_aspect_ratio,
    resolve_path,
    strip_veo_task_id,
    tag_veo_task_id,
)
from .prober import try_endpoints
from .images import PosterRequest, generate_poster, poster_size
from .prompts import build_negative_prompt, generate_prompts, inject_brand_constraints, polish_prompt
from .service import TaskStore, poll_video, refresh_video_status, submit_video
from .status import extract_error_message, extract_result_url, extract_result_urls, normalize_status
from .types import (
    GatewayConfig,
    GenerationRequest,
    ImageTask,
    NormalizedStatus,
    ProbeResult,
    RequestSpec,
    TaskStatus,
    VideoTask,
)

__all__ = [
    'chat_completion',
    'create_generic_task',
    'create_veo_task',
    'generate_image_task',
    'get_balance',
    'poll_generic_task',
    'poll_image_task',
    'poll_veo_task',
    'upload_file',
    'wait_for_image_result',
    'Account',
    'AccountStore',
    'SettingsProvider',
    'resolve_gateway_config',
    'MODELS',
    'ModelSpec',
    'is_kling_model',
    'is_sora_model',
    'is_veo_model',
    'map_aspect_ratio',
    'resolve_path',
    'strip_veo_task_id',
    'tag_veo_task_id',
    'try_endpoints',
    'build_negative_prompt',
    'inject_brand_constraints',
    'polish_prompt',
    'generate_prompts',
    'PosterRequest',
    'generate_poster',
    'poster_size',
    'TaskStore',
    'poll_video',
    'refresh_video_status',
    'submit_video',
    'extract_error_message',
    'extract_result_url',
    'extract_result_urls',
    'normalize_status',
    'GatewayConfig',
    'GenerationRequest',
    'ImageTask',
    'NormalizedStatus',
    'ProbeResult',
    'RequestSpec',
    'TaskStatus',
    'VideoTask',
]
