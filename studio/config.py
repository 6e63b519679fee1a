"""Configuration loading and environment setup."""
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .util.env import get_float, get_str
from .util.logging import get_logger

logger = get_logger(__name__)

DEFAULT_KIE_API_BASE = "https://api.kie.ai"
DEFAULT_REQUEST_TIMEOUT_S = 120.0
DEFAULT_CHAT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MAX_WAIT_S = 120.0


def load_env_files() -> None:
    """Load .env from the working directory, then from the project root."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", verbose=False)
    load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env", verbose=False)


def load_config() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    This is the only place the process environment is read; everything
    downstream receives the returned mapping (or a GatewayConfig built
    from it) explicitly.
    """
    load_env_files()

    config = {
        # KIE GATEWAY
        "KIE_API_KEY": get_str("KIE_API_KEY"),
        "KIE_API_BASE": get_str("KIE_API_BASE", DEFAULT_KIE_API_BASE).rstrip("/"),
        "KIE_REQUEST_TIMEOUT_S": get_float("KIE_REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S),
        "KIE_CHAT_MODEL": get_str("KIE_CHAT_MODEL", DEFAULT_CHAT_MODEL),
        "KIE_IMAGE_MAX_WAIT_S": get_float("KIE_IMAGE_MAX_WAIT_S", DEFAULT_IMAGE_MAX_WAIT_S),

        # LOGGING
        "LOG_LEVEL": get_str("LOG_LEVEL", "INFO").upper(),
        "LOG_JSONL_PATH": get_str("LOG_JSONL_PATH", "logs/studio.jsonl"),
    }

    validate_config(config)

    logger.debug(
        "Configuration loaded",
        extra={
            "event": "config.loaded",
            "detail": {
                "api_base": config["KIE_API_BASE"],
                "api_key_set": bool(config["KIE_API_KEY"]),
                "timeout_s": config["KIE_REQUEST_TIMEOUT_S"],
            },
        },
    )
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Reject values that would make every gateway call fail. [IV]"""
    for key in ("KIE_REQUEST_TIMEOUT_S", "KIE_IMAGE_MAX_WAIT_S"):
        if config.get(key) is not None and config[key] <= 0:
            raise ConfigurationError(f"{key} must be positive, got {config[key]}")

    base = config.get("KIE_API_BASE") or ""
    if not base.startswith(("http://", "https://")):
        raise ConfigurationError(f"KIE_API_BASE must be an http(s) URL, got {base!r}")
