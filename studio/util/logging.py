"""
Dual-sink logging: Rich console for operators, JSONL file for machines.

Modules log through get_logger(__name__) and attach structured context as
extra={"event": "...", "detail": {...}}. Both sinks run every record
through SensitiveDataFilter so gateway keys never reach disk or terminal.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from rich.logging import RichHandler

from .env import get_str

_ICONS = (
    (logging.ERROR, "✖"),
    (logging.WARNING, "⚠"),
    (logging.INFO, "✔"),
)

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+")
REDACTED = "[REDACTED]"


class LevelIconFilter(logging.Filter):
    """Adds a level icon to each record for console output."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.level_icon = next((icon for level, icon in _ICONS if record.levelno >= level), "ℹ")
        return True


def _subsys_from_name(name: str) -> Optional[str]:
    """studio.kie.prober -> kie.prober; loggers outside the package get none."""
    if not name.startswith("studio."):
        return None
    return name[len("studio."):]


class JsonlFormatter(logging.Formatter):
    """One JSON object per line with a frozen key set."""

    KEYS = ("ts", "level", "name", "subsys", "event", "detail")

    def format(self, record: logging.LogRecord) -> str:
        ts = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .astimezone()
            .strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        )

        detail: Any = getattr(record, "detail", None)
        if detail is None:
            detail = record.getMessage()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "name": record.name,
            "subsys": getattr(record, "subsys", None) or _subsys_from_name(record.name),
            "event": getattr(record, "event", None),
            "detail": detail,
        }
        return json.dumps(
            {k: payload[k] for k in self.KEYS if payload[k] is not None},
            ensure_ascii=False,
            default=str,
        )


class SensitiveDataFilter(logging.Filter):
    """Scrubs credentials from structured extras and bearer tokens from messages. [SFT]"""

    SECRET_KEYS = frozenset({
        "kie_api_key",
        "authorization",
        "api_key",
        "apikey",
        "credential",
        "token",
        "bearer",
    })

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _BEARER_RE.sub(rf"\1{REDACTED}", record.msg)
        for value in list(record.__dict__.values()):
            if isinstance(value, dict):
                self._scrub(value)
        return True

    def _scrub(self, obj: Dict[str, Any]) -> None:
        for k, v in list(obj.items()):
            if isinstance(v, dict):
                self._scrub(v)
            elif isinstance(v, str):
                if str(k).lower() in self.SECRET_KEYS:
                    obj[k] = REDACTED
                else:
                    obj[k] = _BEARER_RE.sub(rf"\1{REDACTED}", v)


def init_logging(config: Optional[Mapping[str, Any]] = None) -> None:
    """
    Install the console and JSONL sinks on the root logger.

    Args:
        config: A load_config() mapping; LOG_LEVEL and LOG_JSONL_PATH are
            read from the environment when it is not given
    """
    config = config or {}
    level = (config.get("LOG_LEVEL") or get_str("LOG_LEVEL", "INFO")).upper()
    jsonl_path = Path(config.get("LOG_JSONL_PATH") or get_str("LOG_JSONL_PATH", "logs/studio.jsonl"))
    jsonl_path.parent.mkdir(parents=True, exist_ok=True)

    scrubber = SensitiveDataFilter()

    pretty = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        show_time=True,
        log_time_format="%Y-%m-%d %H:%M:%S.%f",
    )
    pretty.set_name("pretty_handler")
    pretty.addFilter(scrubber)
    pretty.addFilter(LevelIconFilter())
    pretty.setFormatter(logging.Formatter(fmt="%(level_icon)s %(message)s"))

    jsonl = logging.FileHandler(str(jsonl_path), encoding="utf-8")
    jsonl.set_name("jsonl_handler")
    jsonl.addFilter(scrubber)
    jsonl.setFormatter(JsonlFormatter())

    logging.basicConfig(handlers=[pretty, jsonl], level=level, force=True, format="%(message)s")

    # aiohttp logs every connection at debug level
    third_party_level = get_str("THIRD_PARTY_LOG_LEVEL", "WARNING").upper()
    for name in ("aiohttp", "asyncio"):
        logging.getLogger(name).setLevel(third_party_level)

    logging.getLogger(__name__).info(
        f"✔ Logging initialized (level={level}, jsonl={jsonl_path})",
        extra={"event": "logging.initialized"},
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
