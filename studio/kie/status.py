"""
KIE Status Normalization

The gateway wraps several upstream providers and each one names its status
fields differently. normalize_status() maps any record-info payload onto a
single NormalizedStatus so persistence and UI code never see the variance.

Field discovery is data-driven: each field has an ordered tuple of paths,
and the first path that resolves to a usable value wins. Supporting a new
provider shape means adding a path, not touching control flow.

Every function here is total: unknown shapes degrade to processing/None,
never to an exception.
"""

from __future__ import annotations

import numbers
from typing import Any, Iterable, List, Optional, Tuple

from .types import NormalizedStatus, TaskStatus

# A path is (root, key-or-index, ...). Roots: "doc" is the raw payload,
# "data" the unwrapped data object, "response" the nested result object.
Path = Tuple[Any, ...]

SUCCESS_STATES = frozenset({"success", "succeed", "completed", "done"})
FAILURE_STATES = frozenset({"failed", "error", "fail"})
SUCCESS_FLAGS = (1,)
FAILURE_FLAGS = (2, 3)

SUCCESS_FLAG_PATHS: Tuple[Path, ...] = (
    ("data", "successFlag"),
    ("doc", "successFlag"),
)

STATE_PATHS: Tuple[Path, ...] = (
    ("data", "state"),
    ("data", "status"),
    ("data", "task_status"),
    ("data", "taskStatus"),
    ("doc", "status"),
)

PROGRESS_PATHS: Tuple[Path, ...] = (
    ("data", "progress"),
    ("data", "response", "progress"),
)

RESULT_URL_PATHS: Tuple[Path, ...] = (
    ("response", "resultUrls", 0),
    ("response", "result_urls", 0),
    ("response", "urls", 0),
    ("data", "resultUrls", 0),
    ("data", "result_urls", 0),
    ("data", "urls", 0),
    ("data", "videoUrl"),
    ("data", "video_url"),
    ("data", "task_result", "videos", 0, "url"),
    ("data", "taskResult", "videos", 0, "url"),
    ("data", "url"),
    ("response", "videoUrl"),
    ("response", "video_url"),
    ("response", "videos", 0, "url"),
)

RESULT_URL_LIST_PATHS: Tuple[Path, ...] = (
    ("response", "resultUrls"),
    ("response", "result_urls"),
    ("data", "resultUrls"),
    ("data", "result_urls"),
    ("data", "urls"),
)

SINGLE_URL_PATHS: Tuple[Path, ...] = (
    ("data", "url"),
    ("response", "url"),
    ("data", "videoUrl"),
    ("data", "video_url"),
    ("response", "videoUrl"),
    ("response", "video_url"),
)

ERROR_MESSAGE_PATHS: Tuple[Path, ...] = (
    ("data", "errorMessage"),
    ("data", "error_message"),
    ("data", "message"),
    ("data", "response", "errorMessage"),
    ("doc", "error", "message"),
    ("doc", "msg"),
)


class _Roots:
    """The three starting points every path is resolved from"""

    __slots__ = ("doc", "data", "response")

    def __init__(self, payload: Any):
        self.doc = payload
        self.data = unwrap_data(payload)
        response = _step(self.data, "response")
        if response is None:
            response = _step(self.data, "result")
        self.response = response


def _step(obj: Any, key: Any) -> Any:
    """One level of traversal; None whenever the shape does not fit."""
    if isinstance(key, int):
        if isinstance(obj, (list, tuple)) and -len(obj) <= key < len(obj):
            return obj[key]
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def dig(obj: Any, path: Iterable[Any]) -> Any:
    """Follow dict keys / list indexes; None as soon as the shape breaks."""
    node = obj
    for key in path:
        node = _step(node, key)
        if node is None:
            return None
    return node


def unwrap_data(payload: Any) -> Any:
    """payload["data"] when present and not null, else payload itself."""
    data = _step(payload, "data")
    return payload if data is None else data


def _resolve(roots: _Roots, path: Path) -> Any:
    return dig(getattr(roots, path[0]), path[1:])


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _first_value(roots: _Roots, paths: Iterable[Path]) -> Any:
    """First path resolving to anything non-null."""
    for path in paths:
        value = _resolve(roots, path)
        if value is not None:
            return value
    return None


def _first_string(roots: _Roots, paths: Iterable[Path]) -> Optional[str]:
    """First path resolving to a non-empty string."""
    for path in paths:
        value = _resolve(roots, path)
        if isinstance(value, str) and value:
            return value
    return None


def _first_number(roots: _Roots, paths: Iterable[Path]) -> Optional[float]:
    for path in paths:
        value = _resolve(roots, path)
        if _is_number(value):
            try:
                return float(value)
            except OverflowError:
                # Integers beyond float range; keep the sign so clamping still works
                return float("inf") if value > 0 else float("-inf")
    return None


def _clamp_progress(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    # Some providers report percentages
    if 1.0 < value <= 100.0:
        value = value / 100.0
    return min(max(value, 0.0), 1.0)


def _detect_status(roots: _Roots) -> TaskStatus:
    flag = _first_value(roots, SUCCESS_FLAG_PATHS)
    if not _is_number(flag):
        flag = None

    state_raw = _first_value(roots, STATE_PATHS)
    state = str(state_raw).strip().lower() if state_raw is not None else ""

    if flag in SUCCESS_FLAGS or state in SUCCESS_STATES:
        return TaskStatus.COMPLETED
    if flag in FAILURE_FLAGS or state in FAILURE_STATES:
        return TaskStatus.FAILED
    return TaskStatus.PROCESSING


def extract_result_url(payload: Any) -> Optional[str]:
    """Return the first result URL found in a record-info payload, or None."""
    return _first_string(_Roots(payload), RESULT_URL_PATHS)


def extract_result_urls(payload: Any) -> List[str]:
    """
    Return every result URL from the first non-empty URL list, falling back
    to the single-URL fields. Image jobs can produce several outputs.
    """
    roots = _Roots(payload)
    for path in RESULT_URL_LIST_PATHS:
        value = _resolve(roots, path)
        if isinstance(value, list):
            urls = [u for u in value if isinstance(u, str) and u]
            if urls:
                return urls
    single = _first_string(roots, SINGLE_URL_PATHS) or extract_result_url(payload)
    return [single] if single else []


def extract_error_message(payload: Any) -> Optional[str]:
    """Return the first error description found in a payload, or None."""
    return _first_string(_Roots(payload), ERROR_MESSAGE_PATHS)


def normalize_status(payload: Any) -> NormalizedStatus:
    """
    Turn the raw JSON returned by any KIE record-info endpoint into a
    NormalizedStatus.

    Args:
        payload: Any JSON value (dict, list, scalar or None)

    Returns:
        NormalizedStatus; never raises
    """
    roots = _Roots(payload)
    status = _detect_status(roots)

    if status is TaskStatus.COMPLETED:
        progress = 1.0
    elif status is TaskStatus.FAILED:
        progress = 0.0
    else:
        raw_progress = _first_number(roots, PROGRESS_PATHS)
        progress = _clamp_progress(raw_progress) if raw_progress is not None else 0.0

    return NormalizedStatus(
        status=status,
        progress=progress,
        result_url=_first_string(roots, RESULT_URL_PATHS),
        error_message=(
            _first_string(roots, ERROR_MESSAGE_PATHS)
            if status is TaskStatus.FAILED
            else None
        ),
    )
