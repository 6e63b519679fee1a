"""
Endpoint Prober

KIE route names are not stable across gateway versions, so each logical
operation is described by an ordered list of candidate URLs. The prober
replays one request against them in order and returns the first success.
This is endpoint-shape discovery, not retry: a failed candidate is never
attempted twice.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, List, Optional, Sequence, Union

import aiohttp

from studio.exceptions import AllCandidatesFailed
from studio.util.logging import get_logger
from .types import AttemptFailure, ProbeResult, RequestSpec

logger = get_logger(__name__)

_SNIPPET_LEN = 300

BodyCheck = Callable[[Any], bool]


def parse_body(text: str) -> Any:
    """Parse JSON, wrapping anything unparseable as {"raw": text}."""
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        # RecursionError: nesting deeper than the decoder can follow
        return {"raw": text}


def _snippet(body: Any) -> str:
    try:
        rendered = json.dumps(body, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        rendered = repr(body)
    return rendered[:_SNIPPET_LEN]


async def fetch_json(
    session: aiohttp.ClientSession, url: str, spec: RequestSpec
) -> ProbeResult:
    """
    Issue one request and parse the body.

    Transport errors (aiohttp.ClientError, asyncio.TimeoutError) propagate;
    HTTP error statuses do not, they come back with ok=False.
    """
    kwargs = {"headers": spec.headers}
    if spec.form_factory is not None:
        kwargs["data"] = spec.form_factory()
    elif spec.json is not None:
        kwargs["json"] = spec.json

    timeout = aiohttp.ClientTimeout(total=spec.timeout)
    async with session.request(spec.method, url, timeout=timeout, **kwargs) as resp:
        text = await resp.text(errors="replace")
        return ProbeResult(
            ok=200 <= resp.status < 300,
            status_code=resp.status,
            body=parse_body(text),
            url=url,
        )


async def _attempt(
    session: aiohttp.ClientSession,
    url: str,
    spec: RequestSpec,
    accept: Optional[BodyCheck],
) -> Union[ProbeResult, AttemptFailure]:
    """Run a single candidate and capture the outcome as a value."""
    try:
        result = await fetch_json(session, url, spec)
    except asyncio.TimeoutError:
        return AttemptFailure(url=url, reason=f"timed out after {spec.timeout:g}s")
    except aiohttp.ClientError as e:
        return AttemptFailure(url=url, reason=f"transport error: {e}")

    if not result.ok:
        return AttemptFailure(
            url=url,
            reason="HTTP error status",
            status_code=result.status_code,
            body_snippet=_snippet(result.body),
        )
    if accept is not None and not accept(result.body):
        return AttemptFailure(
            url=url,
            reason="unrecognised response shape",
            status_code=result.status_code,
            body_snippet=_snippet(result.body),
        )
    return result


async def try_endpoints(
    candidates: Sequence[str],
    spec: RequestSpec,
    accept: Optional[BodyCheck] = None,
) -> ProbeResult:
    """
    Try each candidate URL in order and return the first success.

    Args:
        candidates: Ordered, non-empty list of equivalent URLs
        spec: Request replayed against every candidate
        accept: Optional check on a 2xx body; a rejected body counts as a
            failed candidate and probing continues

    Returns:
        ProbeResult of the first candidate that succeeded

    Raises:
        ValueError: If candidates is empty
        AllCandidatesFailed: If every candidate failed
    """
    if not candidates:
        raise ValueError("try_endpoints requires at least one candidate URL")

    attempted: List[str] = []
    failures: List[AttemptFailure] = []

    async with aiohttp.ClientSession() as session:
        for url in candidates:
            attempted.append(url)
            outcome = await _attempt(session, url, spec, accept)

            if isinstance(outcome, ProbeResult):
                logger.debug(
                    f"Candidate answered: {spec.method} {url} ({outcome.status_code})",
                    extra={
                        "event": "kie.probe.attempt",
                        "detail": {"url": url, "ok": True, "status": outcome.status_code},
                    },
                )
                return outcome

            failures.append(outcome)
            logger.debug(
                f"Candidate failed: {outcome}",
                extra={
                    "event": "kie.probe.attempt",
                    "detail": {
                        "url": url,
                        "ok": False,
                        "status": outcome.status_code,
                        "reason": outcome.reason,
                    },
                },
            )

    logger.warning(
        f"All {len(attempted)} endpoint candidates failed for {spec.method}",
        extra={
            "event": "kie.probe.exhausted",
            "detail": {"attempted_urls": attempted, "failures": [str(f) for f in failures]},
        },
    )
    raise AllCandidatesFailed(attempted, failures)
